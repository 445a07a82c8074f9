from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from launchpad.db.enums import DeploymentStatusEnum
from launchpad.db.models import Deployment


class DeploymentsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
        self,
        *,
        site_id: UUID,
        owner_id: str,
        status: DeploymentStatusEnum,
        version: int,
        deployed_url: Optional[str] = None,
        deployed_at: Optional[datetime] = None,
        file_count: int = 0,
        error: Optional[str] = None,
    ) -> Deployment:
        deployment = Deployment(
            site_id=site_id,
            owner_id=owner_id,
            status=status,
            version=version,
            deployed_url=deployed_url,
            deployed_at=deployed_at,
            file_count=file_count,
            error=error,
        )
        self.session.add(deployment)
        self.session.commit()
        self.session.refresh(deployment)
        return deployment

    def list_for_site(self, *, site_id: UUID) -> list[Deployment]:
        stmt = (
            select(Deployment)
            .where(Deployment.site_id == site_id)
            .order_by(Deployment.version.desc(), Deployment.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def latest_active(self, *, site_id: UUID) -> Optional[Deployment]:
        stmt = (
            select(Deployment)
            .where(Deployment.site_id == site_id, Deployment.status == DeploymentStatusEnum.active)
            .order_by(Deployment.version.desc())
        )
        return self.session.scalars(stmt).first()

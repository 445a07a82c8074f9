from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from launchpad.db.base import Base
from launchpad.db.enums import DeploymentStatusEnum, SiteStatusEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Site(Base):
    __tablename__ = "sites"
    __table_args__ = (sa.Index("idx_sites_owner_id", "owner_id"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    slug: Mapped[str] = mapped_column(String(length=63), unique=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[SiteStatusEnum] = mapped_column(
        Enum(SiteStatusEnum, name="site_status", native_enum=False, length=16),
        nullable=False,
        default=SiteStatusEnum.draft,
    )
    public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (sa.Index("idx_deployments_site_id", "site_id"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[DeploymentStatusEnum] = mapped_column(
        Enum(DeploymentStatusEnum, name="deployment_status", native_enum=False, length=16),
        nullable=False,
        default=DeploymentStatusEnum.pending,
    )
    deployed_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deployed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class SiteEnvVar(Base):
    __tablename__ = "site_env_vars"
    __table_args__ = (
        UniqueConstraint("site_id", "key", name="uq_site_env_vars_site_key"),
        sa.Index("idx_site_env_vars_owner_id", "owner_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    key: Mapped[str] = mapped_column(String(length=255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_secret: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

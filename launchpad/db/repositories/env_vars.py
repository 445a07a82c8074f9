from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from launchpad.db.models import SiteEnvVar
from launchpad.db.repositories.sites import SitesRepository
from launchpad.services.errors import ValidationError

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_KEY_MAX_LENGTH = 255


@dataclass(frozen=True)
class EnvVarInput:
    key: str
    value: str
    is_secret: bool = False


def _normalize_env_vars(values: list[EnvVarInput]) -> list[EnvVarInput]:
    seen: set[str] = set()
    normalized: list[EnvVarInput] = []
    for item in values:
        key = (item.key or "").strip()
        if not key:
            raise ValidationError("Environment variable keys cannot be empty.")
        if len(key) > _KEY_MAX_LENGTH or not _KEY_RE.match(key):
            raise ValidationError(
                f"Invalid environment variable key '{key}': use letters, digits and underscores, "
                "not starting with a digit."
            )
        if key in seen:
            raise ValidationError(f"Duplicate environment variable key '{key}'.")
        seen.add(key)
        normalized.append(EnvVarInput(key=key, value=item.value or "", is_secret=bool(item.is_secret)))
    return normalized


class EnvVarsRepository:
    """Per-site variables with full-set replace semantics; ownership is checked on every call."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.sites = SitesRepository(session)

    def _list(self, site_id: UUID) -> list[SiteEnvVar]:
        stmt = select(SiteEnvVar).where(SiteEnvVar.site_id == site_id).order_by(SiteEnvVar.key.asc())
        return list(self.session.scalars(stmt).all())

    def list(self, *, site_id: str | UUID, owner_id: str) -> list[SiteEnvVar]:
        site = self.sites.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        return self._list(site.id)

    def replace_all(self, *, site_id: str | UUID, owner_id: str, env_vars: list[EnvVarInput]) -> list[SiteEnvVar]:
        normalized = _normalize_env_vars(env_vars)
        site = self.sites.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        try:
            self.session.execute(delete(SiteEnvVar).where(SiteEnvVar.site_id == site.id))
            for item in normalized:
                self.session.add(
                    SiteEnvVar(
                        site_id=site.id,
                        owner_id=owner_id,
                        key=item.key,
                        value=item.value,
                        is_secret=item.is_secret,
                    )
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self._list(site.id)

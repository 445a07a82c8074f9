from __future__ import annotations

import logging
import re
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from launchpad.db.enums import SiteStatusEnum
from launchpad.db.models import Site, utcnow
from launchpad.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 63
_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def slugify(value: str) -> str:
    text = (value or "").strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:SLUG_MAX_LENGTH].strip("-") or "site"


def validate_slug(slug: str) -> str:
    if not _SLUG_RE.match(slug or ""):
        raise ValidationError(
            "Slug must be 1-63 lowercase letters, digits or hyphens and cannot start or end with a hyphen."
        )
    return slug


def parse_site_id(site_id: str | UUID) -> Optional[UUID]:
    if isinstance(site_id, UUID):
        return site_id
    try:
        return UUID(str(site_id))
    except ValueError:
        return None


class SitesRepository:
    """
    Registry of `sites` rows. Every owner-scoped call re-checks `owner_id`; a site owned by someone
    else is reported exactly like a missing one.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _slug_taken(self, slug: str) -> bool:
        return self.session.execute(select(Site.id).where(Site.slug == slug)).first() is not None

    def _generate_unique_slug(self, desired: str) -> str:
        base = slugify(desired)
        suffix = 0
        while True:
            tail = "" if suffix == 0 else f"-{suffix + 1}"
            slug = f"{base[: SLUG_MAX_LENGTH - len(tail)].rstrip('-')}{tail}"
            if not self._slug_taken(slug):
                return slug
            suffix += 1

    def create_site(self, *, owner_id: str, name: str, slug: Optional[str] = None) -> Site:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Site name is required.")
        if slug:
            slug = validate_slug(slug.strip())
            if self._slug_taken(slug):
                raise ConflictError(f"Slug '{slug}' is already in use.")
        else:
            slug = self._generate_unique_slug(name)

        site = Site(name=name, slug=slug, owner_id=owner_id, status=SiteStatusEnum.draft, version=0)
        self.session.add(site)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Slug '{slug}' is already in use.") from exc
        self.session.refresh(site)
        logger.info("Created site", extra={"site_id": str(site.id), "slug": slug, "owner_id": owner_id})
        return site

    def get_site_for_owner(self, *, site_id: str | UUID, owner_id: str) -> Site:
        parsed = parse_site_id(site_id)
        if parsed is None or not owner_id:
            raise NotFoundError()
        stmt = (
            select(Site)
            .where(Site.id == parsed, Site.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        site = self.session.scalars(stmt).first()
        if not site:
            raise NotFoundError()
        return site

    def get_by_slug(self, *, slug: str) -> Optional[Site]:
        return self.session.scalars(select(Site).where(Site.slug == slug)).first()

    def list_for_owner(self, *, owner_id: str) -> list[Site]:
        stmt = select(Site).where(Site.owner_id == owner_id).order_by(Site.created_at.desc())
        return list(self.session.scalars(stmt).all())

    def rename(self, *, site_id: str | UUID, owner_id: str, name: str) -> Site:
        site = self.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Site name is required.")
        site.name = name
        self.session.commit()
        self.session.refresh(site)
        return site

    def mark_deployed(self, *, site_id: str | UUID, owner_id: str, public_url: str) -> Site:
        """
        Activate the site and bump its version in one UPDATE so concurrent deploys of the same
        site each get a distinct version. The returned site carries the version this UPDATE
        produced, even if another writer has bumped it again since.
        """

        site = self.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        stmt = (
            update(Site)
            .where(Site.id == site.id, Site.owner_id == owner_id)
            .values(
                status=SiteStatusEnum.active,
                public_url=public_url,
                version=Site.version + 1,
                updated_at=utcnow(),
            )
            .returning(Site.version)
            .execution_options(synchronize_session=False)
        )
        row = self.session.execute(stmt).first()
        if row is None:
            self.session.rollback()
            raise NotFoundError()
        deployed_version = row.version
        self.session.commit()
        site = self.get_site_for_owner(site_id=site.id, owner_id=owner_id)
        set_committed_value(site, "version", deployed_version)
        return site

    def mark_failed(self, *, site_id: str | UUID, owner_id: str) -> Site:
        """A never-deployed site becomes `failed`; an active site keeps serving its last good files."""

        site = self.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        stmt = (
            update(Site)
            .where(
                Site.id == site.id,
                Site.owner_id == owner_id,
                Site.status == SiteStatusEnum.draft,
            )
            .values(status=SiteStatusEnum.failed, public_url=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.commit()
        return self.get_site_for_owner(site_id=site.id, owner_id=owner_id)

    def delete_site(self, *, site_id: str | UUID, owner_id: str) -> None:
        site = self.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        self.session.execute(delete(Site).where(Site.id == site.id, Site.owner_id == owner_id))
        self.session.commit()
        self.session.expunge(site)
        logger.info("Deleted site", extra={"site_id": str(site.id), "slug": site.slug, "owner_id": owner_id})

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from launchpad.db.enums import DeploymentStatusEnum
from launchpad.db.models import Deployment, Site, utcnow
from launchpad.db.repositories.deployments import DeploymentsRepository
from launchpad.db.repositories.sites import SitesRepository
from launchpad.services.errors import NotFoundError, StorageError, ValidationError
from launchpad.services.site_storage import DeleteResult, SiteStorage
from launchpad.services.uploads import RejectedFile, UploadBundle, UploadedFile, normalize_relative_path

logger = logging.getLogger(__name__)

REGISTRY_WARNING = "deployment record failed"


class DeploymentState(str, Enum):
    received = "received"
    validating = "validating"
    uploading = "uploading"
    registering = "registering"
    active = "active"
    failed = "failed"


_TERMINAL_STATES = {DeploymentState.active, DeploymentState.failed}


@dataclass
class DeploymentRun:
    """Bookkeeping for one pass through the deploy state machine."""

    site_id: str
    owner_id: str
    slug: Optional[str] = None
    state: DeploymentState = DeploymentState.received
    history: list[DeploymentState] = field(default_factory=lambda: [DeploymentState.received])
    uploaded_keys: list[str] = field(default_factory=list)

    def advance(self, state: DeploymentState, **context) -> None:
        if self.state in _TERMINAL_STATES:
            raise RuntimeError(f"Deployment already finished in state '{self.state.value}'.")
        self.state = state
        self.history.append(state)
        logger.info(
            "Deployment state changed",
            extra={"site_id": self.site_id, "slug": self.slug, "state": state.value, **context},
        )


@dataclass
class DeployResult:
    success: bool
    state: DeploymentState
    site: Optional[Site] = None
    url: Optional[str] = None
    deployment: Optional[Deployment] = None
    warning: Optional[str] = None
    files_uploaded: int = 0
    rejected: list[RejectedFile] = field(default_factory=list)
    purged: Optional[DeleteResult] = None


def _validate_files(files: Iterable[UploadedFile] | UploadBundle, max_file_bytes: int) -> Iterable[UploadedFile]:
    if isinstance(files, UploadBundle):
        if len(files) == 0:
            raise ValidationError("empty upload")
        for path in files.paths:
            if normalize_relative_path(path) != path:
                raise ValidationError(f"Invalid file path: {path}")
        return files

    materialized = list(files)
    if not materialized:
        raise ValidationError("empty upload")
    for item in materialized:
        if normalize_relative_path(item.relative_path) != item.relative_path:
            raise ValidationError(f"Invalid file path: {item.relative_path}")
        if item.size > max_file_bytes:
            raise ValidationError(f"File exceeds {max_file_bytes} bytes: {item.relative_path}")
    return materialized


class DeploymentOrchestrator:
    """
    Drives an upload through received -> validating -> uploading -> registering -> active.

    Storage writes are not transactional: objects written before a failure stay in place.
    Once every object is stored the files are live, so a failing registry write only yields a
    warning on an otherwise successful result.
    """

    def __init__(self, *, session: Session, storage: SiteStorage, bucket: str, max_file_bytes: int) -> None:
        self.session = session
        self.storage = storage
        self.bucket = bucket
        self.max_file_bytes = max_file_bytes
        self.sites = SitesRepository(session)
        self.deployments = DeploymentsRepository(session)

    def site_url(self, site: Site) -> str:
        return self.storage.get_public_url(self.bucket, f"{site.slug}/")

    def object_key(self, site: Site, relative_path: str) -> str:
        return f"{site.slug}/{relative_path}"

    def deploy(
        self,
        *,
        site_id: str | UUID,
        owner_id: str,
        files: Iterable[UploadedFile] | UploadBundle,
        replace: bool = False,
    ) -> DeployResult:
        run = DeploymentRun(site_id=str(site_id), owner_id=owner_id)
        try:
            site = self.sites.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        except NotFoundError:
            run.advance(DeploymentState.failed, reason="not_found")
            raise
        run.slug = site.slug
        rejected = list(files.rejected) if isinstance(files, UploadBundle) else []

        run.advance(DeploymentState.validating)
        try:
            validated = _validate_files(files, self.max_file_bytes)
        except ValidationError as exc:
            run.advance(DeploymentState.failed, reason="validation", error=str(exc))
            raise

        run.advance(DeploymentState.uploading)
        try:
            self._upload(run, site, validated)
        except ValidationError as exc:
            # content rejected while streaming; nothing about the site or storage is at fault
            run.advance(DeploymentState.failed, reason="validation", error=str(exc))
            raise
        except StorageError as exc:
            run.advance(DeploymentState.failed, reason="storage", error=str(exc))
            self._record_failure(site=site, owner_id=owner_id, error=str(exc), file_count=len(run.uploaded_keys))
            raise

        purged = None
        if replace:
            purged = self._purge_stale(run, site)

        result = self._register(run, site, owner_id=owner_id, file_count=len(run.uploaded_keys))
        result.rejected = rejected
        result.purged = purged
        return result

    def publish_stored(self, *, site_id: str | UUID, owner_id: str) -> DeployResult:
        """Re-register whatever is already stored under the site's prefix, without uploading."""

        run = DeploymentRun(site_id=str(site_id), owner_id=owner_id)
        try:
            site = self.sites.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        except NotFoundError:
            run.advance(DeploymentState.failed, reason="not_found")
            raise
        run.slug = site.slug

        run.advance(DeploymentState.validating)
        try:
            stored = self.storage.list_prefix(self.bucket, site.slug)
        except StorageError as exc:
            run.advance(DeploymentState.failed, reason="storage", error=str(exc))
            raise
        if not stored:
            run.advance(DeploymentState.failed, reason="validation", error="no stored files")
            raise ValidationError("Site has no stored files to deploy.")
        run.uploaded_keys = [obj.key for obj in stored]
        return self._register(run, site, owner_id=owner_id, file_count=len(stored))

    def delete_site(self, *, site_id: str | UUID, owner_id: str) -> DeleteResult:
        site = self.sites.get_site_for_owner(site_id=site_id, owner_id=owner_id)
        slug = site.slug
        result = self.storage.delete_prefix(self.bucket, slug)
        if result.errors:
            logger.warning(
                "Site storage only partially removed",
                extra={"site_id": str(site.id), "slug": slug, "deleted": result.deleted, "errors": result.errors},
            )
        self.sites.delete_site(site_id=site.id, owner_id=owner_id)
        return result

    def _upload(self, run: DeploymentRun, site: Site, files: Iterable[UploadedFile]) -> None:
        if not self.storage.ensure_bucket(self.bucket):
            # Upload anyway; a missing bucket surfaces as a StorageError from the first put.
            logger.warning("Bucket not confirmed before upload", extra={"bucket": self.bucket, "slug": site.slug})
        for item in files:
            key = self.object_key(site, item.relative_path)
            try:
                self.storage.put_object(self.bucket, key, item.data, item.content_type)
            except StorageError:
                logger.error(
                    "Deployment upload aborted",
                    extra={"site_id": str(site.id), "slug": site.slug, "key": key, "uploaded": len(run.uploaded_keys)},
                )
                raise
            run.uploaded_keys.append(key)

    def _purge_stale(self, run: DeploymentRun, site: Site) -> Optional[DeleteResult]:
        keep = set(run.uploaded_keys)
        try:
            stored = self.storage.list_prefix(self.bucket, site.slug)
        except StorageError as exc:
            logger.warning("Stale file purge skipped", extra={"site_id": str(site.id), "slug": site.slug, "error": str(exc)})
            return None
        stale = [obj.key for obj in stored if obj.key not in keep]
        result = self.storage.delete_keys(self.bucket, stale)
        logger.info(
            "Purged stale site files",
            extra={"site_id": str(site.id), "slug": site.slug, "deleted": result.deleted, "errors": result.errors},
        )
        return result

    def _register(self, run: DeploymentRun, site: Site, *, owner_id: str, file_count: int) -> DeployResult:
        run.advance(DeploymentState.registering, files=file_count)
        url = self.site_url(site)
        site_ref = {"site_id": str(site.id), "slug": site.slug, "url": url}
        try:
            site = self.sites.mark_deployed(site_id=site.id, owner_id=owner_id, public_url=url)
            deployment = self.deployments.create(
                site_id=site.id,
                owner_id=owner_id,
                status=DeploymentStatusEnum.active,
                version=site.version,
                deployed_url=url,
                deployed_at=utcnow(),
                file_count=file_count,
            )
        except (SQLAlchemyError, NotFoundError) as exc:
            self.session.rollback()
            logger.exception(
                "Deployment registry update failed after upload",
                extra=site_ref,
                exc_info=exc,
            )
            run.advance(DeploymentState.active, warning=REGISTRY_WARNING)
            return DeployResult(
                success=True,
                state=run.state,
                site=site,
                url=url,
                warning=REGISTRY_WARNING,
                files_uploaded=file_count,
            )

        run.advance(DeploymentState.active, version=site.version)
        return DeployResult(
            success=True,
            state=run.state,
            site=site,
            url=url,
            deployment=deployment,
            files_uploaded=file_count,
        )

    def _record_failure(self, *, site: Site, owner_id: str, error: str, file_count: int) -> None:
        site_ref = {"site_id": str(site.id), "slug": site.slug}
        try:
            self.deployments.create(
                site_id=site.id,
                owner_id=owner_id,
                status=DeploymentStatusEnum.failed,
                version=site.version,
                file_count=file_count,
                error=error[:2000],
            )
            self.sites.mark_failed(site_id=site.id, owner_id=owner_id)
        except (SQLAlchemyError, NotFoundError) as exc:
            self.session.rollback()
            logger.exception(
                "Unable to record failed deployment",
                extra=site_ref,
                exc_info=exc,
            )

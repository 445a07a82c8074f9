from __future__ import annotations

import logging
import os
import tempfile
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from launchpad.auth.dependencies import AuthContext, get_current_user
from launchpad.container import Container, get_container
from launchpad.db.deps import get_session
from launchpad.db.models import Deployment, Site, SiteEnvVar
from launchpad.db.repositories.deployments import DeploymentsRepository
from launchpad.db.repositories.env_vars import EnvVarInput, EnvVarsRepository
from launchpad.db.repositories.sites import SitesRepository
from launchpad.schemas.sites import (
    DeleteSiteResponse,
    DeploymentResponse,
    DeployResponse,
    EnvVarResponse,
    EnvVarsReplaceRequest,
    EnvVarsResponse,
    RejectedFileResponse,
    SiteCreateRequest,
    SiteFileResponse,
    SiteResponse,
    SiteUpdateRequest,
    UploadResponse,
)
from launchpad.services.deployments import DeploymentOrchestrator, DeployResult
from launchpad.services.errors import ValidationError
from launchpad.services.uploads import UploadBundle, ingest_archive, ingest_folder

router = APIRouter(prefix="/api/sites", tags=["sites"])
logger = logging.getLogger(__name__)

SECRET_MASK = "********"
_COPY_CHUNK_BYTES = 1024 * 1024


def get_orchestrator(
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        session=session,
        storage=container.storage,
        bucket=container.bucket,
        max_file_bytes=container.settings.UPLOAD_MAX_FILE_BYTES,
    )


def _site_response(site: Site) -> SiteResponse:
    return SiteResponse(
        id=str(site.id),
        name=site.name,
        slug=site.slug,
        status=site.status.value,
        publicUrl=site.public_url,
        version=site.version,
        createdAt=site.created_at,
        updatedAt=site.updated_at,
    )


def _deployment_response(deployment: Deployment) -> DeploymentResponse:
    return DeploymentResponse(
        id=str(deployment.id),
        siteId=str(deployment.site_id),
        status=deployment.status.value,
        version=deployment.version,
        deployedUrl=deployment.deployed_url,
        deployedAt=deployment.deployed_at,
        fileCount=deployment.file_count,
        error=deployment.error,
        createdAt=deployment.created_at,
    )


def _env_var_response(env_var: SiteEnvVar) -> EnvVarResponse:
    return EnvVarResponse(
        id=str(env_var.id),
        key=env_var.key,
        value=SECRET_MASK if env_var.is_secret else env_var.value,
        is_secret=env_var.is_secret,
        createdAt=env_var.created_at,
        updatedAt=env_var.updated_at,
    )


def _upload_response(result: DeployResult, *, site: Site, received: int) -> UploadResponse:
    return UploadResponse(
        success=result.success,
        siteId=str(site.id),
        slug=site.slug,
        filesReceived=received,
        rejected=[RejectedFileResponse(path=item.relative_path, reason=item.reason) for item in result.rejected],
        url=result.url,
        deployment=_deployment_response(result.deployment) if result.deployment else None,
        warning=result.warning,
        purged=result.purged.deleted if result.purged else None,
    )


def _resolve_target_site(
    *,
    session: Session,
    auth: AuthContext,
    site_id: Optional[str],
    site_name: Optional[str],
    bundle: UploadBundle,
) -> Site:
    sites_repo = SitesRepository(session)
    if site_id:
        return sites_repo.get_site_for_owner(site_id=site_id, owner_id=auth.user_id)
    # The upload is already ingested, so an invalid bundle never leaves an empty site behind.
    site = sites_repo.create_site(owner_id=auth.user_id, name=site_name or "")
    logger.info(
        "Created site for upload",
        extra={"site_id": str(site.id), "slug": site.slug, "files": len(bundle)},
    )
    return site


def _spool_archive(upload: UploadFile, *, max_bytes: int, temp_dir: Optional[str]) -> str:
    handle = tempfile.NamedTemporaryFile(prefix="launchpad-", suffix=".zip", dir=temp_dir, delete=False)
    written = 0
    try:
        with handle:
            upload.file.seek(0)
            while True:
                chunk = upload.file.read(_COPY_CHUNK_BYTES)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise ValidationError(f"Archive exceeds {max_bytes} bytes.")
                handle.write(chunk)
    except Exception:
        os.unlink(handle.name)
        raise
    if written == 0:
        os.unlink(handle.name)
        raise ValidationError("empty upload")
    return handle.name


@router.get("", response_model=list[SiteResponse])
def list_sites(
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    sites = SitesRepository(session).list_for_owner(owner_id=auth.user_id)
    return [_site_response(site) for site in sites]


@router.post("", response_model=SiteResponse, status_code=status.HTTP_201_CREATED)
def create_site(
    payload: SiteCreateRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    site = SitesRepository(session).create_site(owner_id=auth.user_id, name=payload.name, slug=payload.slug)
    return _site_response(site)


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
def upload_site_archive(
    zipFile: UploadFile = File(...),
    siteId: Optional[str] = Form(None),
    siteName: Optional[str] = Form(None),
    replace: bool = Form(False),
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    if not siteId and not (siteName or "").strip():
        raise ValidationError("siteId or siteName is required.")
    settings = container.settings
    archive_path = _spool_archive(
        zipFile,
        max_bytes=settings.UPLOAD_MAX_ARCHIVE_BYTES,
        temp_dir=settings.upload_temp_dir,
    )
    try:
        bundle = ingest_archive(archive_path, limits=container.upload_limits)
        site = _resolve_target_site(session=session, auth=auth, site_id=siteId, site_name=siteName, bundle=bundle)
        result = orchestrator.deploy(site_id=site.id, owner_id=auth.user_id, files=bundle, replace=replace)
    finally:
        os.unlink(archive_path)
    return _upload_response(result, site=result.site or site, received=len(bundle) + len(bundle.rejected))


@router.post("/upload-folder", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
def upload_site_folder(
    files: list[UploadFile] = File(...),
    paths: Optional[list[str]] = Form(None),
    siteId: Optional[str] = Form(None),
    siteName: Optional[str] = Form(None),
    replace: bool = Form(False),
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    if not siteId and not (siteName or "").strip():
        raise ValidationError("siteId or siteName is required.")
    if paths and len(paths) != len(files):
        raise ValidationError("paths must list one entry per uploaded file.")

    # Oversized files only need enough bytes to prove they are oversized.
    read_limit = container.settings.UPLOAD_MAX_FILE_BYTES + 1
    entries: list[tuple[str, bytes, Optional[str]]] = []
    for index, upload in enumerate(files):
        relative_path = paths[index] if paths else (upload.filename or "")
        entries.append((relative_path, upload.file.read(read_limit), upload.content_type))

    bundle = ingest_folder(entries, limits=container.upload_limits)
    site = _resolve_target_site(session=session, auth=auth, site_id=siteId, site_name=siteName, bundle=bundle)
    result = orchestrator.deploy(site_id=site.id, owner_id=auth.user_id, files=bundle, replace=replace)
    return _upload_response(result, site=result.site or site, received=len(files))


@router.get("/{site_id}", response_model=SiteResponse)
def get_site(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    site = SitesRepository(session).get_site_for_owner(site_id=site_id, owner_id=auth.user_id)
    return _site_response(site)


@router.patch("/{site_id}", response_model=SiteResponse)
def update_site(
    site_id: str,
    payload: SiteUpdateRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    site = SitesRepository(session).rename(site_id=site_id, owner_id=auth.user_id, name=payload.name)
    return _site_response(site)


@router.delete("/{site_id}", response_model=DeleteSiteResponse)
def delete_site(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.delete_site(site_id=site_id, owner_id=auth.user_id)
    return DeleteSiteResponse(success=True, filesDeleted=result.deleted, fileErrors=result.errors)


@router.post("/{site_id}/deploy", response_model=DeployResponse)
def deploy_site(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.publish_stored(site_id=site_id, owner_id=auth.user_id)
    return DeployResponse(
        success=result.success,
        url=result.url,
        deployment=_deployment_response(result.deployment) if result.deployment else None,
        warning=result.warning,
    )


@router.get("/{site_id}/files", response_model=list[SiteFileResponse])
def list_site_files(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
):
    site = SitesRepository(session).get_site_for_owner(site_id=site_id, owner_id=auth.user_id)
    prefix = f"{site.slug}/"
    objects = container.storage.list_prefix(container.bucket, site.slug)
    return [
        SiteFileResponse(
            path=obj.key[len(prefix):],
            key=obj.key,
            size=obj.size,
            url=container.storage.get_public_url(container.bucket, obj.key),
            lastModified=obj.last_modified,
        )
        for obj in objects
    ]


@router.get("/{site_id}/deployments", response_model=list[DeploymentResponse])
def list_site_deployments(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    site = SitesRepository(session).get_site_for_owner(site_id=site_id, owner_id=auth.user_id)
    deployments = DeploymentsRepository(session).list_for_site(site_id=site.id)
    return [_deployment_response(deployment) for deployment in deployments]


@router.get("/{site_id}/env", response_model=EnvVarsResponse)
def get_site_env_vars(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    env_vars = EnvVarsRepository(session).list(site_id=site_id, owner_id=auth.user_id)
    return EnvVarsResponse(envVars=[_env_var_response(item) for item in env_vars])


@router.post("/{site_id}/env", response_model=EnvVarsResponse)
def replace_site_env_vars(
    site_id: str,
    payload: EnvVarsReplaceRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    env_vars = EnvVarsRepository(session).replace_all(
        site_id=site_id,
        owner_id=auth.user_id,
        env_vars=[EnvVarInput(key=item.key, value=item.value, is_secret=item.is_secret) for item in payload.envVars],
    )
    return EnvVarsResponse(envVars=[_env_var_response(item) for item in env_vars])

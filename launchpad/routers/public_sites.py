from __future__ import annotations

import logging
from posixpath import basename

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from launchpad.container import Container, get_container
from launchpad.db.deps import get_session
from launchpad.db.repositories.sites import SitesRepository
from launchpad.services.errors import ValidationError
from launchpad.services.uploads import normalize_relative_path

router = APIRouter(prefix="/sites", tags=["public"])
logger = logging.getLogger(__name__)

INDEX_DOCUMENT = "index.html"


def _candidate_paths(path: str) -> list[str]:
    """Object paths to try for a request path, most specific first."""

    if not path.strip("/"):
        return [INDEX_DOCUMENT]
    try:
        relative_path = normalize_relative_path(path)
    except ValidationError:
        return []
    if path.endswith("/"):
        return [f"{relative_path}/{INDEX_DOCUMENT}"]
    if "." in basename(relative_path):
        return [relative_path]
    # Extensionless routes belong to the client-side router unless a directory index exists.
    return [relative_path, f"{relative_path}/{INDEX_DOCUMENT}", INDEX_DOCUMENT]


def _serve(*, slug: str, path: str, session: Session, container: Container) -> Response:
    # Status is not checked: the row stays draft when the registry write after an upload fails.
    site = SitesRepository(session).get_by_slug(slug=slug)
    if not site:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")

    for candidate in _candidate_paths(path):
        found = container.storage.get_object(container.bucket, f"{site.slug}/{candidate}")
        if found is None:
            continue
        data, content_type = found
        return Response(content=data, media_type=content_type)

    logger.debug("Public site path not found", extra={"slug": slug, "path": path})
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")


@router.get("/{slug}")
def serve_site_root(
    slug: str,
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
):
    return _serve(slug=slug, path="", session=session, container=container)


@router.get("/{slug}/{path:path}")
def serve_site_file(
    slug: str,
    path: str,
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
):
    return _serve(slug=slug, path=path, session=session, container=container)

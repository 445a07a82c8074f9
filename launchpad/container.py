from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from launchpad.auth.identity import IdentityVerifier
from launchpad.config import Settings
from launchpad.db.base import create_db_engine, create_session_factory
from launchpad.services.object_store import ObjectStore
from launchpad.services.site_storage import SiteStorage
from launchpad.services.uploads import UploadLimits


@dataclass
class Container:
    """Process-wide clients, built once by the app factory and shared by every request."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    storage: SiteStorage
    identity: IdentityVerifier

    @property
    def bucket(self) -> str:
        return self.settings.STORAGE_BUCKET

    @property
    def upload_limits(self) -> UploadLimits:
        return UploadLimits(
            max_file_bytes=self.settings.UPLOAD_MAX_FILE_BYTES,
            max_files=self.settings.UPLOAD_MAX_FILES,
            excess_policy=self.settings.UPLOAD_EXCESS_FILES_POLICY,
            max_archive_bytes=self.settings.UPLOAD_MAX_ARCHIVE_BYTES,
        )


def build_container(
    settings: Settings,
    *,
    store: Optional[ObjectStore] = None,
    identity: Optional[IdentityVerifier] = None,
) -> Container:
    engine = create_db_engine(settings)
    storage = SiteStorage(
        store or ObjectStore.from_settings(settings),
        public_base_url=settings.public_storage_base_url,
        upload_attempts=settings.STORAGE_UPLOAD_ATTEMPTS,
        retry_delay_seconds=settings.STORAGE_RETRY_DELAY_SECONDS,
    )
    return Container(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        storage=storage,
        identity=identity or IdentityVerifier(settings),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container

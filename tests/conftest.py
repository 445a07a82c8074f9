import os
import sys
from pathlib import Path
from typing import Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PUBLIC_BASE_URL", "https://launchpad.test")
os.environ.setdefault("STORAGE_RETRY_DELAY_SECONDS", "0")

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from launchpad.auth.dependencies import AuthContext, get_current_user
from launchpad.auth.identity import IdentityVerifier
from launchpad.config import Settings
from launchpad.container import Container
from launchpad.db.base import create_db_engine, create_session_factory, init_db
from launchpad.main import create_app
from launchpad.services.object_store import StoredObject
from launchpad.services.site_storage import SiteStorage


OWNER_ID = "user-a"
OTHER_OWNER_ID = "user-b"


def client_error(code: str = "InternalError", operation: str = "PutObject", status_code: Optional[int] = None) -> ClientError:
    response = {"Error": {"Code": code, "Message": f"{code} from fake store"}}
    if status_code is not None:
        response["ResponseMetadata"] = {"HTTPStatusCode": status_code}
    return ClientError(response, operation)


class FakeObjectStore:
    """In-memory stand-in for the boto3-backed ObjectStore with failure injection."""

    def __init__(self) -> None:
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], tuple[bytes, Optional[str]]] = {}
        self.put_calls: list[str] = []
        self.fail_puts = 0
        self.fail_put_error: Optional[ClientError] = None
        self.fail_put_keys: set[str] = set()
        self.fail_delete_keys: set[str] = set()
        self.fail_list = False
        self.fail_bucket_checks = False

    def bucket_exists(self, bucket: str) -> bool:
        if self.fail_bucket_checks:
            raise client_error("AccessDenied", "HeadBucket")
        return bucket in self.buckets

    def create_bucket(self, bucket: str) -> None:
        self.buckets.add(bucket)

    def put_object(self, *, bucket: str, key: str, data: bytes, content_type: Optional[str]) -> None:
        self.put_calls.append(key)
        if self.fail_put_error is not None:
            raise self.fail_put_error
        if key in self.fail_put_keys:
            raise client_error()
        if self.fail_puts:
            self.fail_puts -= 1
            raise client_error()
        self.objects[(bucket, key)] = (bytes(data), content_type)

    def get_object(self, *, bucket: str, key: str):
        return self.objects.get((bucket, key))

    def list_objects(self, *, bucket: str, prefix: str) -> list[StoredObject]:
        if self.fail_list:
            raise client_error("InternalError", "ListObjectsV2")
        return [
            StoredObject(key=key, size=len(data), content_type=content_type)
            for (stored_bucket, key), (data, content_type) in self.objects.items()
            if stored_bucket == bucket and key.startswith(prefix)
        ]

    def delete_object(self, *, bucket: str, key: str) -> None:
        if key in self.fail_delete_keys:
            raise client_error("InternalError", "DeleteObject")
        self.objects.pop((bucket, key), None)

    def keys(self, bucket: str = "sites") -> list[str]:
        return sorted(key for stored_bucket, key in self.objects if stored_bucket == bucket)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        PUBLIC_BASE_URL="https://launchpad.test",
        STORAGE_BUCKET="sites",
        STORAGE_RETRY_DELAY_SECONDS=0,
        UPLOAD_MAX_FILE_BYTES=1024,
        UPLOAD_MAX_FILES=5,
        UPLOAD_MAX_ARCHIVE_BYTES=64 * 1024,
    )


@pytest.fixture()
def engine(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def site_storage(settings, fake_store, sleeps) -> SiteStorage:
    return SiteStorage(
        fake_store,
        public_base_url=settings.public_storage_base_url,
        upload_attempts=3,
        retry_delay_seconds=0.5,
        sleep=sleeps.append,
    )


@pytest.fixture()
def container(settings, engine, session_factory, site_storage) -> Container:
    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        storage=site_storage,
        identity=IdentityVerifier(settings),
    )


@pytest.fixture()
def app(container):
    return create_app(container=container)


@pytest.fixture()
def auth_context() -> AuthContext:
    return AuthContext(user_id=OWNER_ID)


@pytest.fixture()
def override_dependencies(app, auth_context):
    def get_user_override():
        return auth_context

    app.dependency_overrides[get_current_user] = get_user_override
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def api_client(app, override_dependencies):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def public_client(app):
    with TestClient(app) as client:
        yield client

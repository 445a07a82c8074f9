import pytest
from pydantic import ValidationError as SettingsValidationError

from launchpad.config import Settings
from launchpad.container import build_container


def test_public_storage_base_url_falls_back_to_public_base_url():
    settings = Settings(PUBLIC_BASE_URL="https://launchpad.test/", STORAGE_PUBLIC_BASE_URL=None)

    assert settings.public_storage_base_url == "https://launchpad.test"
    assert Settings(STORAGE_PUBLIC_BASE_URL="https://cdn.test/").public_storage_base_url == "https://cdn.test"


def test_upload_limits_must_be_positive():
    with pytest.raises(SettingsValidationError):
        Settings(UPLOAD_MAX_FILES=0)
    with pytest.raises(SettingsValidationError):
        Settings(UPLOAD_EXCESS_FILES_POLICY="ignore")


def test_build_container_wires_settings(fake_store):
    settings = Settings(
        DATABASE_URL="sqlite://",
        STORAGE_BUCKET="static",
        STORAGE_UPLOAD_ATTEMPTS=5,
        UPLOAD_EXCESS_FILES_POLICY="truncate",
    )

    container = build_container(settings, store=fake_store)
    try:
        assert container.bucket == "static"
        assert container.storage.upload_attempts == 5
        assert container.upload_limits.excess_policy == "truncate"
        assert container.storage.get_public_url("static", "demo/") == "https://launchpad.test/static/demo/"
    finally:
        container.engine.dispose()

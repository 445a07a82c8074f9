import pytest
from sqlalchemy.exc import SQLAlchemyError

from launchpad.db.repositories.env_vars import EnvVarInput, EnvVarsRepository
from launchpad.db.repositories.sites import SitesRepository
from launchpad.services.errors import NotFoundError, ValidationError

from conftest import OTHER_OWNER_ID, OWNER_ID


@pytest.fixture()
def site(db_session):
    return SitesRepository(db_session).create_site(owner_id=OWNER_ID, name="Demo", slug="demo")


def test_list_is_empty_for_new_site(db_session, site):
    assert EnvVarsRepository(db_session).list(site_id=site.id, owner_id=OWNER_ID) == []


def test_replace_all_replaces_full_set(db_session, site):
    repo = EnvVarsRepository(db_session)
    repo.replace_all(
        site_id=site.id,
        owner_id=OWNER_ID,
        env_vars=[EnvVarInput(key="API_URL", value="https://api.test"), EnvVarInput(key="TOKEN", value="s3cret", is_secret=True)],
    )

    stored = repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="ONLY", value="1")])

    assert [(item.key, item.value) for item in stored] == [("ONLY", "1")]
    assert [item.key for item in repo.list(site_id=site.id, owner_id=OWNER_ID)] == ["ONLY"]


def test_replace_all_with_empty_list_clears(db_session, site):
    repo = EnvVarsRepository(db_session)
    repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="A", value="1")])

    assert repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[]) == []
    assert repo.list(site_id=site.id, owner_id=OWNER_ID) == []


def test_duplicate_keys_rejected_before_existing_values_are_deleted(db_session, site):
    repo = EnvVarsRepository(db_session)
    repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="KEEP", value="1")])

    with pytest.raises(ValidationError, match="Duplicate"):
        repo.replace_all(
            site_id=site.id,
            owner_id=OWNER_ID,
            env_vars=[EnvVarInput(key="A", value="1"), EnvVarInput(key="A", value="2")],
        )

    assert [item.key for item in repo.list(site_id=site.id, owner_id=OWNER_ID)] == ["KEEP"]


@pytest.mark.parametrize("key", ["", "1ABC", "WITH-DASH", "has space", "K" * 256])
def test_invalid_keys_rejected(db_session, site, key):
    with pytest.raises(ValidationError):
        EnvVarsRepository(db_session).replace_all(
            site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key=key, value="x")]
        )


def test_other_owner_cannot_read_or_replace(db_session, site):
    repo = EnvVarsRepository(db_session)
    repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="A", value="1")])

    with pytest.raises(NotFoundError):
        repo.list(site_id=site.id, owner_id=OTHER_OWNER_ID)
    with pytest.raises(NotFoundError):
        repo.replace_all(site_id=site.id, owner_id=OTHER_OWNER_ID, env_vars=[])

    assert [item.key for item in repo.list(site_id=site.id, owner_id=OWNER_ID)] == ["A"]


def test_failed_insert_rolls_back_delete(db_session, site, monkeypatch):
    repo = EnvVarsRepository(db_session)
    repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="KEEP", value="1")])

    def failing_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(SQLAlchemyError):
        repo.replace_all(site_id=site.id, owner_id=OWNER_ID, env_vars=[EnvVarInput(key="NEW", value="2")])
    monkeypatch.undo()

    assert [item.key for item in repo.list(site_id=site.id, owner_id=OWNER_ID)] == ["KEEP"]

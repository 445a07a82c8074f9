import io
import zipfile

from launchpad.db.repositories.sites import SitesRepository

from conftest import OTHER_OWNER_ID


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def _upload_folder(api_client, files: dict[str, bytes], **form):
    payload = [("files", (path, data, "application/octet-stream")) for path, data in files.items()]
    return api_client.post("/api/sites/upload-folder", files=payload, data=form)


def test_health(api_client):
    assert api_client.get("/health").json() == {"ok": True}
    assert api_client.get("/health/db").json() == {"db": "ok"}


def test_requests_without_token_are_rejected(public_client):
    resp = public_client.get("/api/sites")

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing bearer token"


def test_create_list_get_and_rename_site(api_client, db_session):
    SitesRepository(db_session).create_site(owner_id=OTHER_OWNER_ID, name="Theirs", slug="theirs")

    created = api_client.post("/api/sites", json={"name": "Demo", "slug": "demo"})
    assert created.status_code == 201
    body = created.json()
    assert (body["slug"], body["status"], body["version"], body["publicUrl"]) == ("demo", "draft", 0, None)

    listed = api_client.get("/api/sites")
    assert [item["slug"] for item in listed.json()] == ["demo"]

    fetched = api_client.get(f"/api/sites/{body['id']}")
    assert fetched.json()["name"] == "Demo"

    renamed = api_client.patch(f"/api/sites/{body['id']}", json={"name": "Renamed"})
    assert renamed.status_code == 200
    assert (renamed.json()["name"], renamed.json()["slug"]) == ("Renamed", "demo")


def test_create_site_errors(api_client):
    assert api_client.post("/api/sites", json={"name": "Demo", "slug": "demo"}).status_code == 201

    duplicate = api_client.post("/api/sites", json={"name": "Again", "slug": "demo"})
    assert duplicate.status_code == 409

    invalid = api_client.post("/api/sites", json={"name": "Bad", "slug": "Not A Slug"})
    assert invalid.status_code == 400

    missing_name = api_client.post("/api/sites", json={"slug": "nameless"})
    assert missing_name.status_code == 422


def test_other_owners_site_is_not_found(api_client, db_session):
    theirs = SitesRepository(db_session).create_site(owner_id=OTHER_OWNER_ID, name="Theirs", slug="theirs")
    site_id = str(theirs.id)

    for method, path in [
        ("get", f"/api/sites/{site_id}"),
        ("delete", f"/api/sites/{site_id}"),
        ("post", f"/api/sites/{site_id}/deploy"),
        ("get", f"/api/sites/{site_id}/files"),
        ("get", f"/api/sites/{site_id}/deployments"),
        ("get", f"/api/sites/{site_id}/env"),
    ]:
        resp = getattr(api_client, method)(path)
        assert resp.status_code == 404, path
        assert resp.json() == {"detail": "Site not found"}

    assert api_client.post(f"/api/sites/{site_id}/env", json={"envVars": []}).status_code == 404
    assert api_client.patch(f"/api/sites/{site_id}", json={"name": "Mine now"}).status_code == 404
    upload = _upload_folder(api_client, {"index.html": b"pwned"}, siteId=site_id)
    assert upload.status_code == 404


def test_upload_folder_creates_and_deploys_site(api_client, fake_store):
    resp = _upload_folder(
        api_client,
        {"index.html": b"<h1>hi</h1>", "css/site.css": b"body{}"},
        siteName="Demo",
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["slug"] == "demo"
    assert body["filesReceived"] == 2
    assert body["url"] == "https://launchpad.test/sites/demo/"
    assert body["deployment"]["version"] == 1
    assert body["warning"] is None
    assert fake_store.objects[("sites", "demo/css/site.css")] == (b"body{}", "text/css")

    site = api_client.get(f"/api/sites/{body['siteId']}").json()
    assert (site["status"], site["version"], site["publicUrl"]) == ("active", 1, body["url"])


def test_upload_folder_paths_override_filenames(api_client, fake_store):
    resp = api_client.post(
        "/api/sites/upload-folder",
        files=[
            ("files", ("index.html", b"home", "text/html")),
            ("files", ("app.js", b"run()", "application/javascript")),
        ],
        data={"siteName": "Paths", "paths": ["index.html", "static/js/app.js"]},
    )

    assert resp.status_code == 201
    assert fake_store.keys() == ["paths/index.html", "paths/static/js/app.js"]


def test_upload_folder_to_existing_site_with_replace(api_client, fake_store):
    site_id = api_client.post("/api/sites", json={"name": "Demo", "slug": "demo"}).json()["id"]
    _upload_folder(api_client, {"index.html": b"v1", "old.html": b"old"}, siteId=site_id)

    resp = _upload_folder(api_client, {"index.html": b"v2"}, siteId=site_id, replace="true")

    assert resp.status_code == 201
    assert resp.json()["deployment"]["version"] == 2
    assert resp.json()["purged"] == 1
    assert fake_store.keys() == ["demo/index.html"]


def test_upload_folder_reports_rejected_files(api_client):
    resp = _upload_folder(api_client, {"index.html": b"home", "video.mp4": b"x" * 4096}, siteName="Demo")

    assert resp.status_code == 201
    assert resp.json()["rejected"] == [{"path": "video.mp4", "reason": "File exceeds 1024 bytes."}]


def test_upload_folder_validation_failures_create_no_site(api_client, fake_store):
    traversal = api_client.post(
        "/api/sites/upload-folder",
        files=[("files", ("passwd", b"root", "text/plain"))],
        data={"siteName": "Evil", "paths": ["../../etc/passwd"]},
    )
    too_many = _upload_folder(api_client, {f"page-{index}.html": b"x" for index in range(6)}, siteName="Many")
    no_target = _upload_folder(api_client, {"index.html": b"home"})

    assert traversal.status_code == 400
    assert too_many.status_code == 400
    assert "Too many files" in too_many.json()["detail"]
    assert no_target.status_code == 400
    assert api_client.get("/api/sites").json() == []
    assert fake_store.put_calls == []


def test_upload_zip_strips_root_folder(api_client, fake_store):
    archive = _zip({"build/index.html": b"<h1>zip</h1>", "build/assets/app.js": b"run()"})

    resp = api_client.post(
        "/api/sites/upload",
        files={"zipFile": ("site.zip", archive, "application/zip")},
        data={"siteName": "Zip Site"},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["slug"] == "zip-site"
    assert body["filesReceived"] == 2
    assert fake_store.keys() == ["zip-site/assets/app.js", "zip-site/index.html"]


def test_upload_corrupt_zip_is_rejected(api_client):
    resp = api_client.post(
        "/api/sites/upload",
        files={"zipFile": ("site.zip", b"not a zip", "application/zip")},
        data={"siteName": "Broken"},
    )

    assert resp.status_code == 400
    assert "Invalid zip archive" in resp.json()["detail"]


def test_upload_storage_failure_returns_500_and_marks_site_failed(api_client, fake_store):
    fake_store.fail_puts = 100

    resp = _upload_folder(api_client, {"index.html": b"home"}, siteName="Demo")

    assert resp.status_code == 500
    assert "upload failed after 3 attempts" in resp.json()["detail"]
    sites = api_client.get("/api/sites").json()
    assert [(item["slug"], item["status"]) for item in sites] == [("demo", "failed")]
    deployments = api_client.get(f"/api/sites/{sites[0]['id']}/deployments").json()
    assert [item["status"] for item in deployments] == ["failed"]


def test_deploy_files_and_deployments_endpoints(api_client):
    site_id = _upload_folder(api_client, {"index.html": b"home", "app.js": b"run()"}, siteName="Demo").json()["siteId"]

    deployed = api_client.post(f"/api/sites/{site_id}/deploy")
    assert deployed.status_code == 200
    assert deployed.json()["success"] is True
    assert deployed.json()["url"] == "https://launchpad.test/sites/demo/"
    assert deployed.json()["deployment"]["version"] == 2

    files = api_client.get(f"/api/sites/{site_id}/files").json()
    assert [(item["path"], item["size"]) for item in files] == [("app.js", 5), ("index.html", 4)]
    assert files[1]["url"] == "https://launchpad.test/sites/demo/index.html"

    history = api_client.get(f"/api/sites/{site_id}/deployments").json()
    assert [item["version"] for item in history] == [2, 1]


def test_deploy_without_stored_files_is_rejected(api_client):
    site_id = api_client.post("/api/sites", json={"name": "Empty"}).json()["id"]

    resp = api_client.post(f"/api/sites/{site_id}/deploy")

    assert resp.status_code == 400


def test_env_vars_roundtrip_masks_secrets(api_client):
    site_id = api_client.post("/api/sites", json={"name": "Demo"}).json()["id"]
    assert api_client.get(f"/api/sites/{site_id}/env").json() == {"envVars": []}

    saved = api_client.post(
        f"/api/sites/{site_id}/env",
        json={"envVars": [{"key": "API_URL", "value": "https://api.test"}, {"key": "TOKEN", "value": "s3cret", "is_secret": True}]},
    )
    assert saved.status_code == 200

    listed = api_client.get(f"/api/sites/{site_id}/env").json()["envVars"]
    assert [(item["key"], item["value"], item["is_secret"]) for item in listed] == [
        ("API_URL", "https://api.test", False),
        ("TOKEN", "********", True),
    ]

    duplicate = api_client.post(
        f"/api/sites/{site_id}/env",
        json={"envVars": [{"key": "A", "value": "1"}, {"key": "A", "value": "2"}]},
    )
    assert duplicate.status_code == 400
    assert len(api_client.get(f"/api/sites/{site_id}/env").json()["envVars"]) == 2

    cleared = api_client.post(f"/api/sites/{site_id}/env", json={"envVars": []})
    assert cleared.json() == {"envVars": []}


def test_delete_site_removes_files(api_client, fake_store):
    site_id = _upload_folder(api_client, {"index.html": b"home", "app.js": b"run()"}, siteName="Demo").json()["siteId"]

    resp = api_client.delete(f"/api/sites/{site_id}")

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "filesDeleted": 2, "fileErrors": 0}
    assert fake_store.keys() == []
    assert api_client.get(f"/api/sites/{site_id}").status_code == 404

import pytest

from launchpad.services.content_types import DEFAULT_CONTENT_TYPE, content_type_for, resolve_content_type


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("index.html", "text/html"),
        ("assets/app.JS", "application/javascript"),
        ("styles/site.css", "text/css"),
        ("fonts/inter.woff2", "font/woff2"),
        ("img/logo.svg", "image/svg+xml"),
        ("manifest.webmanifest", "application/manifest+json"),
        ("LICENSE", DEFAULT_CONTENT_TYPE),
    ],
)
def test_content_type_for_web_assets(path, expected):
    assert content_type_for(path) == expected


def test_resolve_content_type_prefers_specific_declared_type():
    assert resolve_content_type("data.bin", "image/png; charset=binary") == "image/png"


def test_resolve_content_type_infers_when_declared_type_is_generic():
    assert resolve_content_type("index.html", "application/octet-stream") == "text/html"
    assert resolve_content_type("app.js", None) == "application/javascript"

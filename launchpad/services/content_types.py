from __future__ import annotations

import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# mimetypes varies by platform for several web asset types; pin the ones browsers care about.
_WEB_CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
    ".wasm": "application/wasm",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

# Browser multipart uploads frequently send these for any file; treat them as "unknown".
_GENERIC_CONTENT_TYPES = {"", DEFAULT_CONTENT_TYPE, "binary/octet-stream", "application/x-www-form-urlencoded"}


def content_type_for(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _WEB_CONTENT_TYPES:
        return _WEB_CONTENT_TYPES[suffix]
    guessed = mimetypes.guess_type(path)[0]
    return guessed or DEFAULT_CONTENT_TYPE


def resolve_content_type(path: str, declared: str | None) -> str:
    content_type = (declared or "").split(";")[0].strip().lower()
    if content_type in _GENERIC_CONTENT_TYPES:
        return content_type_for(path)
    return content_type

from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Iterator, Literal, Optional, Sequence, Union

from launchpad.services.content_types import resolve_content_type
from launchpad.services.errors import ValidationError

logger = logging.getLogger(__name__)

ExcessFilesPolicy = Literal["reject", "truncate"]

_IGNORED_NAMES = {".DS_Store", "Thumbs.db", "desktop.ini"}
_IGNORED_TOP_LEVEL = {"__MACOSX"}
_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class UploadedFile:
    relative_path: str
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class RejectedFile:
    relative_path: str
    reason: str


@dataclass(frozen=True)
class UploadLimits:
    max_file_bytes: int
    max_files: int
    excess_policy: ExcessFilesPolicy = "reject"
    max_archive_bytes: Optional[int] = None


def normalize_relative_path(raw: str) -> str:
    """
    Canonical `a/b/c.ext` form of a client-supplied path.

    Traversal and absolute paths raise instead of being normalized away so nothing can escape
    the site's storage prefix.
    """

    if raw is None:
        raise ValidationError("File path is required.")
    if "\x00" in raw:
        raise ValidationError(f"Invalid file path: {raw!r}")
    text = raw.replace("\\", "/").strip()
    if not text:
        raise ValidationError("File path is required.")
    if text.startswith("/") or _WINDOWS_DRIVE_RE.match(text):
        raise ValidationError(f"Absolute file paths are not allowed: {raw}")
    segments = [segment for segment in text.split("/") if segment not in ("", ".")]
    if any(segment == ".." for segment in segments):
        raise ValidationError(f"Path traversal is not allowed: {raw}")
    if not segments:
        raise ValidationError(f"Invalid file path: {raw}")
    return "/".join(segments)


def _is_ignored(path: str) -> bool:
    parts = path.split("/")
    return parts[0] in _IGNORED_TOP_LEVEL or parts[-1] in _IGNORED_NAMES


@dataclass(frozen=True)
class _Entry:
    relative_path: str
    size: int
    declared_type: Optional[str]
    read: Callable[[], bytes]


@dataclass
class UploadBundle:
    """
    Canonical file list for one upload.

    Iterating yields `UploadedFile`s lazily; every iteration re-reads the source, so the bundle
    can be walked more than once (validation pass, upload pass).
    """

    _entries: list[_Entry]
    rejected: list[RejectedFile] = field(default_factory=list)

    def __iter__(self) -> Iterator[UploadedFile]:
        for entry in self._entries:
            data = entry.read()
            yield UploadedFile(
                relative_path=entry.relative_path,
                data=data,
                content_type=resolve_content_type(entry.relative_path, entry.declared_type),
            )

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def paths(self) -> list[str]:
        return [entry.relative_path for entry in self._entries]

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self._entries)


def _apply_limits(entries: list[_Entry], limits: UploadLimits) -> UploadBundle:
    rejected: list[RejectedFile] = []
    accepted: list[_Entry] = []
    for entry in entries:
        if entry.size > limits.max_file_bytes:
            rejected.append(
                RejectedFile(
                    relative_path=entry.relative_path,
                    reason=f"File exceeds {limits.max_file_bytes} bytes.",
                )
            )
            continue
        accepted.append(entry)

    if len(accepted) > limits.max_files:
        if limits.excess_policy == "reject":
            raise ValidationError(
                f"Too many files ({len(accepted)}); the maximum is {limits.max_files}."
            )
        for entry in accepted[limits.max_files:]:
            rejected.append(
                RejectedFile(
                    relative_path=entry.relative_path,
                    reason=f"File count exceeds {limits.max_files}.",
                )
            )
        accepted = accepted[: limits.max_files]

    if rejected:
        logger.info(
            "Upload entries rejected",
            extra={"rejected": len(rejected), "accepted": len(accepted)},
        )
    if not accepted:
        raise ValidationError("empty upload")
    return UploadBundle(_entries=accepted, rejected=rejected)


def _dedupe_last_wins(entries: list[_Entry]) -> list[_Entry]:
    by_path: dict[str, _Entry] = {}
    for entry in entries:
        by_path.pop(entry.relative_path, None)
        by_path[entry.relative_path] = entry
    return list(by_path.values())


def ingest_folder(
    files: Sequence[tuple[str, bytes, Optional[str]]],
    *,
    limits: UploadLimits,
) -> UploadBundle:
    """Normalize a folder upload: `(relative path, bytes, declared content type)` in client order."""

    entries: list[_Entry] = []
    for raw_path, data, declared_type in files:
        relative_path = normalize_relative_path(raw_path)
        if _is_ignored(relative_path):
            continue
        payload = bytes(data)
        entries.append(
            _Entry(
                relative_path=relative_path,
                size=len(payload),
                declared_type=declared_type,
                read=lambda payload=payload: payload,
            )
        )
    return _apply_limits(_dedupe_last_wins(entries), limits)


ArchiveSource = Union[str, Path, bytes, IO[bytes]]


def _open_archive(source: ArchiveSource) -> zipfile.ZipFile:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    elif hasattr(source, "seek"):
        source.seek(0)
    try:
        return zipfile.ZipFile(source)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ValidationError(f"Invalid zip archive: {exc}") from exc


def _strip_common_root(paths: list[str]) -> Optional[str]:
    roots = {path.split("/", 1)[0] for path in paths}
    if len(roots) != 1:
        return None
    root = next(iter(roots))
    if all("/" in path for path in paths):
        return root
    return None


def ingest_archive(source: ArchiveSource, *, limits: UploadLimits) -> UploadBundle:
    """
    Normalize a zip archive. Entry sizes are checked from the archive directory before any
    member is decompressed.
    """

    with _open_archive(source) as archive:
        infos = [info for info in archive.infolist() if not info.is_dir()]
        named: list[tuple[str, zipfile.ZipInfo]] = []
        for info in infos:
            relative_path = normalize_relative_path(info.filename)
            if _is_ignored(relative_path):
                continue
            named.append((relative_path, info))

    if limits.max_archive_bytes is not None:
        total = sum(info.file_size for _, info in named)
        if total > limits.max_archive_bytes:
            raise ValidationError(
                f"Archive expands to {total} bytes; the maximum is {limits.max_archive_bytes}."
            )

    root = _strip_common_root([path for path, _ in named])
    entries: list[_Entry] = []
    for relative_path, info in named:
        if root:
            relative_path = relative_path[len(root) + 1:]
        entries.append(
            _Entry(
                relative_path=relative_path,
                size=info.file_size,
                declared_type=None,
                read=_archive_reader(source, info.filename, limits.max_file_bytes),
            )
        )
    return _apply_limits(_dedupe_last_wins(entries), limits)


def _archive_reader(source: ArchiveSource, member: str, max_bytes: int) -> Callable[[], bytes]:
    def _read() -> bytes:
        with _open_archive(source) as archive:
            with archive.open(member) as handle:
                data = handle.read(max_bytes + 1)
        if len(data) > max_bytes:
            # Declared size in the central directory understated the real payload.
            raise ValidationError(f"File exceeds {max_bytes} bytes: {member}")
        return data

    return _read

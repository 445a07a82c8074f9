from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import quote

from launchpad.services.content_types import content_type_for
from launchpad.services.errors import StorageError
from launchpad.services.object_store import STORAGE_BACKEND_ERRORS, ObjectStore, StoredObject, is_retryable
from launchpad.services.retry import RetryExhaustedError, retry_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteResult:
    deleted: int
    errors: int
    prefix_removed: bool = False


class SiteStorage:
    """
    Storage adapter for published sites. Objects live at `<bucket>/<slug>/<relative path>`.

    `put_object` is the only retried operation; `delete_prefix` reports counts instead of raising
    because a partially cleaned prefix is an acceptable outcome.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        public_base_url: str,
        upload_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.store = store
        self.public_base_url = public_base_url.rstrip("/")
        self.upload_attempts = upload_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def ensure_bucket(self, name: str) -> bool:
        try:
            if self.store.bucket_exists(name):
                return True
            logger.info("Creating storage bucket", extra={"bucket": name})
            self.store.create_bucket(name)
            return True
        except STORAGE_BACKEND_ERRORS as exc:
            logger.error("Unable to ensure storage bucket", extra={"bucket": name, "error": str(exc)})
            return False

    def put_object(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        resolved_type = content_type or content_type_for(key)

        def _upload() -> None:
            self.store.put_object(bucket=bucket, key=key, data=data, content_type=resolved_type)

        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        try:
            retry_call(
                _upload,
                attempts=self.upload_attempts,
                delay_seconds=self.retry_delay_seconds,
                retry_on=STORAGE_BACKEND_ERRORS,
                retry_if=is_retryable,
                description=f"put {bucket}/{key}",
                **retry_kwargs,
            )
        except STORAGE_BACKEND_ERRORS as exc:
            logger.error("Upload rejected", extra={"bucket": bucket, "key": key, "error": str(exc)})
            raise StorageError(f"upload failed: {exc}") from exc
        except RetryExhaustedError as exc:
            logger.error(
                "Upload failed",
                extra={"bucket": bucket, "key": key, "attempts": exc.attempts, "error": str(exc.last_error)},
            )
            raise StorageError(f"upload failed after {exc.attempts} attempts: {exc.last_error}") from exc
        logger.debug("Uploaded object", extra={"bucket": bucket, "key": key, "bytes": len(data)})
        return self.get_public_url(bucket, key)

    def get_public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{quote(bucket)}/{quote(key.lstrip('/'))}"

    def get_object(self, bucket: str, key: str) -> Optional[tuple[bytes, str]]:
        try:
            found = self.store.get_object(bucket=bucket, key=key)
        except STORAGE_BACKEND_ERRORS as exc:
            logger.error("Object read failed", extra={"bucket": bucket, "key": key, "error": str(exc)})
            raise StorageError(f"read failed for {key}: {exc}") from exc
        if found is None:
            return None
        data, content_type = found
        return data, content_type or content_type_for(key)

    def list_prefix(self, bucket: str, prefix: str) -> list[StoredObject]:
        folder = _folder(prefix)
        try:
            objects = self.store.list_objects(bucket=bucket, prefix=folder)
        except STORAGE_BACKEND_ERRORS as exc:
            logger.error("Listing failed", extra={"bucket": bucket, "prefix": folder, "error": str(exc)})
            raise StorageError(f"listing failed for {folder}: {exc}") from exc
        return sorted((obj for obj in objects if obj.key != folder), key=lambda obj: obj.key)

    def delete_keys(self, bucket: str, keys: list[str]) -> DeleteResult:
        deleted = 0
        errors = 0
        for key in keys:
            try:
                self.store.delete_object(bucket=bucket, key=key)
                deleted += 1
            except STORAGE_BACKEND_ERRORS as exc:
                errors += 1
                logger.warning("Object delete failed", extra={"bucket": bucket, "key": key, "error": str(exc)})
        return DeleteResult(deleted=deleted, errors=errors)

    def delete_prefix(self, bucket: str, prefix: str) -> DeleteResult:
        folder = _folder(prefix)
        try:
            keys = [obj.key for obj in self.store.list_objects(bucket=bucket, prefix=folder)]
        except STORAGE_BACKEND_ERRORS as exc:
            logger.error("Listing for delete failed", extra={"bucket": bucket, "prefix": folder, "error": str(exc)})
            return DeleteResult(deleted=0, errors=1)

        result = self.delete_keys(bucket, [key for key in keys if key != folder])

        prefix_removed = True
        try:
            self.store.delete_object(bucket=bucket, key=folder)
        except STORAGE_BACKEND_ERRORS as exc:
            prefix_removed = False
            logger.info("Prefix marker not removed", extra={"bucket": bucket, "prefix": folder, "error": str(exc)})

        logger.info(
            "Deleted storage prefix",
            extra={"bucket": bucket, "prefix": folder, "deleted": result.deleted, "errors": result.errors},
        )
        return DeleteResult(deleted=result.deleted, errors=result.errors, prefix_removed=prefix_removed)


def _folder(prefix: str) -> str:
    cleaned = prefix.strip("/")
    if not cleaned:
        raise ValueError("Refusing to operate on the bucket root.")
    return f"{cleaned}/"

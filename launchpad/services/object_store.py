from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from launchpad.config import Settings

logger = logging.getLogger(__name__)

# Errors an S3-compatible backend raises for transient or remote failures.
STORAGE_BACKEND_ERRORS: tuple[type[Exception], ...] = (ClientError, BotoCoreError)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "SlowDown",
    "RequestTimeout",
    "RequestLimitExceeded",
    "TooManyRequestsException",
}
_PERMANENT_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "InvalidBucketName",
    "InvalidRequest",
    "NoSuchBucket",
    "SignatureDoesNotMatch",
}


def client_error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def is_retryable(exc: BaseException) -> bool:
    """Only transient failures are retried: throttling codes and 5xx responses. Other 4xx fail fast."""

    if isinstance(exc, BotoCoreError):
        return True
    if not isinstance(exc, ClientError):
        return False
    code = client_error_code(exc)
    if code in _THROTTLING_CODES:
        return True
    status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if status_code:
        return status_code >= 500
    return code not in _PERMANENT_CODES


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: Optional[datetime] = None
    content_type: Optional[str] = None


class ObjectStore:
    """
    Thin wrapper around an S3-compatible bucket store.

    Botocore's own retries are disabled; callers decide how often to retry.
    """

    def __init__(self, client) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        addressing_style = "path" if settings.STORAGE_FORCE_PATH_STYLE else "auto"
        session = boto3.session.Session()
        client = session.client(
            "s3",
            endpoint_url=settings.STORAGE_ENDPOINT,
            aws_access_key_id=settings.STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.STORAGE_SECRET_KEY,
            region_name=settings.STORAGE_REGION or "us-east-1",
            use_ssl=bool(settings.STORAGE_USE_SSL),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
                connect_timeout=settings.STORAGE_CONNECT_TIMEOUT_SECONDS,
                read_timeout=settings.STORAGE_READ_TIMEOUT_SECONDS,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        return cls(client)

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.client.head_bucket(Bucket=bucket)
            return True
        except ClientError as exc:
            if client_error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise

    def create_bucket(self, bucket: str) -> None:
        try:
            self.client.create_bucket(Bucket=bucket)
        except ClientError as exc:
            if client_error_code(exc) in _BUCKET_EXISTS_CODES:
                logger.info("Bucket already exists", extra={"bucket": bucket})
                return
            raise

    def put_object(self, *, bucket: str, key: str, data: bytes, content_type: Optional[str]) -> None:
        kwargs = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        self.client.put_object(**kwargs)

    def get_object(self, *, bucket: str, key: str) -> Optional[tuple[bytes, Optional[str]]]:
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if client_error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise
        body = obj.get("Body")
        data = body.read() if body else b""
        return data, obj.get("ContentType")

    def list_objects(self, *, bucket: str, prefix: str) -> list[StoredObject]:
        paginator = self.client.get_paginator("list_objects_v2")
        objects: list[StoredObject] = []
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for item in page.get("Contents") or []:
                objects.append(
                    StoredObject(
                        key=item["Key"],
                        size=int(item.get("Size") or 0),
                        last_modified=item.get("LastModified"),
                    )
                )
        return objects

    def delete_object(self, *, bucket: str, key: str) -> None:
        self.client.delete_object(Bucket=bucket, Key=key)

from __future__ import annotations


class LaunchpadError(RuntimeError):
    pass


class ValidationError(LaunchpadError):
    """Bad input (empty upload, unsafe path, oversized file). Never retried."""


class NotFoundError(LaunchpadError):
    """
    Site is missing or owned by another subject.

    Both cases share one message so callers cannot discover other tenants' site ids.
    """

    def __init__(self, message: str = "Site not found") -> None:
        super().__init__(message)


class ConflictError(LaunchpadError):
    pass


class StorageError(LaunchpadError):
    pass

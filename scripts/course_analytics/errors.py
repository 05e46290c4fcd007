"""Exception hierarchy shared by fetch, collection and storage."""

from __future__ import annotations

from typing import Any, Optional


class CollectionError(Exception):
    """Base class for every pipeline error."""


class ConfigurationError(CollectionError, ValueError):
    """Invalid run configuration. Raised before any work starts."""


class AuthError(CollectionError):
    """Credentials rejected by a remote API. Never retried."""


class MissingCredentialError(AuthError):
    """A credential the collector needs is not available."""

    def __init__(self, service: str, key: str) -> None:
        super().__init__(f"Missing credential {service}/{key}")
        self.service = service
        self.key = key


class FetchError(CollectionError):
    """A request kept failing after every retry attempt."""

    def __init__(
        self,
        url: str,
        attempts: int,
        cause: Optional[BaseException] = None,
        pages: Optional[list[Any]] = None,
    ) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"GET {url} failed after {attempts} attempt(s){detail}")
        self.url = url
        self.attempts = attempts
        self.cause = cause
        self.pages = pages or []


class ValidationError(CollectionError):
    """A normalized row is missing required data and must be dropped."""


class TargetMissingError(CollectionError):
    """The storage target has not been provisioned."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Target table {table} does not exist; run setup-db first")
        self.table = table


class WriteError(CollectionError):
    """The storage backend rejected a write."""

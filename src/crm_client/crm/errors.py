"""Error taxonomy and the typed result of a remote CRM call.

Remote operations never raise for HTTP-level outcomes; they return one of:
- Ok(value): the endpoint answered successfully
- NotFound(detail): the endpoint answered 404 (fallback trigger)
- Failure(error): anything else, carrying the RemoteError to re-raise
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class CRMError(Exception):
    """Base class for CRM client errors."""


class EntityNotFoundError(CRMError):
    """Requested identifier is absent from the local collection."""

    def __init__(self, entity: str, entity_id: str | None = None) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class StorageError(CRMError):
    """Local persistence failed (backend unavailable, disk/quota errors)."""


class RemoteError(CRMError):
    """A remote CRM call failed with something other than 404.

    status_code is 0 for network-level failures (no response).
    """

    def __init__(self, message: str, *, operation: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


# ── Remote result variant ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    operation: str
    detail: str = ""


@dataclass(frozen=True)
class Failure:
    error: RemoteError


RemoteResult = Union[Ok[Any], NotFound, Failure]

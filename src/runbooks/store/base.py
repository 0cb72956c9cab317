"""Resource store contract and error taxonomy.

A store exposes three operations to the reconciler:

- `get(identity)`: fresh snapshot of a Runbook, or `NotFoundError`.
- `patch_status(original, updated)`: write `updated.status` only if the stored
  resource still carries `original.metadata.resource_version`.
- `patch_metadata(original, updated)`: same conditional write for
  `updated.metadata.finalizers`. Returns None when the write released the
  last finalizer of a terminating resource and the resource is gone.

Writes never touch `spec`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from src.runbooks.models import Runbook, RunbookIdentity


class StoreError(Exception):
    """Transport or backend failure talking to the resource store."""


class NotFoundError(StoreError):
    """The resource does not exist (already deleted)."""

    def __init__(self, identity: RunbookIdentity):
        self.identity = identity
        super().__init__(f"Runbook {identity} not found")


class VersionConflictError(StoreError):
    """The stored resource changed since the version the caller observed."""

    def __init__(self, identity: RunbookIdentity, expected: Optional[str], actual: Optional[str] = None):
        self.identity = identity
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Runbook {identity} version conflict (expected {expected}, found {actual or 'unknown'})"
        )


class ResourceStore(ABC):
    """Persistence backend for Runbook resources."""

    backend: str = ""

    @abstractmethod
    async def get(self, identity: RunbookIdentity) -> Runbook:
        """Fetch the current resource.

        Raises:
            NotFoundError: The resource does not exist.
            StoreError: The backend could not be reached.
        """

    @abstractmethod
    async def patch_status(self, original: Runbook, updated: Runbook) -> Runbook:
        """Persist `updated.status` against the version of `original`.

        Raises:
            VersionConflictError: The resource was modified since `original` was read.
            NotFoundError: The resource was deleted since `original` was read.
            StoreError: The backend could not be reached.
        """

    @abstractmethod
    async def patch_metadata(self, original: Runbook, updated: Runbook) -> Optional[Runbook]:
        """Persist `updated.metadata.finalizers` against the version of `original`.

        Returns:
            The stored resource, or None if removing the last finalizer of a
            terminating resource completed its deletion.

        Raises:
            VersionConflictError: The resource was modified since `original` was read.
            NotFoundError: The resource was deleted since `original` was read.
            StoreError: The backend could not be reached.
        """

    async def close(self) -> None:
        """Release backend connections."""

"""Resource store backends for Runbook resources."""

from __future__ import annotations

from src.common.config import ConfigError, ControllerSettings
from src.runbooks.store.base import NotFoundError, ResourceStore, StoreError, VersionConflictError

__all__ = [
    "NotFoundError",
    "ResourceStore",
    "StoreError",
    "VersionConflictError",
    "create_store",
]


def create_store(settings: ControllerSettings) -> ResourceStore:
    """Build the store selected by `RUNBOOK_STORE_BACKEND`.

    Backends are imported lazily so a deployment only needs the client
    library of the backend it uses.
    """
    if settings.store_backend == "firestore":
        from src.runbooks.store.firestore_store import FirestoreRunbookStore

        return FirestoreRunbookStore(settings.firestore)
    if settings.store_backend == "kubernetes":
        from src.runbooks.store.kubernetes_store import KubernetesRunbookStore

        return KubernetesRunbookStore(settings.kubernetes)
    raise ConfigError(f"Unknown store backend: {settings.store_backend}")

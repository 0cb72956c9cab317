"""Shared Firestore utilities for the runbook controller.

Usage:
    from src.common.firestore import get_async_firestore_client, runbooks_collection

    client = get_async_firestore_client()
    collection = client.collection(runbooks_collection())
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

from src.common.config import FirestoreConfig, load_firestore_config

if TYPE_CHECKING:
    from google.cloud.firestore import AsyncClient as AsyncFirestoreClient


class FirestoreError(Exception):
    """Base exception for Firestore-related errors."""

    pass


def _client_kwargs(config: FirestoreConfig) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if config.project_id:
        kwargs["project"] = config.project_id
    if config.database_id:
        kwargs["database"] = config.database_id
    return kwargs


def get_async_firestore_client(
    config: Optional[FirestoreConfig] = None,
) -> "AsyncFirestoreClient":
    """Get a configured asyncio Firestore client for the reconcile path.

    Raises:
        FirestoreError: If google-cloud-firestore is not installed or
            client initialization fails.
    """
    try:
        from google.cloud import firestore
    except ImportError as e:
        raise FirestoreError(
            "google-cloud-firestore not installed. Run: pip install google-cloud-firestore"
        ) from e

    if config is None:
        config = load_firestore_config()

    try:
        return firestore.AsyncClient(**_client_kwargs(config))
    except Exception as e:
        raise FirestoreError(f"Failed to initialize Firestore client: {e}") from e


def get_collection_prefix(config: Optional[FirestoreConfig] = None) -> str:
    """Get the collection prefix from config or environment."""
    if config is None:
        config = load_firestore_config()
    return config.collection_prefix


def runbooks_collection(prefix: Optional[str] = None) -> str:
    """Get the Runbook resources collection name."""
    prefix = prefix or get_collection_prefix()
    return f"{prefix}runbooks"


def runbook_document_id(namespace: str, name: str) -> str:
    """Document key for a resource identity.

    Namespaces are DNS labels, so the first '.' always separates the parts.
    """
    return f"{namespace}.{name}"

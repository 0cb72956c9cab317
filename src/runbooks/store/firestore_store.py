"""Firestore-backed resource store.

Each Runbook is one document in `<prefix>runbooks`, keyed
`<namespace>.<name>`, holding the camelCase resource JSON. Firestore has no
resource versions of its own, so the store keeps an integer counter in
`metadata.resourceVersion` and bumps it on every write. Conditional writes
read the document inside an async transaction and refuse to commit when the
stored counter differs from the one the caller observed.

Deletion follows the Kubernetes contract: the declarant sets
`metadata.deletionTimestamp`; the document is removed only once a metadata
patch leaves it without finalizers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from src.common.config import FirestoreConfig
from src.common.firestore import get_async_firestore_client, runbook_document_id, runbooks_collection
from src.common.logging import get_logger
from src.runbooks.models import Runbook, RunbookIdentity
from src.runbooks.store.base import NotFoundError, ResourceStore, StoreError, VersionConflictError

logger = get_logger(__name__)


def _stored_version(data: Dict[str, Any]) -> str:
    return str((data.get("metadata") or {}).get("resourceVersion") or "0")


def _next_version(current: str) -> str:
    try:
        return str(int(current) + 1)
    except ValueError:
        return "1"


@firestore.async_transactional
async def _patch_in_transaction(
    transaction,
    doc_ref,
    identity: RunbookIdentity,
    expected_version: Optional[str],
    updates: Dict[str, Any],
    timeout: float,
    delete_when_released: bool,
) -> Optional[Dict[str, Any]]:
    """Apply `updates` only if the stored version still equals `expected_version`.

    Returns the new document data, or None if the document was deleted.
    """
    # Reads must happen before any write in a Firestore transaction.
    snapshot = await doc_ref.get(transaction=transaction, timeout=timeout)
    if not snapshot.exists:
        raise NotFoundError(identity)

    data = snapshot.to_dict() or {}
    current_version = _stored_version(data)
    if expected_version is not None and current_version != expected_version:
        raise VersionConflictError(identity, expected=expected_version, actual=current_version)

    metadata = data.get("metadata") or {}
    finalizers = updates.get("metadata.finalizers", metadata.get("finalizers") or [])
    if delete_when_released and metadata.get("deletionTimestamp") and not finalizers:
        transaction.delete(doc_ref)
        return None

    new_version = _next_version(current_version)
    transaction.update(doc_ref, {**updates, "metadata.resourceVersion": new_version})

    for key, value in updates.items():
        target = data
        parts = key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value
    data.setdefault("metadata", {})["resourceVersion"] = new_version
    return data


class FirestoreRunbookStore(ResourceStore):
    """Runbook resources persisted in Firestore."""

    backend = "firestore"

    def __init__(self, config: FirestoreConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_async_firestore_client(self.config)
        return self._client

    @property
    def collection_name(self) -> str:
        return runbooks_collection(self.config.collection_prefix)

    def _doc_ref(self, identity: RunbookIdentity):
        client = self._get_client()
        return client.collection(self.collection_name).document(
            runbook_document_id(identity.namespace, identity.name)
        )

    @staticmethod
    def _to_runbook(identity: RunbookIdentity, data: Dict[str, Any]) -> Runbook:
        metadata = data.setdefault("metadata", {})
        metadata.setdefault("namespace", identity.namespace)
        metadata.setdefault("name", identity.name)
        metadata["resourceVersion"] = _stored_version(data)
        return Runbook.from_dict(data)

    async def get(self, identity: RunbookIdentity) -> Runbook:
        try:
            snapshot = await self._doc_ref(identity).get(timeout=self.config.timeout_sec)
        except gcp_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Failed to read Runbook {identity}: {exc}") from exc
        if not snapshot.exists:
            raise NotFoundError(identity)
        return self._to_runbook(identity, snapshot.to_dict() or {})

    async def _conditional_patch(
        self,
        original: Runbook,
        updates: Dict[str, Any],
        *,
        delete_when_released: bool = False,
    ) -> Optional[Runbook]:
        identity = original.identity
        client = self._get_client()
        transaction = client.transaction()
        try:
            data = await _patch_in_transaction(
                transaction,
                self._doc_ref(identity),
                identity,
                original.metadata.resource_version,
                updates,
                self.config.timeout_sec,
                delete_when_released,
            )
        except StoreError:
            raise
        except gcp_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Failed to write Runbook {identity}: {exc}") from exc
        if data is None:
            logger.info(
                "runbook_document_deleted",
                extra={"event": "runbook_document_deleted", "namespace": identity.namespace, "runbook": identity.name},
            )
            return None
        return self._to_runbook(identity, data)

    async def patch_status(self, original: Runbook, updated: Runbook) -> Runbook:
        status = updated.status.model_dump(by_alias=True, mode="json", exclude_none=True)
        result = await self._conditional_patch(original, {"status": status})
        if result is None:
            raise StoreError(f"Runbook {original.identity} vanished during a status write")
        return result

    async def patch_metadata(self, original: Runbook, updated: Runbook) -> Optional[Runbook]:
        finalizers: List[str] = list(updated.metadata.finalizers)
        return await self._conditional_patch(
            original,
            {"metadata.finalizers": finalizers},
            delete_when_released=True,
        )

    # Declarant operations (manifest apply). The reconciler never calls these.

    async def apply(self, runbook: Runbook) -> Runbook:
        """Create or replace the declared `metadata`/`spec`, keeping status and finalizers."""
        identity = runbook.identity
        doc_ref = self._doc_ref(identity)
        declared = runbook.to_dict()
        try:
            snapshot = await doc_ref.get(timeout=self.config.timeout_sec)
            if snapshot.exists:
                data = snapshot.to_dict() or {}
                metadata = data.get("metadata") or {}
                version = _next_version(_stored_version(data))
                await doc_ref.update(
                    {
                        "spec": declared.get("spec", {}),
                        "metadata.labels": declared["metadata"].get("labels", {}),
                        "metadata.annotations": declared["metadata"].get("annotations", {}),
                        "metadata.generation": int(metadata.get("generation") or 1) + 1,
                        "metadata.resourceVersion": version,
                    },
                    timeout=self.config.timeout_sec,
                )
            else:
                declared.pop("status", None)
                declared["metadata"].update({"resourceVersion": "1", "generation": 1, "finalizers": []})
                await doc_ref.set(declared, timeout=self.config.timeout_sec)
        except gcp_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Failed to apply Runbook {identity}: {exc}") from exc
        return await self.get(identity)

    async def request_deletion(self, identity: RunbookIdentity) -> None:
        """Mark a resource as terminating; it disappears once its finalizers are released."""
        doc_ref = self._doc_ref(identity)
        try:
            snapshot = await doc_ref.get(timeout=self.config.timeout_sec)
            if not snapshot.exists:
                raise NotFoundError(identity)
            data = snapshot.to_dict() or {}
            if not (data.get("metadata") or {}).get("finalizers"):
                await doc_ref.delete(timeout=self.config.timeout_sec)
                return
            await doc_ref.update(
                {
                    "metadata.deletionTimestamp": datetime.now(timezone.utc).isoformat(),
                    "metadata.resourceVersion": _next_version(_stored_version(data)),
                },
                timeout=self.config.timeout_sec,
            )
        except gcp_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Failed to delete Runbook {identity}: {exc}") from exc

"""Finalizer handling: deletion is blocked until cleanup has run."""

from __future__ import annotations

from enum import Enum

from src.common.logging import get_logger
from src.runbooks.models import Runbook
from src.runbooks.outputs.base import SinkError, SinkRegistry
from src.runbooks.store.base import NotFoundError, ResourceStore, VersionConflictError

logger = get_logger(__name__)


class ReleaseOutcome(str, Enum):
    RELEASED = "released"
    RETRY = "retry"


class FinalizerManager:
    """Adds and removes the deletion-blocking finalizer of a Runbook."""

    def __init__(self, store: ResourceStore, sinks: SinkRegistry, finalizer: str):
        self.store = store
        self.sinks = sinks
        self.finalizer = finalizer

    async def ensure(self, runbook: Runbook) -> bool:
        """Make sure the finalizer is present.

        Returns:
            True if it was already there and the pass may continue. False if
            it was just added (or the add lost a race); the in-memory object is
            then stale and the caller must requeue instead of generating.

        Raises:
            StoreError: Transport failure talking to the store.
        """
        if runbook.has_finalizer(self.finalizer):
            return True

        identity = runbook.identity
        updated = runbook.model_copy(deep=True)
        updated.metadata.finalizers.append(self.finalizer)
        try:
            await self.store.patch_metadata(runbook, updated)
        except VersionConflictError:
            logger.info(
                "runbook_finalizer_conflict",
                extra={"event": "runbook_finalizer_conflict", "namespace": identity.namespace, "runbook": identity.name},
            )
            return False

        logger.info(
            "runbook_finalizer_added",
            extra={"event": "runbook_finalizer_added", "namespace": identity.namespace, "runbook": identity.name},
        )
        return False

    async def cleanup(self, runbook: Runbook) -> None:
        """Remove published file outputs recorded on the status. Failures are logged."""
        identity = runbook.identity
        for output in runbook.status.generated_outputs:
            sink = self.sinks.get(output.format)
            if sink is None:
                continue
            try:
                await sink.remove(output)
            except SinkError as exc:
                logger.warning(
                    "runbook_cleanup_failed",
                    extra={
                        "event": "runbook_cleanup_failed",
                        "namespace": identity.namespace,
                        "runbook": identity.name,
                        "format": output.format,
                        "location": output.location,
                        "error": str(exc),
                    },
                )

    async def release(self, runbook: Runbook) -> ReleaseOutcome:
        """Run cleanup and remove the finalizer of a terminating Runbook.

        A version conflict asks for another pass; the cleanup is never dropped.

        Raises:
            StoreError: Transport failure talking to the store.
        """
        identity = runbook.identity
        logger.info(
            "runbook_cleanup_started",
            extra={"event": "runbook_cleanup_started", "namespace": identity.namespace, "runbook": identity.name},
        )
        await self.cleanup(runbook)

        if not runbook.has_finalizer(self.finalizer):
            return ReleaseOutcome.RELEASED

        updated = runbook.model_copy(deep=True)
        updated.metadata.finalizers = [f for f in updated.metadata.finalizers if f != self.finalizer]
        try:
            await self.store.patch_metadata(runbook, updated)
        except VersionConflictError:
            logger.info(
                "runbook_finalizer_conflict",
                extra={"event": "runbook_finalizer_conflict", "namespace": identity.namespace, "runbook": identity.name},
            )
            return ReleaseOutcome.RETRY
        except NotFoundError:
            return ReleaseOutcome.RELEASED

        logger.info(
            "runbook_finalizer_removed",
            extra={"event": "runbook_finalizer_removed", "namespace": identity.namespace, "runbook": identity.name},
        )
        return ReleaseOutcome.RELEASED

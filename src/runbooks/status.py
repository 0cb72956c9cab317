"""Optimistic-concurrency status persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from src.common.logging import get_logger
from src.runbooks.models import READY_CONDITION, Condition, Runbook, RunbookStatus
from src.runbooks.store.base import NotFoundError, ResourceStore, VersionConflictError

logger = get_logger(__name__)


def ready_condition(
    previous: RunbookStatus,
    *,
    ready: bool,
    reason: str,
    message: str,
    now: datetime,
) -> Condition:
    """Build the Ready condition, keeping the transition time if the state is unchanged."""
    transition_time = now
    current = previous.condition(READY_CONDITION)
    if current is not None and current.status == ready and current.last_transition_time is not None:
        transition_time = current.last_transition_time
    return Condition(
        type=READY_CONDITION,
        status=ready,
        reason=reason,
        message=message,
        last_transition_time=transition_time,
    )


class StatusUpdater:
    """Writes a Runbook status against the version observed at pass start.

    Conflicts are not failures: the write is dropped and the next triggered
    pass recomputes the status from a fresh snapshot. There is no retry loop
    here.
    """

    def __init__(self, store: ResourceStore):
        self.store = store

    async def patch(self, original: Runbook, updated: Runbook) -> Optional[Runbook]:
        """Persist `updated.status`.

        Returns:
            The stored resource, or None when the write was dropped because of
            a version conflict or because the resource no longer exists.

        Raises:
            StoreError: Transport failure talking to the store.
        """
        identity = original.identity
        try:
            return await self.store.patch_status(original, updated)
        except VersionConflictError as exc:
            logger.info(
                "runbook_status_conflict",
                extra={
                    "event": "runbook_status_conflict",
                    "namespace": identity.namespace,
                    "runbook": identity.name,
                    "expected_version": exc.expected,
                    "phase": updated.status.phase.value if updated.status.phase else None,
                },
            )
            return None
        except NotFoundError:
            logger.info(
                "runbook_status_target_gone",
                extra={"event": "runbook_status_target_gone", "namespace": identity.namespace, "runbook": identity.name},
            )
            return None

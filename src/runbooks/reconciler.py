"""Reconcile loop for Runbook resources.

One call to `Reconciler.reconcile` is one pass over one resource:

1. fetch a fresh snapshot (missing resource: done, nothing to schedule);
2. terminating resource: clean up and release the finalizer, nothing else;
3. finalizer missing: add it and requeue before any generation work;
4. phase neither generating nor ready: record `generating` and requeue;
5. render content (when auto-generate is on), validate, dispatch outputs;
6. record `ready` or `error` with a single Ready condition.

Status writes are conditional on the resource version read in step 1. A
conflict ends the pass quietly and the scheduler's next invocation starts
over. Only store transport errors escape to the caller.

The reconciler keeps no state between passes; everything it needs comes in
through `ReconcilerDeps`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from src.common.config import (
    DEFAULT_ERROR_REQUEUE_SEC,
    DEFAULT_FINALIZER,
    DEFAULT_RESYNC_INTERVAL_SEC,
    ControllerSettings,
)
from src.common.logging import get_logger, log_decision
from src.runbooks.dispatcher import OutputDispatcher
from src.runbooks.finalizers import FinalizerManager, ReleaseOutcome
from src.runbooks.generator import ContentGenerationError, ContentGenerator, MarkdownContentGenerator, TemplateRegistry
from src.runbooks.models import GeneratedOutput, Phase, Runbook, RunbookIdentity, RunbookTemplate, ValidationStatus
from src.runbooks.outputs import SinkRegistry, default_registry
from src.runbooks.status import StatusUpdater, ready_condition
from src.runbooks.store import ResourceStore, create_store
from src.runbooks.store.base import NotFoundError
from src.runbooks.validation import validate_runbook

logger = get_logger(__name__)

REASON_SUCCEEDED = "GenerationSuccessful"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_GENERATION_FAILED = "ContentGenerationFailed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileResult:
    """What the scheduler should do next with this identity.

    The default (no requeue, no delay) means done: nothing further is scheduled.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None

    @property
    def done(self) -> bool:
        return not self.requeue and self.requeue_after is None


@dataclass
class ReconcilerDeps:
    """Explicit dependency handle, built once and shared by every pass."""

    store: ResourceStore
    generator: ContentGenerator
    sinks: SinkRegistry
    finalizer: str = DEFAULT_FINALIZER
    resync_interval_sec: float = DEFAULT_RESYNC_INTERVAL_SEC
    error_requeue_sec: float = DEFAULT_ERROR_REQUEUE_SEC
    clock: Callable[[], datetime] = field(default=_now)

    @classmethod
    def from_settings(
        cls,
        settings: ControllerSettings,
        store: Optional[ResourceStore] = None,
        templates: Iterable[RunbookTemplate] = (),
    ) -> "ReconcilerDeps":
        registry = TemplateRegistry(settings.outputs.template_dir)
        for template in templates:
            registry.register(template)
        return cls(
            store=store or create_store(settings),
            generator=MarkdownContentGenerator(registry),
            sinks=default_registry(settings.outputs),
            finalizer=settings.finalizer,
            resync_interval_sec=settings.resync_interval_sec,
            error_requeue_sec=settings.error_requeue_sec,
        )


class Reconciler:
    """Drives a Runbook's observed state towards its declared intent."""

    def __init__(self, deps: ReconcilerDeps):
        self.deps = deps
        self.finalizers = FinalizerManager(deps.store, deps.sinks, deps.finalizer)
        self.dispatcher = OutputDispatcher(deps.sinks, deps.generator)
        self.status = StatusUpdater(deps.store)

    async def reconcile(self, identity: RunbookIdentity) -> ReconcileResult:
        """Run one pass for `identity`.

        Raises:
            StoreError: The store could not be reached (not raised for
                not-found or version conflicts).
        """
        try:
            runbook = await self.deps.store.get(identity)
        except NotFoundError:
            logger.info(
                "runbook_not_found",
                extra={"event": "runbook_not_found", "namespace": identity.namespace, "runbook": identity.name},
            )
            return ReconcileResult()

        logger.info(
            "runbook_reconcile_started",
            extra={
                "event": "runbook_reconcile_started",
                "namespace": identity.namespace,
                "runbook": identity.name,
                "resource_version": runbook.metadata.resource_version,
                "phase": runbook.status.phase.value if runbook.status.phase else None,
            },
        )

        try:
            return await self._reconcile(runbook)
        except NotFoundError:
            # Deleted between the read and a write: same as not found.
            return ReconcileResult()

    async def _reconcile(self, runbook: Runbook) -> ReconcileResult:
        identity = runbook.identity

        if runbook.is_terminating:
            outcome = await self.finalizers.release(runbook)
            log_decision(
                logger, namespace=identity.namespace, name=identity.name, action="delete", outcome=outcome.value
            )
            if outcome is ReleaseOutcome.RETRY:
                return ReconcileResult(requeue=True)
            return ReconcileResult()

        if not await self.finalizers.ensure(runbook):
            return ReconcileResult(requeue=True)

        original = runbook.model_copy(deep=True)

        if runbook.status.phase not in (Phase.GENERATING, Phase.READY):
            updated = runbook.model_copy(deep=True)
            updated.status.phase = Phase.GENERATING
            updated.status.validation_status = ValidationStatus.PENDING
            await self.status.patch(original, updated)
            log_decision(
                logger,
                namespace=identity.namespace,
                name=identity.name,
                action="phase",
                outcome=Phase.GENERATING.value,
                previous=runbook.status.phase.value if runbook.status.phase else None,
            )
            return ReconcileResult(requeue=True)

        return await self._generate(runbook, original)

    async def _generate(self, runbook: Runbook, original: Runbook) -> ReconcileResult:
        spec = runbook.spec
        now = self.deps.clock()

        content: Optional[str] = None
        if spec.auto_generate:
            try:
                content = self.deps.generator.render(runbook)
            except ContentGenerationError as exc:
                logger.error(
                    "runbook_generation_failed",
                    extra={
                        "event": "runbook_generation_failed",
                        "namespace": runbook.metadata.namespace,
                        "runbook": runbook.metadata.name,
                        "error": str(exc),
                    },
                )
                return await self._record_error(
                    runbook,
                    original,
                    now=now,
                    reason=REASON_GENERATION_FAILED,
                    message=f"Failed to generate runbook: {exc}",
                    validation_status=ValidationStatus.PENDING,
                    errors=[],
                )

        errors = validate_runbook(spec)
        if errors:
            return await self._record_error(
                runbook,
                original,
                now=now,
                reason=REASON_VALIDATION_FAILED,
                message=f"Runbook validation failed: {'; '.join(errors)}",
                validation_status=ValidationStatus.INVALID,
                errors=errors,
            )

        outputs: List[GeneratedOutput] = []
        message = "Runbook generation completed successfully"
        if content is not None:
            report = await self.dispatcher.dispatch(runbook, content, generated_at=now)
            outputs = report.outputs
            if report.failures:
                failed = ", ".join(f"{f.format}:{f.destination}" for f in report.failures)
                message = f"{message}; failed outputs: {failed}"
        else:
            message = "Runbook validated; automatic generation is disabled"

        updated = runbook.model_copy(deep=True)
        status = updated.status
        status.phase = Phase.READY
        status.validation_status = ValidationStatus.VALID
        status.validation_errors = []
        status.last_generated = now
        status.generated_outputs = outputs
        status.conditions = [
            ready_condition(runbook.status, ready=True, reason=REASON_SUCCEEDED, message=message, now=now)
        ]
        await self.status.patch(original, updated)

        log_decision(
            logger,
            namespace=runbook.metadata.namespace,
            name=runbook.metadata.name,
            action="phase",
            outcome=Phase.READY.value,
            outputs=len(outputs),
            targets=len(spec.outputs),
        )
        return ReconcileResult(requeue_after=self.deps.resync_interval_sec)

    async def _record_error(
        self,
        runbook: Runbook,
        original: Runbook,
        *,
        now: datetime,
        reason: str,
        message: str,
        validation_status: ValidationStatus,
        errors: List[str],
    ) -> ReconcileResult:
        updated = runbook.model_copy(deep=True)
        status = updated.status
        status.phase = Phase.ERROR
        status.validation_status = validation_status
        status.validation_errors = list(errors)
        status.conditions = [
            ready_condition(runbook.status, ready=False, reason=reason, message=message, now=now)
        ]
        await self.status.patch(original, updated)

        log_decision(
            logger,
            namespace=runbook.metadata.namespace,
            name=runbook.metadata.name,
            action="phase",
            outcome=Phase.ERROR.value,
            reason=reason,
        )
        return ReconcileResult(requeue_after=self.deps.error_requeue_sec)

"""Fan-out of rendered runbook content to the declared output targets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from src.common.logging import get_logger
from src.runbooks.generator import ContentGenerationError, ContentGenerator
from src.runbooks.models import GeneratedOutput, OutputTarget, Runbook
from src.runbooks.outputs.base import SinkError, SinkRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchFailure:
    format: str
    destination: str
    reason: str


@dataclass
class DispatchReport:
    """Outcome of one dispatch: recorded outputs plus failed targets."""

    outputs: List[GeneratedOutput]
    failures: List[DispatchFailure]


class OutputDispatcher:
    """Publishes content to every target, isolating per-target failures.

    Targets are processed in declared order. A failing target is logged and
    left out of the result; it never aborts the remaining targets. The
    returned list is built fresh on every call, so it describes exactly one
    pass.
    """

    def __init__(self, sinks: SinkRegistry, generator: Optional[ContentGenerator] = None):
        self.sinks = sinks
        self.generator = generator

    def _content_for(self, runbook: Runbook, target: OutputTarget, content: str) -> str:
        if not target.template or target.template == runbook.spec.template or self.generator is None:
            return content
        return self.generator.render(runbook, template=target.template)

    async def dispatch(
        self,
        runbook: Runbook,
        content: str,
        *,
        generated_at: datetime,
    ) -> DispatchReport:
        report = DispatchReport(outputs=[], failures=[])
        namespace, name = runbook.metadata.namespace, runbook.metadata.name

        for target in runbook.spec.outputs:
            sink = self.sinks.get(target.format)
            if sink is None:
                logger.warning(
                    "runbook_output_unknown_format",
                    extra={
                        "event": "runbook_output_unknown_format",
                        "namespace": namespace,
                        "runbook": name,
                        "format": target.format,
                        "destination": target.destination,
                    },
                )
                continue

            try:
                target_content = self._content_for(runbook, target, content)
                location = await sink.publish(runbook, target_content, target, generated_at=generated_at)
            except (SinkError, ContentGenerationError) as exc:
                reason = str(exc)
            except Exception as exc:  # pragma: no cover - sinks are expected to raise SinkError
                logger.exception(
                    "runbook_output_crashed",
                    extra={"event": "runbook_output_crashed", "namespace": namespace, "runbook": name},
                )
                reason = f"unexpected error: {exc}"
            else:
                logger.info(
                    "runbook_output_published",
                    extra={
                        "event": "runbook_output_published",
                        "namespace": namespace,
                        "runbook": name,
                        "format": target.format,
                        "location": location,
                    },
                )
                report.outputs.append(
                    GeneratedOutput(
                        format=target.format,
                        location=target.destination,
                        generated_at=generated_at,
                        path=location,
                    )
                )
                continue

            logger.error(
                "runbook_output_failed",
                extra={
                    "event": "runbook_output_failed",
                    "namespace": namespace,
                    "runbook": name,
                    "format": target.format,
                    "destination": target.destination,
                    "error": reason,
                },
            )
            report.failures.append(DispatchFailure(format=target.format, destination=target.destination, reason=reason))

        return report

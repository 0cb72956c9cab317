"""Output sink contract and registry.

A sink publishes the rendered runbook to one destination. `publish` is a
full overwrite: file sinks stage the document in a temporary file next to
the target and `os.replace` it into place, so a failed write leaves the
output of earlier passes intact.
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from src.common.logging import get_logger
from src.runbooks.models import GeneratedOutput, OutputTarget, Runbook

logger = get_logger(__name__)


class SinkError(Exception):
    """Raised when a sink fails to publish (or remove) an output."""


class OutputSink(ABC):
    """Publishes rendered runbook content to a destination."""

    format: str = ""

    @abstractmethod
    async def publish(
        self,
        runbook: Runbook,
        content: str,
        target: OutputTarget,
        *,
        generated_at: datetime,
    ) -> str:
        """Publish `content` for `runbook` to `target.destination`.

        Returns:
            The location written (file path or endpoint URL).

        Raises:
            SinkError: The output could not be published.
        """

    async def remove(self, output: GeneratedOutput) -> None:
        """Remove what an earlier publish recorded in `output`. No-op by default."""


class FileSink(OutputSink):
    """Base for sinks writing `<destination>/<alertName><extension>`."""

    extension: str = ""

    def output_path(self, runbook: Runbook, destination: str) -> Path:
        """Path of the runbook's file under `destination`.

        Raises:
            SinkError: The alert name would place the file outside `destination`.
        """
        path = Path(destination) / f"{runbook.spec.alert_name}{self.extension}"
        if not _is_direct_child(path, destination):
            raise SinkError(f"alert name '{runbook.spec.alert_name}' escapes {destination}")
        return path

    @abstractmethod
    def render(self, runbook: Runbook, content: str, generated_at: datetime) -> str:
        """Produce the document written to disk."""

    async def publish(
        self,
        runbook: Runbook,
        content: str,
        target: OutputTarget,
        *,
        generated_at: datetime,
    ) -> str:
        document = self.render(runbook, content, generated_at)
        path = self.output_path(runbook, target.destination)
        try:
            write_atomic(path, document)
        except OSError as exc:
            raise SinkError(f"failed to write {path}: {exc}") from exc
        return str(path)

    async def remove(self, output: GeneratedOutput) -> None:
        """Delete the file recorded by publish.

        Only a file of this sink's extension directly under the recorded
        destination is ever deleted; the current alert name is not consulted.

        Raises:
            SinkError: No recorded path, a path outside the destination, or
                an OS error while deleting.
        """
        if not output.path:
            raise SinkError(f"no published path recorded for {output.location}")
        path = Path(output.path)
        if path.suffix != self.extension or not _is_direct_child(path, output.location):
            raise SinkError(f"refusing to remove {path}: not a {self.format} output of {output.location}")
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise SinkError(f"failed to remove {path}: {exc}") from exc


def _is_direct_child(path: Path, destination: str) -> bool:
    return path.resolve().parent == Path(destination).resolve()


def write_atomic(path: Path, text: str) -> None:
    """Replace `path` with `text`, creating the parent directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class SinkRegistry:
    """Maps output format tags to sinks."""

    def __init__(self, sinks: Optional[Iterable[OutputSink]] = None):
        self._sinks: Dict[str, OutputSink] = {}
        for sink in sinks or []:
            self.register(sink)

    def register(self, sink: OutputSink) -> None:
        self._sinks[sink.format] = sink

    def get(self, output_format: str) -> Optional[OutputSink]:
        return self._sinks.get(output_format)

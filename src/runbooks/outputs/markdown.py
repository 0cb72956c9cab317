"""Markdown file sink: writes the rendered content verbatim."""

from __future__ import annotations

from datetime import datetime

from src.runbooks.models import OutputFormat, Runbook
from src.runbooks.outputs.base import FileSink


class MarkdownSink(FileSink):
    format = OutputFormat.MARKDOWN.value
    extension = ".md"

    def render(self, runbook: Runbook, content: str, generated_at: datetime) -> str:
        return content

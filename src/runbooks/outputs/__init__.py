"""Output sinks for published runbooks.

Exports:
    - OutputSink, FileSink: Sink contracts
    - SinkError: Per-target publish failure
    - SinkRegistry: Format tag -> sink lookup
    - MarkdownSink, HTMLSink, APISink: Built-in sinks
    - default_registry: Registry with the three built-ins
"""

from __future__ import annotations

from typing import Optional

from src.common.config import OutputConfig
from src.runbooks.outputs.api import APISink
from src.runbooks.outputs.base import FileSink, OutputSink, SinkError, SinkRegistry
from src.runbooks.outputs.html import HTMLSink
from src.runbooks.outputs.markdown import MarkdownSink

__all__ = [
    "APISink",
    "FileSink",
    "HTMLSink",
    "MarkdownSink",
    "OutputSink",
    "SinkError",
    "SinkRegistry",
    "default_registry",
]


def default_registry(config: Optional[OutputConfig] = None) -> SinkRegistry:
    """Registry with the markdown, html and api sinks."""
    config = config or OutputConfig()
    return SinkRegistry(
        [
            MarkdownSink(),
            HTMLSink(),
            APISink(token=config.api_token, timeout=config.api_timeout_sec),
        ]
    )

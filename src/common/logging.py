"""JSON logs for the reconcile loop, the trigger API and the apply script.

Every record is one JSON object. Fields passed through `extra` (by convention
an `event` name plus the `namespace`/`runbook` of the resource) are emitted
as top-level keys next to timestamp, level, logger and message.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update((k, v) for k, v in vars(record).items() if k not in _STANDARD_ATTRS)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Logger whose records reach a JSON stdout handler on the root logger.

    The handler is installed once; an application that configured the root
    logger itself keeps its own handlers.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(level)
    return logging.getLogger(name)


def log_decision(
    logger: logging.Logger,
    *,
    namespace: str,
    name: str,
    action: str,
    outcome: str,
    **context: Any,
) -> None:
    """Record a reconcile decision for one resource (phase change, deletion)."""
    logger.info(
        "decision",
        extra={"event": "decision", "namespace": namespace, "runbook": name, "action": action, "outcome": outcome, **context},
    )


def log_error(logger: logging.Logger, event: str, *, error: Optional[BaseException] = None, **context: Any) -> None:
    """Log `event` at error level, with the traceback of `error` when given."""
    logger.error(event, extra={"event": event, **context}, exc_info=error)


def log_audit(
    logger: logging.Logger,
    *,
    actor: Optional[str],
    action: str,
    target: Optional[str] = None,
    status: str = "succeeded",
    **context: Any,
) -> None:
    """Record an externally triggered action such as an HTTP reconcile."""
    logger.info(
        "audit",
        extra={"event": "audit", "actor": actor, "action": action, "target": target, "status": status, **context},
    )

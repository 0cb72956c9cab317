"""Runbook spec validation.

`validate_runbook` collects every problem instead of stopping at the first
one, so a single failed pass reports the full list on the resource status.
Unknown output formats are not validation errors: the dispatcher skips them.
"""

from __future__ import annotations

from typing import List

from src.runbooks.models import RunbookSpec, Severity

ALLOWED_SEVERITIES = {s.value for s in Severity}
ALLOWED_RISKS = {"low", "medium", "high"}
ALLOWED_TRIGGER_TYPES = {"alert", "webhook", "manual"}
ALLOWED_REFERENCE_TYPES = {"wiki", "dashboard", "documentation", "runbook"}

ALERT_NAME_REQUIRED = "alert name is required"


def validate_runbook(spec: RunbookSpec) -> List[str]:
    """Return all validation messages for `spec` (empty when valid)."""
    errors: List[str] = []

    if not spec.alert_name or not spec.alert_name.strip():
        errors.append(ALERT_NAME_REQUIRED)
    elif "/" in spec.alert_name or spec.alert_name in {".", ".."}:
        # The alert name becomes a file name for file-based outputs.
        errors.append(f"alert name '{spec.alert_name}' is not usable as a file name")

    if spec.severity not in ALLOWED_SEVERITIES:
        errors.append(
            f"severity '{spec.severity}' is invalid (expected one of {', '.join(sorted(ALLOWED_SEVERITIES))})"
        )

    content = spec.content
    for index, step in enumerate(content.investigation, start=1):
        if not step.description.strip():
            errors.append(f"investigation step {index}: description is required")

    for index, step in enumerate(content.remediation, start=1):
        if not step.description.strip():
            errors.append(f"remediation step {index}: description is required")
        if step.risk and step.risk not in ALLOWED_RISKS:
            errors.append(f"remediation step {index}: risk '{step.risk}' is invalid")

    if content.automation is not None:
        for index, trigger in enumerate(content.automation.triggers, start=1):
            if trigger.type not in ALLOWED_TRIGGER_TYPES:
                errors.append(f"automation trigger {index}: type '{trigger.type}' is invalid")

    for index, ref in enumerate(content.references, start=1):
        if not ref.title.strip() or not ref.url.strip():
            errors.append(f"reference {index}: title and url are required")
        if ref.type and ref.type not in ALLOWED_REFERENCE_TYPES:
            errors.append(f"reference {index}: type '{ref.type}' is invalid")

    for index, target in enumerate(spec.outputs, start=1):
        if not target.destination.strip():
            errors.append(f"output {index} ({target.format}): destination is required")

    return errors

"""YAML manifests: `Runbook` and `RunbookTemplate` documents.

Files may hold several documents. Documents of any other kind are skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Union

import yaml

from src.common.logging import get_logger
from src.runbooks.models import KIND, TEMPLATE_KIND, Runbook, RunbookTemplate

logger = get_logger(__name__)


@dataclass
class ManifestSet:
    runbooks: List[Runbook] = field(default_factory=list)
    templates: List[RunbookTemplate] = field(default_factory=list)


def parse_manifests(text: str, source: str = "<string>") -> ManifestSet:
    """Parse every known document in `text`.

    Raises:
        yaml.YAMLError: The text is not valid YAML.
        pydantic.ValidationError: A known document does not match its model.
    """
    found = ManifestSet()
    for document in yaml.safe_load_all(text):
        if not isinstance(document, dict):
            continue
        kind = document.get("kind")
        if kind == KIND:
            found.runbooks.append(Runbook.model_validate(document))
        elif kind == TEMPLATE_KIND:
            found.templates.append(RunbookTemplate.from_manifest(document))
        else:
            logger.debug(
                "manifest_document_skipped",
                extra={"event": "manifest_document_skipped", "source": source, "kind": kind},
            )
    return found


def load_manifests(paths: Iterable[Union[str, Path]]) -> ManifestSet:
    """Read and parse manifest files in order."""
    found = ManifestSet()
    for path in paths:
        parsed = parse_manifests(Path(path).read_text(encoding="utf-8"), source=str(path))
        found.runbooks.extend(parsed.runbooks)
        found.templates.extend(parsed.templates)
    return found

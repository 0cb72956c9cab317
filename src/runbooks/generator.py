"""Runbook content generation.

Renders the canonical Markdown document of a Runbook from its spec with
Jinja2. Rendering is deterministic: the same spec and template always yield
the same text (no timestamps, no randomness), so publishing an unchanged
runbook rewrites identical content.

Templates are looked up by name in a `TemplateRegistry`:
- registered `RunbookTemplate` objects, including `kind: RunbookTemplate`
  documents found in `*.yaml` files of `RUNBOOK_TEMPLATE_DIR`,
- `<name>.md.j2` files from `RUNBOOK_TEMPLATE_DIR`,
- the built-in `default` template.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml
from jinja2 import (
    DictLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
)
from pydantic import ValidationError as PydanticValidationError

from src.common.config import ConfigError
from src.common.logging import get_logger
from src.runbooks.manifests import load_manifests
from src.runbooks.models import Runbook, RunbookTemplate

logger = get_logger(__name__)

DEFAULT_TEMPLATE_NAME = "default"
TEMPLATE_SUFFIX = ".md.j2"

DEFAULT_TEMPLATE = """\
# {{ alert_name }}

**Severity:** {{ severity }} | **Team:** {{ team or "unassigned" }}

## Impact

{{ content.impact or "_No impact description provided._" }}

## Investigation Steps

{% for step in content.investigation %}
{{ loop.index }}. {{ step.description }}
{% if step.command %}

   ```bash
   {{ step.command }}
   ```

{% endif %}
{% if step.expected %}
   **Expected:** {{ step.expected }}
{% endif %}
{% else %}
_No investigation steps defined._
{% endfor %}

## Remediation

{% for step in content.remediation %}
{{ loop.index }}. {{ step.description }}{% if step.risk %} (risk: {{ step.risk }}){% endif %}{% if step.automated %} [automated]{% endif %}

{% if step.command %}

   ```bash
   {{ step.command }}
   ```

{% endif %}
{% else %}
_No remediation steps defined._
{% endfor %}

## Prevention

{{ content.prevention or "_No prevention guidance provided._" }}
{% if content.automation and content.automation.enabled %}

## Automation

{% for script in content.automation.scripts %}
- Script: `{{ script }}`
{% endfor %}
{% for trigger in content.automation.triggers %}
- Trigger: {{ trigger.type }}{% if trigger.conditions %} when {{ trigger.conditions | join(", ") }}{% endif %}

{% endfor %}
{% endif %}
{% if content.references %}

## References

{% for ref in content.references %}
- [{{ ref.title }}]({{ ref.url }}){% if ref.type %} ({{ ref.type }}){% endif %}

{% endfor %}
{% endif %}
"""


class ContentGenerationError(Exception):
    """Raised when runbook content cannot be rendered."""


class ContentGenerator(Protocol):
    """Renders the canonical content of a Runbook."""

    def render(self, runbook: Runbook, template: Optional[str] = None) -> str:
        ...


class TemplateRegistry:
    """Named Jinja2 templates for runbook content."""

    def __init__(self, template_dir: Optional[str] = None):
        self._templates: Dict[str, RunbookTemplate] = {}
        self._sources: Dict[str, str] = {DEFAULT_TEMPLATE_NAME: DEFAULT_TEMPLATE}
        loader = DictLoader(self._sources)
        self._file_env: Optional[Environment] = None
        if template_dir:
            path = Path(template_dir)
            if not path.is_dir():
                logger.warning(
                    "runbook_template_dir_missing",
                    extra={"event": "runbook_template_dir_missing", "template_dir": template_dir},
                )
            else:
                self._file_env = self._environment(FileSystemLoader(str(path)))
        self._env = self._environment(loader)
        if self._file_env is not None:
            self._register_manifests(Path(template_dir))

    def _register_manifests(self, directory: Path) -> None:
        manifest_paths = sorted(directory.glob("*.yaml")) + sorted(directory.glob("*.yml"))
        try:
            templates = load_manifests(manifest_paths).templates
        except (yaml.YAMLError, PydanticValidationError) as exc:
            raise ConfigError(f"Invalid RunbookTemplate manifest in {directory}: {exc}") from exc
        for template in templates:
            self.register(template)
            logger.info(
                "runbook_template_registered",
                extra={"event": "runbook_template_registered", "template": template.name, "source": str(directory)},
            )

    @staticmethod
    def _environment(loader) -> Environment:
        return Environment(
            loader=loader,
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def register(self, template: RunbookTemplate) -> None:
        """Add or replace a template."""
        self._templates[template.name] = template
        self._sources[template.name] = template.template

    def describe(self, name: str) -> Optional[RunbookTemplate]:
        return self._templates.get(name)

    def get(self, name: str) -> Template:
        """Compile the named template.

        Raises:
            ContentGenerationError: Unknown name or template syntax error.
        """
        try:
            if name in self._sources:
                return self._env.get_template(name)
            if self._file_env is not None:
                return self._file_env.get_template(f"{name}{TEMPLATE_SUFFIX}")
        except TemplateNotFound as exc:
            raise ContentGenerationError(f"template '{name}' not found") from exc
        except TemplateError as exc:
            raise ContentGenerationError(f"template '{name}' is invalid: {exc}") from exc
        raise ContentGenerationError(f"template '{name}' not found")


class MarkdownContentGenerator:
    """Deterministic Markdown renderer backed by a TemplateRegistry."""

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()

    def _context(self, runbook: Runbook, template_name: str) -> Dict[str, Any]:
        spec = runbook.spec
        context: Dict[str, Any] = {
            "namespace": runbook.metadata.namespace,
            "name": runbook.metadata.name,
            "labels": dict(runbook.metadata.labels),
            "alert_name": spec.alert_name,
            "severity": spec.severity,
            "team": spec.team,
            "content": spec.content,
            "outputs": spec.outputs,
        }

        declared = self.registry.describe(template_name)
        if declared is not None:
            for var_name, variable in declared.variables.items():
                if var_name in context:
                    continue
                if variable.default is not None:
                    context[var_name] = variable.default
                elif variable.required:
                    raise ContentGenerationError(
                        f"template '{template_name}' requires variable '{var_name}'"
                    )
        return context

    def render(self, runbook: Runbook, template: Optional[str] = None) -> str:
        """Render the runbook with `template`, the spec's template, or the default.

        Raises:
            ContentGenerationError: Unknown/invalid template or a rendering failure.
        """
        template_name = template or runbook.spec.template or DEFAULT_TEMPLATE_NAME
        compiled = self.registry.get(template_name)
        context = self._context(runbook, template_name)
        try:
            return compiled.render(**context)
        except TemplateError as exc:
            raise ContentGenerationError(f"failed to render template '{template_name}': {exc}") from exc
        except Exception as exc:
            # Runtime errors raised by user template expressions.
            raise ContentGenerationError(
                f"template '{template_name}' raised {type(exc).__name__}: {exc}"
            ) from exc

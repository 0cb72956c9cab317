"""HTML file sink.

Renders a standalone HTML page from the runbook spec (not from the Markdown
content): header with alert name, severity, team and generation time, then
impact, investigation steps, remediation steps and prevention. Every value is
HTML-escaped by Jinja2 autoescaping.
"""

from __future__ import annotations

from datetime import datetime

from jinja2 import Environment, StrictUndefined, TemplateError, select_autoescape

from src.runbooks.models import OutputFormat, Runbook
from src.runbooks.outputs.base import FileSink, SinkError

GENERATED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"

HTML_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{ alert_name }} Runbook</title>
    <style>
        body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
        .header { background: #f5f5f5; padding: 15px; border-radius: 5px; margin-bottom: 20px; }
        .severity-critical { border-left: 4px solid #ff6b6b; }
        .severity-warning { border-left: 4px solid #feca57; }
        .severity-info { border-left: 4px solid #48cae4; }
        .step { background: #f8f9fa; padding: 10px; margin: 10px 0; border-radius: 3px; }
        .risk { font-size: 0.8em; text-transform: uppercase; }
        pre { background: #2d3748; color: #e2e8f0; padding: 15px; border-radius: 5px; overflow-x: auto; }
    </style>
</head>
<body>
    <div class="header severity-{{ severity }}">
        <h1>{{ alert_name }}</h1>
        <p><strong>Severity:</strong> {{ severity }} | <strong>Team:</strong> {{ team }}</p>
        <p><em>Generated: {{ generated_at }}</em></p>
    </div>

    <h2>Impact</h2>
    <p>{{ content.impact }}</p>

    <h2>Investigation Steps</h2>
    {% for step in content.investigation %}
    <div class="step">
        <h3>Step {{ loop.index }}: {{ step.description }}</h3>
        {% if step.command %}<pre>{{ step.command }}</pre>{% endif %}
        {% if step.expected %}<p><strong>Expected:</strong> {{ step.expected }}</p>{% endif %}
    </div>
    {% endfor %}

    <h2>Remediation</h2>
    {% for step in content.remediation %}
    <div class="step">
        <h3>{{ loop.index }}. {{ step.description }}{% if step.risk %} <span class="risk">(Risk: {{ step.risk }})</span>{% endif %}</h3>
        {% if step.command %}<pre>{{ step.command }}</pre>{% endif %}
    </div>
    {% endfor %}

    <h2>Prevention</h2>
    <p>{{ content.prevention }}</p>
</body>
</html>
"""

_env = Environment(
    autoescape=select_autoescape(default_for_string=True, default=True),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)
_template = _env.from_string(HTML_TEMPLATE)


class HTMLSink(FileSink):
    format = OutputFormat.HTML.value
    extension = ".html"

    def render(self, runbook: Runbook, content: str, generated_at: datetime) -> str:
        spec = runbook.spec
        try:
            return _template.render(
                alert_name=spec.alert_name,
                severity=spec.severity,
                team=spec.team,
                generated_at=generated_at.strftime(GENERATED_AT_FORMAT),
                content=spec.content,
            )
        except TemplateError as exc:
            raise SinkError(f"failed to render HTML for {spec.alert_name}: {exc}") from exc

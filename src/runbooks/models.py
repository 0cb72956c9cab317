"""Pydantic models for the Runbook resource.

Field aliases follow the camelCase JSON shape of the `runbook.runbook.io/v1alpha1`
Runbook custom resource, so a document can move between the Kubernetes API,
Firestore and YAML manifests without translation. Python attributes are
snake_case (`populate_by_name`).

Spec-side enumerations (severity, risk, trigger and reference types) are kept
as plain strings: a resource carrying an unexpected value must still load so
that validation can report it through the resource status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

API_GROUP = "runbook.runbook.io"
API_VERSION = "v1alpha1"
KIND = "Runbook"
TEMPLATE_KIND = "RunbookTemplate"

READY_CONDITION = "Ready"


class Phase(str, Enum):
    """Coarse reconciliation progress of a Runbook."""

    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    PENDING = "pending"


class OutputFormat(str, Enum):
    """Output formats with a built-in sink."""

    MARKDOWN = "markdown"
    HTML = "html"
    API = "api"


@dataclass(frozen=True)
class RunbookIdentity:
    """Namespaced name of a Runbook; the unit of reconciliation."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ObjectMeta(BaseModel):
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(None, alias="resourceVersion")
    generation: Optional[int] = None
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = Field(None, alias="deletionTimestamp")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class InvestigationStep(BaseModel):
    """A single diagnostic step."""

    description: str = ""
    command: Optional[str] = None
    expected: Optional[str] = None


class RemediationStep(BaseModel):
    """A single remediation action."""

    description: str = ""
    command: Optional[str] = None
    risk: Optional[str] = None  # low | medium | high
    automated: bool = False


class TriggerConfig(BaseModel):
    type: str  # alert | webhook | manual
    conditions: List[str] = Field(default_factory=list)


class AutomationConfig(BaseModel):
    enabled: bool = False
    scripts: List[str] = Field(default_factory=list)
    triggers: List[TriggerConfig] = Field(default_factory=list)


class Reference(BaseModel):
    """Link to external documentation (wiki, dashboard, documentation, runbook)."""

    title: str = ""
    url: str = ""
    type: Optional[str] = None


class RunbookContent(BaseModel):
    impact: str = ""
    investigation: List[InvestigationStep] = Field(default_factory=list)
    remediation: List[RemediationStep] = Field(default_factory=list)
    prevention: str = ""
    automation: Optional[AutomationConfig] = None
    references: List[Reference] = Field(default_factory=list)


class OutputTarget(BaseModel):
    """Where (and in which format) a runbook is published."""

    format: str
    destination: str
    template: Optional[str] = None


class RunbookSpec(BaseModel):
    """Declared intent. Written only by the declarant, never by the controller."""

    alert_name: str = Field("", alias="alertName")
    severity: str = Severity.WARNING.value
    team: str = ""
    content: RunbookContent = Field(default_factory=RunbookContent)
    template: Optional[str] = None
    auto_generate: bool = Field(True, alias="autoGenerate")
    outputs: List[OutputTarget] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class Condition(BaseModel):
    """Status condition; `status` is a bool internally and "True"/"False" on the wire."""

    type: str
    status: bool
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = Field(None, alias="lastTransitionTime")

    model_config = {"populate_by_name": True}

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return value

    @field_serializer("status")
    def _serialize_status(self, value: bool) -> str:
        return "True" if value else "False"


class GeneratedOutput(BaseModel):
    """One successfully published output of the latest pass."""

    format: str
    location: str
    generated_at: datetime = Field(..., alias="generatedAt")
    # What the sink wrote: file path or endpoint URL.
    path: Optional[str] = None

    model_config = {"populate_by_name": True}


class SourceRuleRef(BaseModel):
    """Reference to the alerting rule this runbook documents."""

    name: str
    namespace: str
    uid: Optional[str] = None


class RunbookStatus(BaseModel):
    """Observed state. Written only through the status sub-resource."""

    phase: Optional[Phase] = None
    conditions: List[Condition] = Field(default_factory=list)
    last_generated: Optional[datetime] = Field(None, alias="lastGenerated")
    validation_status: Optional[ValidationStatus] = Field(None, alias="validationStatus")
    validation_errors: List[str] = Field(default_factory=list, alias="validationErrors")
    generated_outputs: List[GeneratedOutput] = Field(default_factory=list, alias="generatedOutputs")
    source_rule: Optional[SourceRuleRef] = Field(None, alias="sourceRule")

    model_config = {"populate_by_name": True}

    def condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class Runbook(BaseModel):
    """Runbook custom resource."""

    api_version: str = Field(f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: RunbookSpec = Field(default_factory=RunbookSpec)
    status: RunbookStatus = Field(default_factory=RunbookStatus)

    model_config = {"populate_by_name": True}

    @property
    def identity(self) -> RunbookIdentity:
        return RunbookIdentity(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def is_terminating(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def to_dict(self) -> Dict[str, Any]:
        """Wire (camelCase) representation, omitting unset optionals."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Runbook":
        return cls.model_validate(data)


class TemplateVariable(BaseModel):
    description: str = ""
    type: str = "string"  # string | number | boolean | array
    default: Optional[str] = None
    required: bool = False


class RunbookTemplate(BaseModel):
    """Named Jinja2 template used to render runbook content."""

    name: str
    template: str
    description: str = ""
    output_formats: List[str] = Field(default_factory=list, alias="outputFormats")
    variables: Dict[str, TemplateVariable] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_manifest(cls, document: Dict[str, Any]) -> "RunbookTemplate":
        """Build from a `kind: RunbookTemplate` document; the name defaults to `metadata.name`."""
        spec = dict(document.get("spec") or {})
        spec.setdefault("name", (document.get("metadata") or {}).get("name"))
        return cls.model_validate(spec)

"""Pytest configuration and shared fixtures.

Automatically loads .env file for all tests, ensuring environment variables
are available for both unit tests (with fakes) and integration tests (with
real credentials).
"""

import copy
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Load .env file before any tests run
from src.common.env import load_env

load_env()

from src.runbooks.models import Runbook, RunbookIdentity
from src.runbooks.store.base import NotFoundError, ResourceStore, StoreError, VersionConflictError

FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeRunbookStore(ResourceStore):
    """In-memory store with resource versions, conflict injection and finalizer-gated deletion."""

    backend = "fake"

    def __init__(self):
        self.docs: Dict[RunbookIdentity, dict] = {}
        self.conflicts_pending = 0
        self.unavailable = False
        self.status_writes = 0
        self.metadata_writes = 0

    def put(self, runbook: Runbook) -> Runbook:
        data = runbook.to_dict()
        data["metadata"].setdefault("resourceVersion", "1")
        self.docs[runbook.identity] = data
        return Runbook.from_dict(copy.deepcopy(data))

    def raw(self, identity: RunbookIdentity) -> Optional[dict]:
        return self.docs.get(identity)

    def _bump(self, data: dict) -> None:
        data["metadata"]["resourceVersion"] = str(int(data["metadata"]["resourceVersion"]) + 1)

    def edit_spec(self, identity: RunbookIdentity, **changes) -> None:
        """Declarant write: changes the spec and bumps the version."""
        data = self.docs[identity]
        data["spec"].update(changes)
        self._bump(data)

    def request_deletion(self, identity: RunbookIdentity) -> None:
        data = self.docs[identity]
        if not data["metadata"].get("finalizers"):
            del self.docs[identity]
            return
        data["metadata"]["deletionTimestamp"] = FIXED_NOW.isoformat()
        self._bump(data)

    def _check(self, original: Runbook) -> dict:
        identity = original.identity
        if self.unavailable:
            raise StoreError("store unavailable")
        data = self.docs.get(identity)
        if data is None:
            raise NotFoundError(identity)
        current = data["metadata"]["resourceVersion"]
        if self.conflicts_pending > 0:
            self.conflicts_pending -= 1
            raise VersionConflictError(identity, expected=original.metadata.resource_version, actual=current)
        if current != original.metadata.resource_version:
            raise VersionConflictError(identity, expected=original.metadata.resource_version, actual=current)
        return data

    async def get(self, identity: RunbookIdentity) -> Runbook:
        if self.unavailable:
            raise StoreError("store unavailable")
        data = self.docs.get(identity)
        if data is None:
            raise NotFoundError(identity)
        return Runbook.from_dict(copy.deepcopy(data))

    async def patch_status(self, original: Runbook, updated: Runbook) -> Runbook:
        data = self._check(original)
        data["status"] = updated.status.model_dump(by_alias=True, mode="json", exclude_none=True)
        self._bump(data)
        self.status_writes += 1
        return Runbook.from_dict(copy.deepcopy(data))

    async def patch_metadata(self, original: Runbook, updated: Runbook) -> Optional[Runbook]:
        data = self._check(original)
        data["metadata"]["finalizers"] = list(updated.metadata.finalizers)
        self.metadata_writes += 1
        if data["metadata"].get("deletionTimestamp") and not data["metadata"]["finalizers"]:
            del self.docs[original.identity]
            return None
        self._bump(data)
        return Runbook.from_dict(copy.deepcopy(data))


def build_runbook(
    name: str = "high-cpu",
    namespace: str = "monitoring",
    *,
    alert_name: str = "HighCPUUsage",
    outputs=None,
    **spec_overrides,
) -> Runbook:
    spec = {
        "alertName": alert_name,
        "severity": "critical",
        "team": "platform",
        "content": {
            "impact": "API latency increases for all tenants.",
            "investigation": [
                {"description": "Check node CPU", "command": "kubectl top nodes", "expected": "Below 80%"},
                {"description": "Find hot pods", "command": "kubectl top pods -A --sort-by=cpu"},
            ],
            "remediation": [
                {"description": "Scale out the deployment", "command": "kubectl scale deploy/api --replicas=6", "risk": "low"},
            ],
            "prevention": "Set HPA targets at 70% CPU.",
        },
        "outputs": outputs or [],
    }
    spec.update(spec_overrides)
    return Runbook.model_validate(
        {
            "apiVersion": "runbook.runbook.io/v1alpha1",
            "kind": "Runbook",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }
    )


@pytest.fixture
def fake_store() -> FakeRunbookStore:
    return FakeRunbookStore()


@pytest.fixture
def runbook_factory() -> Callable[..., Runbook]:
    return build_runbook


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW

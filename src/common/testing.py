"""Testing helpers for integration runs against live backends."""

from __future__ import annotations

import os
from uuid import uuid4

import pytest

from src.common.config import ConfigError, load_controller_settings

FIRESTORE_CREDENTIAL_HINTS = (
    "GOOGLE_APPLICATION_CREDENTIALS",
    "GOOGLE_CLOUD_PROJECT",
    "FIRESTORE_EMULATOR_HOST",
)


def require_live_services() -> None:
    """Skip the test unless live Firestore credentials are configured."""
    if os.getenv("RUN_LIVE_TESTS") != "1":
        pytest.skip("Set RUN_LIVE_TESTS=1 to enable live integration tests.")
    try:
        load_controller_settings()
    except ConfigError as exc:
        pytest.skip(f"Live integration tests require valid configuration: {exc}")
    if not any(os.getenv(env) for env in FIRESTORE_CREDENTIAL_HINTS):
        pytest.skip(
            "Provide Firestore credentials via GOOGLE_APPLICATION_CREDENTIALS, GOOGLE_CLOUD_PROJECT "
            "or FIRESTORE_EMULATOR_HOST to run live integration tests."
        )


def require_live_cluster() -> None:
    """Skip the test unless a cluster with the Runbook CRD is reachable."""
    if os.getenv("RUN_LIVE_TESTS") != "1":
        pytest.skip("Set RUN_LIVE_TESTS=1 to enable live integration tests.")
    if not (os.getenv("KUBECONFIG_PATH") or os.getenv("KUBERNETES_SERVICE_HOST")):
        pytest.skip("Set KUBECONFIG_PATH (or run in-cluster) to enable live Kubernetes tests.")


def isolated_prefix(monkeypatch, *, label: str) -> str:
    """Point FIRESTORE_COLLECTION_PREFIX at a fresh, unique collection prefix."""
    base = os.getenv("LIVE_TEST_COLLECTION_PREFIX", "test")
    prefix = f"{base.rstrip('_')}_{label}_{uuid4().hex[:8]}_"
    monkeypatch.setenv("FIRESTORE_COLLECTION_PREFIX", prefix)
    monkeypatch.setenv("RUNBOOK_STORE_BACKEND", "firestore")
    return prefix

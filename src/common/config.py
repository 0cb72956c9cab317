"""Configuration loader for the runbook controller.

Settings are plain dataclasses populated from environment variables (a
`.env` file is loaded first, shell values take precedence).

Exports:
    - ConfigError: Exception for configuration errors
    - _get_env, _float_env, _optional_env: Environment helpers
    - FirestoreConfig, KubernetesConfig, OutputConfig: Backend configurations
    - ControllerSettings: Combined settings for the reconcile service
    - load_firestore_config, load_kubernetes_config, load_output_config
    - load_controller_settings: Load everything from environment
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from src.common.env import load_env


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


def _get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    value = os.getenv(key, default)
    if required and (value is None or value == ""):
        raise ConfigError(f"Missing required environment variable: {key}")
    if value is None:
        raise ConfigError(f"Environment variable {key} is not set and no default provided")
    if value == "" and default is None:
        raise ConfigError(f"Environment variable {key} is empty and no default provided")
    return value


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid float for {key}: {raw}") from exc


def _optional_env(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None or value == "":
        return None
    return value


STORE_BACKENDS = ("firestore", "kubernetes")

DEFAULT_STORE_BACKEND = "firestore"
DEFAULT_COLLECTION_PREFIX = "runbooks_"
DEFAULT_FINALIZER = "runbook.runbook.io/finalizer"
DEFAULT_RESYNC_INTERVAL_SEC = 300.0  # 5 minutes between successful passes
DEFAULT_ERROR_REQUEUE_SEC = 120.0
DEFAULT_RECONCILE_TIMEOUT_SEC = 60.0
DEFAULT_API_SINK_TIMEOUT_SEC = 30.0
DEFAULT_KUBERNETES_REQUEST_TIMEOUT_SEC = 10.0
DEFAULT_FIRESTORE_TIMEOUT_SEC = 10.0


@dataclass
class FirestoreConfig:
    """Firestore connection configuration."""

    collection_prefix: str
    project_id: Optional[str] = None
    database_id: str = "(default)"
    timeout_sec: float = DEFAULT_FIRESTORE_TIMEOUT_SEC


@dataclass
class KubernetesConfig:
    """Kubernetes API access for the CRD-backed store."""

    kubeconfig: Optional[str] = None
    request_timeout_sec: float = DEFAULT_KUBERNETES_REQUEST_TIMEOUT_SEC


@dataclass
class OutputConfig:
    """Settings shared by the built-in output sinks and the content generator."""

    api_token: Optional[str] = None
    api_timeout_sec: float = DEFAULT_API_SINK_TIMEOUT_SEC
    template_dir: Optional[str] = None


@dataclass
class ControllerSettings:
    """Combined settings for the reconcile service.

    Holds the store backend selection, per-backend configuration, requeue
    intervals and the trigger endpoint API key.
    """

    store_backend: str
    firestore: FirestoreConfig
    kubernetes: KubernetesConfig
    outputs: OutputConfig
    finalizer: str = DEFAULT_FINALIZER
    resync_interval_sec: float = DEFAULT_RESYNC_INTERVAL_SEC
    error_requeue_sec: float = DEFAULT_ERROR_REQUEUE_SEC
    reconcile_timeout_sec: float = DEFAULT_RECONCILE_TIMEOUT_SEC
    api_key: Optional[str] = None


def load_firestore_config() -> FirestoreConfig:
    """Load Firestore configuration from environment variables."""
    return FirestoreConfig(
        collection_prefix=_get_env("FIRESTORE_COLLECTION_PREFIX", default=DEFAULT_COLLECTION_PREFIX),
        project_id=_optional_env("GOOGLE_CLOUD_PROJECT"),
        database_id=_get_env("FIRESTORE_DATABASE_ID", default="(default)"),
        timeout_sec=_float_env("FIRESTORE_TIMEOUT_SEC", default=DEFAULT_FIRESTORE_TIMEOUT_SEC),
    )


def load_kubernetes_config() -> KubernetesConfig:
    return KubernetesConfig(
        kubeconfig=_optional_env("KUBECONFIG_PATH"),
        request_timeout_sec=_float_env(
            "KUBERNETES_REQUEST_TIMEOUT_SEC", default=DEFAULT_KUBERNETES_REQUEST_TIMEOUT_SEC
        ),
    )


def load_output_config() -> OutputConfig:
    return OutputConfig(
        api_token=_optional_env("RUNBOOK_API_TOKEN"),
        api_timeout_sec=_float_env("RUNBOOK_API_TIMEOUT_SEC", default=DEFAULT_API_SINK_TIMEOUT_SEC),
        template_dir=_optional_env("RUNBOOK_TEMPLATE_DIR"),
    )


def load_controller_settings() -> ControllerSettings:
    """Load controller settings from environment variables.

    Returns:
        ControllerSettings with store, output and scheduling settings.

    Raises:
        ConfigError: If a variable is missing, malformed, or names an
            unknown store backend.
    """
    load_env()

    backend = _get_env("RUNBOOK_STORE_BACKEND", default=DEFAULT_STORE_BACKEND).lower()
    if backend not in STORE_BACKENDS:
        raise ConfigError(
            f"Invalid RUNBOOK_STORE_BACKEND: {backend} (expected one of {', '.join(STORE_BACKENDS)})"
        )

    settings = ControllerSettings(
        store_backend=backend,
        firestore=load_firestore_config(),
        kubernetes=load_kubernetes_config(),
        outputs=load_output_config(),
        finalizer=_get_env("RUNBOOK_FINALIZER", default=DEFAULT_FINALIZER),
        resync_interval_sec=_float_env("RESYNC_INTERVAL_SEC", default=DEFAULT_RESYNC_INTERVAL_SEC),
        error_requeue_sec=_float_env("ERROR_REQUEUE_SEC", default=DEFAULT_ERROR_REQUEUE_SEC),
        reconcile_timeout_sec=_float_env("RECONCILE_TIMEOUT_SEC", default=DEFAULT_RECONCILE_TIMEOUT_SEC),
        api_key=_optional_env("CONTROLLER_API_KEY"),
    )

    if settings.resync_interval_sec <= 0 or settings.error_requeue_sec <= 0:
        raise ConfigError("RESYNC_INTERVAL_SEC and ERROR_REQUEUE_SEC must be positive")
    return settings

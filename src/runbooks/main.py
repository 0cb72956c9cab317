"""FastAPI service for triggering Runbook reconciliation.

Endpoints (see specs/runbook-controller/contracts/runbook-controller-openapi.yaml):
- GET /health
- POST /runbooks/{namespace}/{name}/reconcile
- GET /runbooks/{namespace}/{name}

A reconcile request runs exactly one pass and reports what the scheduler
should do next (`requeue`, `requeueAfterSeconds`). Scheduling itself belongs
to the caller (a watch loop, Cloud Scheduler, or the apply script).
"""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from src.api.auth import verify_api_key
from src.common.config import ConfigError, load_controller_settings
from src.common.logging import get_logger, log_audit, log_error
from src.runbooks.models import RunbookIdentity
from src.runbooks.reconciler import Reconciler, ReconcilerDeps
from src.runbooks.store import NotFoundError, StoreError

VERSION = "0.1.0"

logger = get_logger(__name__)

app = FastAPI(
    title="Runbook Controller",
    description="Reconciles Runbook resources and publishes their outputs.",
    version=VERSION,
)

_reconciler: Optional[Reconciler] = None
_reconciler_key: Optional[tuple] = None


def get_reconciler() -> Reconciler:
    global _reconciler, _reconciler_key

    settings = load_controller_settings()
    key = (
        settings.store_backend,
        settings.firestore.project_id,
        settings.firestore.database_id,
        settings.firestore.collection_prefix,
        settings.kubernetes.kubeconfig,
        settings.outputs.template_dir,
        settings.outputs.api_token,
        settings.outputs.api_timeout_sec,
        settings.finalizer,
        settings.resync_interval_sec,
        settings.error_requeue_sec,
    )

    if _reconciler is None or _reconciler_key != key:
        _reconciler = Reconciler(ReconcilerDeps.from_settings(settings))
        _reconciler_key = key
    return _reconciler


@app.post("/runbooks/{namespace}/{name}/reconcile")
async def reconcile(namespace: str, name: str, api_key: str = Depends(verify_api_key)):
    """Run one reconciliation pass for a single Runbook."""
    identity = RunbookIdentity(namespace=namespace, name=name)
    try:
        settings = load_controller_settings()
        reconciler = get_reconciler()
    except ConfigError as exc:
        log_error(logger, "runbook_reconcile_config_invalid", error=exc, target=str(identity))
        raise HTTPException(status_code=500, detail="controller is misconfigured") from exc

    try:
        result = await asyncio.wait_for(
            reconciler.reconcile(identity),
            timeout=settings.reconcile_timeout_sec,
        )
    except asyncio.TimeoutError as exc:
        log_error(
            logger,
            "runbook_reconcile_timeout",
            namespace=namespace,
            runbook=name,
            timeout_sec=settings.reconcile_timeout_sec,
        )
        log_audit(logger, actor="api", action="reconcile", target=str(identity), status="timeout")
        raise HTTPException(status_code=504, detail="reconcile pass timed out") from exc
    except StoreError as exc:
        log_error(logger, "runbook_reconcile_store_unavailable", error=exc, namespace=namespace, runbook=name)
        log_audit(logger, actor="api", action="reconcile", target=str(identity), status="failed")
        raise HTTPException(status_code=503, detail="resource store unavailable") from exc

    log_audit(
        logger,
        actor="api",
        action="reconcile",
        target=str(identity),
        requeue=result.requeue,
        requeue_after=result.requeue_after,
    )
    return {
        "namespace": namespace,
        "name": name,
        "requeue": result.requeue,
        "requeueAfterSeconds": result.requeue_after,
    }


@app.get("/runbooks/{namespace}/{name}")
async def get_runbook_status(namespace: str, name: str):
    """Return the observed status of a Runbook."""
    identity = RunbookIdentity(namespace=namespace, name=name)
    try:
        reconciler = get_reconciler()
        runbook = await reconciler.deps.store.get(identity)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="runbook not found") from exc
    except StoreError as exc:
        log_error(logger, "runbook_status_read_failed", error=exc, namespace=namespace, runbook=name)
        raise HTTPException(status_code=503, detail="resource store unavailable") from exc
    except ConfigError as exc:
        log_error(logger, "runbook_status_config_invalid", error=exc, namespace=namespace, runbook=name)
        raise HTTPException(status_code=500, detail="controller is misconfigured") from exc

    payload = runbook.to_dict()
    return {
        "namespace": namespace,
        "name": name,
        "resourceVersion": runbook.metadata.resource_version,
        "terminating": runbook.is_terminating,
        "status": payload.get("status", {}),
    }


@app.get("/health")
def health():
    """Health check endpoint - always returns 200."""
    status = "ok"
    config = None
    try:
        settings = load_controller_settings()
        config = {
            "storeBackend": settings.store_backend,
            "finalizer": settings.finalizer,
            "resyncIntervalSec": settings.resync_interval_sec,
            "errorRequeueSec": settings.error_requeue_sec,
            "reconcileTimeoutSec": settings.reconcile_timeout_sec,
        }
    except ConfigError as e:
        logger.warning(f"Health check: Settings load failed: {e}")
        status = "degraded"

    return {"status": status, "version": VERSION, "config": config}

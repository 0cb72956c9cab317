"""
Kubernetes CRD-backed resource store.

Reads and patches `runbooks.runbook.io/v1alpha1` custom resources. Every patch
is a JSON merge patch carrying the `metadata.resourceVersion` observed at the
start of the pass, which makes the API server reject stale writes with 409.
Status goes through the `/status` sub-resource; finalizers through the main
resource.

The kubernetes client is synchronous, so calls run in a worker thread with
`_request_timeout` bounding each request.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.common.config import KubernetesConfig
from src.common.logging import get_logger
from src.runbooks.models import API_GROUP, API_VERSION, Runbook, RunbookIdentity
from src.runbooks.store.base import NotFoundError, ResourceStore, StoreError, VersionConflictError

logger = get_logger(__name__)

PLURAL = "runbooks"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status is not None and exc.status >= 500


def _translate(exc: ApiException, identity: RunbookIdentity, expected_version: Optional[str] = None) -> StoreError:
    if exc.status == 404:
        return NotFoundError(identity)
    if exc.status == 409:
        return VersionConflictError(identity, expected=expected_version)
    return StoreError(f"Kubernetes API error for Runbook {identity}: {exc.status} {exc.reason}")


class KubernetesRunbookStore(ResourceStore):
    """
    Runbook resources stored as Kubernetes custom resources.

    Requires the Runbook CRD (with the status sub-resource enabled) to be
    installed and RBAC for get/patch on runbooks, runbooks/status and
    runbooks/finalizers.
    """

    backend = "kubernetes"

    def __init__(self, k8s_config: KubernetesConfig, api: Optional[client.CustomObjectsApi] = None):
        self.config = k8s_config
        self._api = api

    def _get_api(self) -> client.CustomObjectsApi:
        if self._api is None:
            if self.config.kubeconfig:
                config.load_kube_config(config_file=self.config.kubeconfig)
            else:
                try:
                    config.load_incluster_config()
                except config.ConfigException:
                    config.load_kube_config()
            self._api = client.CustomObjectsApi()
        return self._api

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _get_object(self, identity: RunbookIdentity) -> Dict[str, Any]:
        api = self._get_api()
        return await asyncio.to_thread(
            api.get_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            identity.namespace,
            PLURAL,
            identity.name,
            _request_timeout=self.config.request_timeout_sec,
        )

    async def get(self, identity: RunbookIdentity) -> Runbook:
        try:
            obj = await self._get_object(identity)
        except ApiException as exc:
            raise _translate(exc, identity) from exc
        return Runbook.from_dict(obj)

    async def patch_status(self, original: Runbook, updated: Runbook) -> Runbook:
        identity = original.identity
        body = {
            "metadata": {"resourceVersion": original.metadata.resource_version},
            "status": updated.status.model_dump(by_alias=True, mode="json", exclude_none=True),
        }
        api = self._get_api()
        try:
            obj = await asyncio.to_thread(
                api.patch_namespaced_custom_object_status,
                API_GROUP,
                API_VERSION,
                identity.namespace,
                PLURAL,
                identity.name,
                body,
                _request_timeout=self.config.request_timeout_sec,
            )
        except ApiException as exc:
            raise _translate(exc, identity, original.metadata.resource_version) from exc
        return Runbook.from_dict(obj)

    async def patch_metadata(self, original: Runbook, updated: Runbook) -> Optional[Runbook]:
        identity = original.identity
        body = {
            "metadata": {
                "resourceVersion": original.metadata.resource_version,
                "finalizers": list(updated.metadata.finalizers),
            }
        }
        api = self._get_api()
        try:
            obj = await asyncio.to_thread(
                api.patch_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                identity.namespace,
                PLURAL,
                identity.name,
                body,
                _request_timeout=self.config.request_timeout_sec,
            )
        except ApiException as exc:
            raise _translate(exc, identity, original.metadata.resource_version) from exc

        runbook = Runbook.from_dict(obj)
        if runbook.is_terminating and not runbook.metadata.finalizers:
            # The API server garbage-collects the object once the last finalizer is gone.
            logger.debug(f"Runbook {identity} released for deletion")
            return None
        return runbook

    async def close(self) -> None:
        if self._api is not None:
            await asyncio.to_thread(self._api.api_client.close)

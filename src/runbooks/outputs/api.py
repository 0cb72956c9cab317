"""API sink: publishes the runbook to a remote documentation service.

POSTs a JSON document to `<destination>/runbooks` with an optional bearer
token. Any transport error or non-2xx response is a publish failure. The
request is bounded by a 30-second timeout by default; cancelling the calling
task aborts it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from src.common.config import DEFAULT_API_SINK_TIMEOUT_SEC
from src.common.logging import get_logger
from src.runbooks.models import OutputFormat, OutputTarget, Runbook
from src.runbooks.outputs.base import OutputSink, SinkError

logger = get_logger(__name__)


def build_api_payload(runbook: Runbook, content: str, generated_at: datetime) -> Dict[str, Any]:
    """Build the JSON body sent to the runbook API."""
    spec = runbook.spec
    return {
        "id": f"{runbook.metadata.namespace}-{runbook.metadata.name}",
        "alertName": spec.alert_name,
        "severity": spec.severity,
        "team": spec.team,
        "content": content,
        "metadata": {
            "namespace": runbook.metadata.namespace,
            "outputs": [target.model_dump(mode="json", exclude_none=True) for target in spec.outputs],
        },
        "generatedAt": generated_at.isoformat(),
    }


def runbooks_endpoint(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/runbooks"


class APISink(OutputSink):
    format = OutputFormat.API.value

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_API_SINK_TIMEOUT_SEC,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def publish(
        self,
        runbook: Runbook,
        content: str,
        target: OutputTarget,
        *,
        generated_at: datetime,
    ) -> str:
        url = runbooks_endpoint(target.destination)
        payload = build_api_payload(runbook, content, generated_at)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise SinkError(f"POST {url} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise SinkError(f"POST {url} failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "runbook_api_rejected",
                extra={
                    "event": "runbook_api_rejected",
                    "url": url,
                    "status_code": response.status_code,
                    "response": response.text[:200],
                },
            )
            raise SinkError(f"API request failed with status: {response.status_code}")

        return url

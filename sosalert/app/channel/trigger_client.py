"""
trigger_client.py - HTTP client for POST /api/v1/alerts/trigger.

Used by the device-side AlertChannel. Error bodies produced by
core.errors are mapped back onto AlertAPIError with the same code, so
callers handle server and local failures the same way.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from sosalert.app.api.schemas import TriggerResponse
from sosalert.app.core.config import settings
from sosalert.app.core.errors import AlertAPIError

logger = logging.getLogger(__name__)

TRIGGER_PATH = "/api/v1/alerts/trigger"


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        error: Dict[str, Any] = response.json().get("error", {})
    except ValueError:
        error = {}
    raise AlertAPIError(
        error.get("message") or f"Trigger failed with HTTP {response.status_code}",
        status_code=response.status_code,
        error_code=error.get("code") or "internal",
        details=error.get("details"),
    )


class TriggerClient:
    """
    Usage:
        client = TriggerClient("https://alerts.example.org")
        result = await client.trigger("student-1", actor_id="staff-9")
        await client.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.TRIGGER_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.TRIGGER_TIMEOUT_SECONDS
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def trigger(self, target_id: str, actor_id: Optional[str] = None) -> TriggerResponse:
        client = await self._get_client()
        headers = {"X-Actor-Id": actor_id} if actor_id else {}
        response = await client.post(
            f"{self.base_url}{TRIGGER_PATH}",
            json={"targetId": target_id},
            headers=headers,
        )
        _raise_for_error(response)
        result = TriggerResponse.model_validate(response.json())
        logger.info(
            "Trigger for %s accepted: sent %d, failed %d",
            target_id, result.sentCount, result.failedCount,
            extra={"alert_id": result.alertId},
        )
        return result

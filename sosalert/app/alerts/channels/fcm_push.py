"""
fcm_push.py - Firebase Cloud Messaging transport (HTTP v1 API).

Delivery mechanism:
    • POST {FCM_BASE_URL}/v1/projects/{project}/messages:send, one request
      per token, all issued concurrently on one httpx.AsyncClient
    • OAuth2 bearer token from a google-auth service account
      (settings.FCM_CREDENTIALS_FILE, scope firebase.messaging). Access
      tokens last about an hour; they are refreshed before any batch that
      finds them expired, so a long-running server keeps sending
    • Android priority HIGH, APNs priority 10 + content-available so the
      message wakes a backgrounded app

═══════════════════════════════════════════════════════════════════════════
FAILURE MAPPING
═══════════════════════════════════════════════════════════════════════════

    HTTP 200                  → success, message_id = response "name"
    HTTP 4xx / 5xx            → failure, reason = FCM errorCode or status
    timeout / transport error → failure, reason = exception class + text
    no project / credentials  → PushTransportError (batch never attempted)
    token refresh rejected    → PushTransportError (batch never attempted)

Outcomes are returned in token order regardless of completion order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth.credentials import Credentials
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from sosalert.app.alerts.channels.base import MulticastMessage
from sosalert.app.alerts.models import SendOutcome
from sosalert.app.core.config import settings
from sosalert.app.core.errors import PushTransportError

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


def _error_reason(response: httpx.Response) -> str:
    """Pull the most specific FCM error code out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error", {}) if isinstance(body, dict) else {}
    for detail in error.get("details", []) or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            return str(detail["errorCode"])
    return str(error.get("status") or f"HTTP {response.status_code}")


class FcmPushTransport:
    """
    FCM HTTP v1 sender.

    Usage:
        transport = FcmPushTransport(credentials_file="/secrets/fcm-sa.json")
        outcomes = await transport.send_multicast(message)
        await transport.close()

    `credentials` accepts any google-auth Credentials object; the project id
    defaults to the service account's own project.
    """

    name = "fcm"

    def __init__(
        self,
        project_id: Optional[str] = None,
        credentials: Optional[Credentials] = None,
        *,
        credentials_file: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        auth_request: Any = None,
    ):
        self.project_id = project_id or settings.FCM_PROJECT_ID
        self.credentials_file = credentials_file or settings.FCM_CREDENTIALS_FILE
        self.base_url = (base_url or settings.FCM_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.PUSH_TIMEOUT_SECONDS
        self._credentials = credentials
        self._auth_request = auth_request
        self._refresh_lock: Optional[asyncio.Lock] = None
        self._http_client = client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/projects/{self.project_id}/messages:send"

    @property
    def configured(self) -> bool:
        return self._credentials is not None or bool(self.credentials_file)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ── Credentials ──

    def _load_credentials(self) -> Credentials:
        if self._credentials is None:
            if not self.credentials_file:
                raise PushTransportError(self.name, "FCM_CREDENTIALS_FILE is required")
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    self.credentials_file, scopes=[FCM_SCOPE],
                )
            except (OSError, ValueError) as exc:
                raise PushTransportError(
                    self.name, f"cannot load service account {self.credentials_file}: {exc}",
                ) from exc
            logger.info("[FCM] Loaded service account credentials from %s", self.credentials_file)
        if not self.project_id:
            self.project_id = getattr(self._credentials, "project_id", None)
        return self._credentials

    async def _access_token(self) -> str:
        """Current bearer token, refreshed first when missing or expired."""
        credentials = self._load_credentials()
        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        async with self._refresh_lock:
            if not credentials.valid:
                if self._auth_request is None:
                    self._auth_request = GoogleAuthRequest()
                try:
                    # google-auth refresh is blocking I/O
                    await asyncio.to_thread(credentials.refresh, self._auth_request)
                except google_auth_exceptions.GoogleAuthError as exc:
                    raise PushTransportError(self.name, f"access token refresh failed: {exc}") from exc
                logger.info("[FCM] Access token refreshed, expires %s", credentials.expiry)
        return credentials.token

    # ── Sending ──

    async def _send_one(
        self,
        client: httpx.AsyncClient,
        message: MulticastMessage,
        token: str,
        access_token: str,
    ) -> SendOutcome:
        headers = {"Authorization": f"Bearer {access_token}"}
        body: Dict[str, Any] = {"message": message.for_token(token)}
        try:
            response = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            return SendOutcome(token=token, success=False, error=f"{type(exc).__name__}: {exc}")

        if response.is_success:
            try:
                message_id = response.json().get("name")
            except ValueError:
                message_id = None
            return SendOutcome(token=token, success=True, message_id=message_id)
        return SendOutcome(token=token, success=False, error=_error_reason(response))

    async def send_multicast(self, message: MulticastMessage) -> List[SendOutcome]:
        self._load_credentials()
        if not self.project_id:
            raise PushTransportError(self.name, "FCM_PROJECT_ID is required")
        access_token = await self._access_token()

        client = await self._get_client()
        outcomes = await asyncio.gather(
            *(self._send_one(client, message, token, access_token) for token in message.tokens)
        )
        logger.info(
            "[FCM] Alert %s: %d/%d accepted",
            message.alert_id,
            sum(1 for o in outcomes if o.success), len(outcomes),
            extra={"alert_id": message.alert_id},
        )
        return list(outcomes)

"""
FastAPI route: critical alert trigger endpoint.

Provides endpoints to:
    POST /api/v1/alerts/trigger   - resolve responders and push the alert
    GET  /api/v1/alerts/health    - dispatcher health
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from sosalert.app.alerts.dispatcher import Dispatcher, build_dispatcher
from sosalert.app.api.schemas import (
    SendFailure,
    ServiceHealthResponse,
    TriggerRequest,
    TriggerResponse,
)
from sosalert.app.core.config import settings
from sosalert.app.core.logging_config import abbreviate_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["critical-alerts"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_dispatcher(request: Request) -> Dispatcher:
    """Dispatcher owned by the app (created by the lifespan, or lazily here)."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = build_dispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/trigger",
    response_model=TriggerResponse,
    summary="Trigger a critical alert",
    description=(
        "Looks up the target user's assigned responders, resolves their push "
        "tokens and sends one high-priority data message to all of them."
    ),
)
async def trigger_alert(
    body: TriggerRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
):
    """Trigger a critical alert for `targetId`."""
    result = await dispatcher.trigger(body.targetId, actor_id)
    return TriggerResponse(
        **result.to_dict(),
        failures=[
            SendFailure(token=abbreviate_token(token), reason=reason)
            for token, reason in result.failures.items()
        ],
    )


@router.get(
    "/health",
    response_model=ServiceHealthResponse,
    summary="Alert dispatch health check",
)
async def health(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Report which record store and push provider are wired in."""
    try:
        reachable = await dispatcher.store.ping()
    except Exception as exc:
        logger.warning("Record store ping failed: %s", exc)
        reachable = False
    return ServiceHealthResponse(
        status="healthy" if reachable else "degraded",
        record_store=settings.RECORD_STORE,
        push_provider=dispatcher.transport.name,
    )

"""
Pydantic schemas for the alert trigger API.

Separated from the route handler so the device-side TriggerClient can
parse responses with the same models.
"""

from __future__ import annotations

from typing import List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class TriggerRequest(BaseModel):
    """Request body for POST /api/v1/alerts/trigger."""
    model_config = ConfigDict(populate_by_name=True)

    targetId: str = Field(
        ...,
        validation_alias=AliasChoices("targetId", "targetUserId"),
        description="Identifier of the user the alert is about",
        examples=["student-42"],
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SendFailure(BaseModel):
    token: str = Field(..., description="Abbreviated delivery address")
    reason: str


class TriggerResponse(BaseModel):
    """Response for POST /api/v1/alerts/trigger."""
    success: bool
    alertId: str
    sentCount: int = Field(..., ge=0)
    failedCount: int = Field(..., ge=0)
    message: str
    unreachableResponders: List[str] = Field(
        default_factory=list,
        description="Responders skipped because no usable address was found",
    )
    failures: List[SendFailure] = Field(
        default_factory=list,
        description="One entry per failed address, in send order",
    )


class ServiceHealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "critical-alert-dispatch"
    record_store: str
    push_provider: str

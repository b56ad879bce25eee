"""Pydantic models for API request/response serialization.

These models mirror the tiermod dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    """Content submitted for moderation by the authenticated user."""

    text: str = ""
    image: Optional[str] = Field(default=None, description="Base64-encoded image")
    type: str = "message"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""
    workflow: str = "community"


class TierFlowEntryResponse(BaseModel):
    """Mirrors tiermod.moderation.models.TierFlowEntry."""

    tier: str
    verdict: str
    detail: dict[str, Any] = Field(default_factory=dict)


class AnalyzeResponse(BaseModel):
    """Verdict for submitted content.

    ``tier_flow`` and ``matches`` are only filled in for moderators.
    """

    allowed: bool
    action: str
    reason: str
    workflow: str
    queue_item_id: str = ""
    pending_message: str = ""
    matches: list[str] = Field(default_factory=list)
    tier_flow: list[TierFlowEntryResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class BlocklistUpdateRequest(BaseModel):
    terms: list[str]


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class QueueItemResponse(BaseModel):
    """Mirrors tiermod.moderation.models.ModerationQueueItem."""

    id: str
    text: str = ""
    safe_text: str = ""
    type: str = "message"
    content_type: str = "text"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""
    workflow: str = ""
    user_id: str = ""
    user_email: str = ""
    tier_flow: list[TierFlowEntryResponse] = Field(default_factory=list)
    triggering_tier: str = ""
    overall_action: str = ""
    priority: str = ""
    status: str = "pending"
    reviewed_by: str = ""
    reviewed_at: str = ""
    notes: str = ""
    created_at: str = ""


class ResolveQueueItemRequest(BaseModel):
    status: str = Field(..., description="'approved' or 'rejected'")
    notes: str = ""


class QueueStatsResponse(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    today_total: int = 0


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class BlockUserRequest(BaseModel):
    reason: str


class UserModerationResponse(BaseModel):
    """Mirrors tiermod.moderation.models.UserModerationState."""

    user_id: str
    blocked: bool = False
    reason: str = ""
    blocked_by: str = ""
    blocked_at: str = ""
    unblocked_at: str = ""
    updated_at: str = ""
    history: list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEventResponse(BaseModel):
    """Mirrors tiermod.security.audit_log.AuditEntry."""

    id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    success: bool = True

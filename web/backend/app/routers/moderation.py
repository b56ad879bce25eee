"""Moderation router -- content analysis, config, review queue and user blocks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from tiermod.auth.models import Role, User
from tiermod.auth.permissions import has_permission, require_role
from tiermod.errors import (
    ConflictError,
    ModerationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from tiermod.moderation.models import (
    Action,
    ModerationQueueItem,
    ModerationRequest,
    UserModerationState,
)
from tiermod.moderation.pipeline import ModerationPipeline
from tiermod.moderation.store import ModerationStore
from tiermod.security import audit_log
from tiermod.security.audit_log import AuditLogger
from tiermod.settings import Settings
from tiermod.service import build_audit_logger, build_pipeline, build_store
from web.backend.app.middleware.auth import get_current_user
from web.backend.app.models.api import (
    AnalyzeRequest,
    AnalyzeResponse,
    AuditEventResponse,
    BlocklistUpdateRequest,
    BlockUserRequest,
    QueueItemResponse,
    QueueStatsResponse,
    ResolveQueueItemRequest,
    TierFlowEntryResponse,
    UserModerationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


# ---------------------------------------------------------------------------
# Service singletons
# ---------------------------------------------------------------------------

_settings: Settings | None = None
_store: ModerationStore | None = None
_pipeline: ModerationPipeline | None = None
_audit: AuditLogger | None = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_store() -> ModerationStore:
    global _store
    if _store is None:
        _store = build_store(_get_settings())
    return _store


def get_pipeline() -> ModerationPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(_get_settings(), store=get_store())
    return _pipeline


def get_audit_logger() -> AuditLogger:
    global _audit
    if _audit is None:
        _audit = build_audit_logger(_get_settings())
    return _audit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(exc: ModerationError) -> HTTPException:
    """Translate a moderation error into the matching HTTP error."""
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, StorageError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(exc))


async def _record(audit: AuditLogger, *args: Any, **kwargs: Any) -> None:
    """Write an audit entry from a worker thread."""
    await asyncio.to_thread(audit.log_event, *args, **kwargs)


def _queue_item_response(item: ModerationQueueItem) -> QueueItemResponse:
    data = item.to_dict()
    data["tier_flow"] = [TierFlowEntryResponse(**e) for e in item.tier_flow]
    return QueueItemResponse(**data)


def _user_response(state: UserModerationState) -> UserModerationResponse:
    data = state.to_dict()
    data.pop("id", None)
    return UserModerationResponse(**data)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Moderate content before it is posted",
)
async def analyze_content(
    body: AnalyzeRequest,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    pipeline: ModerationPipeline = Depends(get_pipeline),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Run the caller's content through the moderation tiers."""
    try:
        blocked = await store.is_user_blocked(user.id)
    except StorageError:
        logger.exception("Could not read block state for user %s; allowing", user.id)
        blocked = False
    if blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is blocked from posting",
        )

    try:
        request = ModerationRequest(
            text=body.text,
            image=body.image or None,
            user_id=user.id,
            user_email=user.email,
            type=body.type,
            content_id=body.content_id,
            channel_id=body.channel_id,
            group_id=body.group_id,
            workflow=body.workflow,
        )
    except ValidationError as exc:
        raise _http_error(exc) from exc

    result = await pipeline.moderate_content(request)

    if result.action == Action.REJECT:
        await _record(
            audit,
            actor=user.id,
            action=audit_log.CONTENT_REJECTED,
            resource_type=body.type,
            resource_id=body.content_id or result.queue_item_id,
            details={"reason": result.reason.value, "workflow": request.workflow.value},
        )

    response = AnalyzeResponse(
        allowed=result.allowed,
        action=result.action.value,
        reason=result.reason.value,
        workflow=result.workflow.value,
        queue_item_id=result.queue_item_id,
        pending_message=result.pending_message,
    )
    if has_permission(user, Role.moderator):
        response.matches = list(result.matches)
        response.tier_flow = [TierFlowEntryResponse(**e.to_dict()) for e in result.tier_flow]
    return response


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@router.get("/config", summary="Get the moderation config (admin only)")
async def get_config(
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
) -> dict[str, Any]:
    require_role(user, Role.admin)
    try:
        config = await store.get_config()
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return config.to_dict()


@router.put("/config", summary="Update the moderation config (admin only)")
async def update_config(
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    """Merge the given fields into the config; omitted fields are unchanged."""
    require_role(user, Role.admin)
    try:
        config = await store.save_config(body)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    await _record(audit, user.id, audit_log.CONFIG_UPDATED, "config", config.id, {"fields": sorted(body)})
    return config.to_dict()


@router.post("/blocklist", summary="Replace the keyword blocklist (admin only)")
async def update_blocklist(
    body: BlocklistUpdateRequest,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    require_role(user, Role.admin)
    try:
        config = await store.update_blocklist(body.terms)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    await _record(audit, user.id, audit_log.BLOCKLIST_UPDATED, "config", config.id, {"terms": len(config.blocklist)})
    return {"blocklist": config.blocklist, "count": len(config.blocklist)}


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


@router.get(
    "/queue",
    response_model=list[QueueItemResponse],
    summary="List queued content, most recent first (admin only)",
)
async def list_queue(
    status_filter: str = Query("pending", alias="status"),
    limit: int = Query(50),
    workflow: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
):
    require_role(user, Role.admin)
    try:
        items = await store.list_queue(status=status_filter, limit=limit, workflow=workflow)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return [_queue_item_response(i) for i in items]


@router.get(
    "/queue/{item_id}",
    response_model=QueueItemResponse,
    summary="Get a queue item (admin only)",
)
async def get_queue_item(
    item_id: str,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
):
    require_role(user, Role.admin)
    try:
        item = await store.get_queue_item(item_id)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return _queue_item_response(item)


@router.put(
    "/queue/{item_id}",
    response_model=QueueItemResponse,
    summary="Approve or reject a queue item (admin only)",
)
async def resolve_queue_item(
    item_id: str,
    body: ResolveQueueItemRequest,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Resolve a pending item. Resolving an item twice returns 409."""
    require_role(user, Role.admin)
    try:
        item = await store.resolve_queue_item(item_id, body.status, user.id, body.notes)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    await _record(audit, user.id, audit_log.QUEUE_RESOLVED, "queue_item", item.id, {"status": item.status})
    return _queue_item_response(item)


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Queue counts (admin only)",
)
async def get_stats(
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
):
    require_role(user, Role.admin)
    try:
        stats = await store.get_stats()
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return QueueStatsResponse(**stats)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get(
    "/user/{user_id}",
    response_model=UserModerationResponse,
    summary="Get a user's block state (admin only)",
)
async def get_user_state(
    user_id: str,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
):
    require_role(user, Role.admin)
    try:
        state = await store.get_user_state(user_id)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return _user_response(state)


@router.put(
    "/user/{user_id}/block",
    response_model=UserModerationResponse,
    summary="Block a user (admin only)",
)
async def block_user(
    user_id: str,
    body: BlockUserRequest,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
):
    require_role(user, Role.admin)
    try:
        state = await store.set_user_block_status(user_id, True, body.reason, user.id)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    await _record(audit, user.id, audit_log.USER_BLOCKED, "user", user_id, {"reason": body.reason})
    return _user_response(state)


@router.put(
    "/user/{user_id}/unblock",
    response_model=UserModerationResponse,
    summary="Unblock a user (admin only)",
)
async def unblock_user(
    user_id: str,
    user: User = Depends(get_current_user),
    store: ModerationStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
):
    require_role(user, Role.admin)
    try:
        state = await store.set_user_block_status(user_id, False, actor_id=user.id)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    await _record(audit, user.id, audit_log.USER_UNBLOCKED, "user", user_id)
    return _user_response(state)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@router.get(
    "/audit",
    response_model=list[AuditEventResponse],
    summary="Recent admin actions (admin only)",
)
async def list_audit_events(
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(get_current_user),
    audit: AuditLogger = Depends(get_audit_logger),
):
    require_role(user, Role.admin)
    events = await asyncio.to_thread(audit.get_events, action=action, limit=limit)
    return [AuditEventResponse(**vars(e)) for e in events]

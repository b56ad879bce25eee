"""Persistence for moderation config, the review queue and user block state.

All records live in a :class:`~tiermod.storage.documents.DocumentStore`:

- ``moderation-config`` -- the single ``config`` document
- ``moderation-queue``  -- one document per queued piece of content
- ``user-moderation``   -- one document per user that was ever blocked
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from tiermod.errors import ConflictError, NotFoundError, ValidationError
from tiermod.moderation.blocklist import normalize_terms
from tiermod.moderation.models import (
    CATEGORIES,
    TIER_ACTION_FIELDS,
    Action,
    ModerationConfig,
    ModerationQueueItem,
    QueueStatus,
    UserModerationState,
    Workflow,
    valid_severity,
    utcnow,
)
from tiermod.storage.documents import DocumentStore

logger = logging.getLogger(__name__)

CONFIG_COLLECTION = "moderation-config"
QUEUE_COLLECTION = "moderation-queue"
USERS_COLLECTION = "user-moderation"
CONFIG_ID = "config"

DEFAULT_QUEUE_LIMIT = 50
MAX_QUEUE_LIMIT = 500

_READ_ONLY_FIELDS = {"id", "created_at", "updated_at", "_etag"}
_BOOL_FIELDS = {
    "enabled",
    "match_whole_word",
    "use_pattern_analysis",
    "queue_rejections",
    "flag_suspicious_links",
    "show_pending_message",
}
_PROFILE_BOOL_FIELDS = {"enabled", "tier1", "tier2", "tier3"}


def new_queue_item_id() -> str:
    return f"mod-{uuid.uuid4().hex[:16]}"


def _require_id(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"A non-empty {label} is required")
    return value.strip()


def _validate_thresholds(value: Any) -> dict[str, int]:
    if not isinstance(value, dict):
        raise ValidationError("thresholds must be an object")
    for category, severity in value.items():
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown threshold category '{category}'")
        if not valid_severity(severity):
            raise ValidationError(f"Invalid threshold for {category}: must be an integer 0-6")
    return value


def _validate_workflows(value: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(value, dict):
        raise ValidationError("workflows must be an object")
    names = {wf.value for wf in Workflow}
    for name, profile in value.items():
        if name not in names:
            raise ValidationError(f"Unknown workflow '{name}'")
        if not isinstance(profile, dict):
            raise ValidationError(f"Workflow '{name}' must be an object")
        for key, setting in profile.items():
            if key in _PROFILE_BOOL_FIELDS:
                if not isinstance(setting, bool):
                    raise ValidationError(f"workflows.{name}.{key} must be true or false")
            elif key in TIER_ACTION_FIELDS:
                if setting not in (Action.REJECT.value, Action.PENDING.value):
                    raise ValidationError(
                        f"workflows.{name}.{key} must be 'reject' or 'pending'"
                    )
            else:
                raise ValidationError(f"Unknown workflow setting '{key}'")
    return value


class ModerationStore:
    """Config, queue and user-state operations over a document store."""

    def __init__(self, documents: DocumentStore) -> None:
        self._docs = documents

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def get_config(self) -> ModerationConfig:
        """Return the current config, creating the defaults on first use."""
        try:
            doc = await self._docs.get(CONFIG_COLLECTION, CONFIG_ID)
        except NotFoundError:
            config = ModerationConfig()
            try:
                await self._docs.create(CONFIG_COLLECTION, config.to_dict())
            except ConflictError:
                # Created by a concurrent caller; use theirs.
                doc = await self._docs.get(CONFIG_COLLECTION, CONFIG_ID)
            else:
                logger.info("Created default moderation config")
                return config
        return ModerationConfig.from_dict(doc)

    async def save_config(self, partial: dict[str, Any]) -> ModerationConfig:
        """Merge *partial* into the stored config field by field and persist it.

        Nested objects merge per key (``thresholds`` per category,
        ``workflows`` per profile and setting); lists and scalars replace.
        """
        if not isinstance(partial, dict):
            raise ValidationError("Config update must be an object")

        current = await self.get_config()
        merged = current.to_dict()

        for key, value in partial.items():
            if key in _READ_ONLY_FIELDS:
                continue
            if key == "thresholds":
                merged["thresholds"].update(_validate_thresholds(value))
            elif key == "workflows":
                for name, profile in _validate_workflows(value).items():
                    merged["workflows"].setdefault(name, {}).update(profile)
            elif key in ("blocklist", "safe_domains"):
                if not isinstance(value, list):
                    raise ValidationError(f"{key} must be a list of strings")
                merged[key] = normalize_terms(value)
            elif key in _BOOL_FIELDS:
                if not isinstance(value, bool):
                    raise ValidationError(f"{key} must be true or false")
                merged[key] = value
            elif key == "pending_message_text":
                if not isinstance(value, str):
                    raise ValidationError("pending_message_text must be a string")
                merged[key] = value
            else:
                raise ValidationError(f"Unknown configuration field '{key}'")

        merged["updated_at"] = utcnow()
        config = ModerationConfig.from_dict(merged)
        await self._docs.replace(CONFIG_COLLECTION, CONFIG_ID, config.to_dict())
        logger.info("Moderation config updated: %s", ", ".join(sorted(partial)) or "no fields")
        return config

    async def update_blocklist(self, terms: list[Any]) -> ModerationConfig:
        """Replace the tier-1 blocklist."""
        return await self.save_config({"blocklist": terms})

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    async def enqueue(self, item: ModerationQueueItem) -> ModerationQueueItem:
        """Persist *item* as a new pending queue entry."""
        item.status = QueueStatus.PENDING.value
        item.reviewed_by = ""
        item.reviewed_at = ""
        if not item.id:
            item.id = new_queue_item_id()
        saved = await self._docs.create(QUEUE_COLLECTION, item.to_dict())
        logger.info("Queued %s from user %s (%s)", saved["id"], item.user_id, item.triggering_tier)
        return ModerationQueueItem.from_dict(saved)

    async def get_queue_item(self, item_id: str) -> ModerationQueueItem:
        item_id = _require_id(item_id, "queue item id")
        return ModerationQueueItem.from_dict(await self._docs.get(QUEUE_COLLECTION, item_id))

    async def list_queue(
        self,
        status: Optional[str] = QueueStatus.PENDING.value,
        limit: int = DEFAULT_QUEUE_LIMIT,
        workflow: Optional[str] = None,
    ) -> list[ModerationQueueItem]:
        """Return queue items, most recent first.

        *status* may be any :class:`QueueStatus` value or ``"all"``.
        """
        if not isinstance(limit, int) or not 1 <= limit <= MAX_QUEUE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_QUEUE_LIMIT}")

        filter: dict[str, Any] = {}
        if status and status != "all":
            try:
                filter["status"] = QueueStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown queue status '{status}'") from None
        if workflow:
            try:
                filter["workflow"] = Workflow(workflow).value
            except ValueError:
                raise ValidationError(f"Unknown workflow '{workflow}'") from None

        records = await self._docs.query(QUEUE_COLLECTION, filter)
        records.sort(key=lambda r: r.get("created_at", ""), reverse=True)
        return [ModerationQueueItem.from_dict(r) for r in records[:limit]]

    async def resolve_queue_item(
        self,
        item_id: str,
        status: str,
        reviewed_by: str,
        notes: str = "",
    ) -> ModerationQueueItem:
        """Move a pending item to ``approved`` or ``rejected``.

        Raises NotFoundError for unknown ids and ConflictError when the item
        is already resolved or changes while being resolved.
        """
        item_id = _require_id(item_id, "queue item id")
        try:
            target = QueueStatus(status)
        except ValueError:
            raise ValidationError("status must be 'approved' or 'rejected'") from None
        if target == QueueStatus.PENDING:
            raise ValidationError("status must be 'approved' or 'rejected'")

        doc = await self._docs.get(QUEUE_COLLECTION, item_id)
        if doc.get("status") != QueueStatus.PENDING.value:
            raise ConflictError(f"Queue item {item_id} is already {doc.get('status')}")

        etag = doc.get("_etag")
        doc.update(
            status=target.value,
            reviewed_by=reviewed_by,
            reviewed_at=utcnow(),
            notes=notes or "",
        )
        saved = await self._docs.replace(QUEUE_COLLECTION, item_id, doc, if_match=etag)
        logger.info("Queue item %s %s by %s", item_id, target.value, reviewed_by)
        return ModerationQueueItem.from_dict(saved)

    async def get_stats(self) -> dict[str, int]:
        """Counts per queue status plus the number of items queued today (UTC)."""
        records = await self._docs.query(QUEUE_COLLECTION)
        stats = {s.value: 0 for s in QueueStatus}
        today = datetime.now(timezone.utc).date().isoformat()
        today_total = 0
        for record in records:
            status = record.get("status")
            if status in stats:
                stats[status] += 1
            if str(record.get("created_at", "")).startswith(today):
                today_total += 1
        stats["today_total"] = today_total
        return stats

    # ------------------------------------------------------------------
    # User block state
    # ------------------------------------------------------------------

    async def get_user_state(self, user_id: str) -> UserModerationState:
        """Return the block state for *user_id* (unblocked if never recorded)."""
        user_id = _require_id(user_id, "user id")
        try:
            doc = await self._docs.get(USERS_COLLECTION, user_id)
        except NotFoundError:
            return UserModerationState(user_id=user_id)
        return UserModerationState.from_dict(doc)

    async def is_user_blocked(self, user_id: str) -> bool:
        return (await self.get_user_state(user_id)).blocked

    async def set_user_block_status(
        self,
        user_id: str,
        blocked: bool,
        reason: str = "",
        actor_id: str = "",
    ) -> UserModerationState:
        """Block or unblock a user, recording the action in their history."""
        user_id = _require_id(user_id, "user id")
        reason = (reason or "").strip()
        if blocked and not reason:
            raise ValidationError("A reason is required to block a user")

        etag: Optional[str] = None
        try:
            doc = await self._docs.get(USERS_COLLECTION, user_id)
            etag = doc.get("_etag")
            state = UserModerationState.from_dict(doc)
        except NotFoundError:
            state = UserModerationState(user_id=user_id)

        now = utcnow()
        state.history.append(
            {
                "action": "blocked" if blocked else "unblocked",
                "reason": reason,
                "by": actor_id,
                "timestamp": now,
            }
        )
        state.blocked = blocked
        state.updated_at = now
        if blocked:
            state.reason = reason
            state.blocked_by = actor_id
            state.blocked_at = now
        else:
            state.reason = ""
            state.blocked_by = ""
            state.unblocked_at = now

        if etag is None:
            saved = await self._docs.create(USERS_COLLECTION, state.to_dict())
        else:
            saved = await self._docs.replace(USERS_COLLECTION, user_id, state.to_dict(), if_match=etag)
        logger.info("User %s %s by %s", user_id, "blocked" if blocked else "unblocked", actor_id)
        return UserModerationState.from_dict(saved)

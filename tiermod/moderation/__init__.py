"""Tiered content moderation: blocklist, link safety and AI classification."""

from tiermod.moderation.models import (
    Action,
    ModerationConfig,
    ModerationRequest,
    ModerationResult,
    Reason,
    Workflow,
)
from tiermod.moderation.pipeline import ModerationPipeline
from tiermod.moderation.store import ModerationStore

__all__ = [
    "Action",
    "ModerationConfig",
    "ModerationPipeline",
    "ModerationRequest",
    "ModerationResult",
    "ModerationStore",
    "Reason",
    "Workflow",
]

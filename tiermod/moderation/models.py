"""Data models for the tiered content moderation system."""

from __future__ import annotations

import base64
import binascii
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from tiermod.errors import ValidationError

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Tier(str, Enum):
    """A stage of the moderation pipeline."""

    TIER1 = "tier1"  # keyword blocklist
    TIER2 = "tier2"  # link safety
    TIER3 = "tier3"  # AI classifier


class Verdict(str, Enum):
    """Outcome of a single tier (or a single URL)."""

    MATCH = "match"
    NO_MATCH = "no_match"
    MALICIOUS = "malicious"
    CLEAN = "clean"
    UNKNOWN = "unknown"
    VIOLATION = "violation"


class Action(str, Enum):
    """Final decision for a piece of content."""

    ALLOW = "allow"
    PENDING = "pending"
    REJECT = "reject"


class Reason(str, Enum):
    """Fixed taxonomy of user-visible reasons."""

    NONE = "none"
    TIER1_KEYWORD_MATCH = "tier1_keyword_match"
    TIER2_MALICIOUS_LINK = "tier2_malicious_link"
    TIER3_AI_VIOLATION = "tier3_ai_violation"
    TIER3_IMAGE_VIOLATION = "tier3_image_violation"
    PENDING_REVIEW = "pending_review"
    EMPTY_CONTENT = "empty_content"
    MODERATION_DISABLED = "moderation_disabled"
    WORKFLOW_DISABLED = "workflow_disabled"
    MODERATION_ERROR = "moderation_error"


class Workflow(str, Enum):
    """Named policy profiles, one per content surface."""

    COMMUNITY = "community"
    GROUPS = "groups"
    EVENTS = "events"
    NOTIFICATIONS = "notifications"
    TRUSTED = "trusted"


class QueueStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


CATEGORIES: tuple[str, ...] = ("hate", "sexual", "violence", "self_harm")
MIN_SEVERITY = 0
MAX_SEVERITY = 6
TIER_ACTION_FIELDS: tuple[str, ...] = ("tier1_action", "tier2_action", "tier3_action")

# Starting point only; admins are expected to tune this per community.
DEFAULT_BLOCKLIST: list[str] = [
    # Violent threats
    "i will kill you", "gonna kill you", "kill yourself", "kys", "go die",
    "hope you die", "shoot you", "stab you", "murder you", "bomb threat",
    "mass shooting", "school shooting", "terrorist attack",
    # Self-harm encouragement
    "cut yourself", "hang yourself", "drink bleach", "slit your wrists",
    "suicide method",
    # Hate
    "white power", "heil hitler", "sieg heil", "race war", "gas the",
    # Harassment
    "doxx", "swatting", "i know where you live", "found your house",
    # Spam
    "free bitcoin", "crypto giveaway", "send btc", "double your money",
    "nigerian prince", "lottery winner", "click here to claim",
]

DEFAULT_SAFE_DOMAINS: list[str] = [
    "google.com", "youtube.com", "facebook.com", "twitter.com",
    "instagram.com", "linkedin.com", "github.com", "microsoft.com",
    "wikipedia.org", "zoom.us", "slack.com", "discord.com",
]

DEFAULT_PENDING_MESSAGE = "Your message is being reviewed before posting."


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def valid_severity(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and MIN_SEVERITY <= value <= MAX_SEVERITY
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class Thresholds:
    """Per-category severity at or above which tier 3 flags content."""

    hate: int = 2
    sexual: int = 2
    violence: int = 4
    self_harm: int = 2

    def get(self, category: str) -> int:
        return getattr(self, category)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Thresholds:
        """Build thresholds, keeping the default for any malformed value."""
        result = cls()
        if not isinstance(data, dict):
            return result
        for category in CATEGORIES:
            value = data.get(category)
            if valid_severity(value):
                setattr(result, category, value)
        return result


_TIER_ACTIONS = (Action.REJECT, Action.PENDING)


def _coerce_tier_action(value: Any, default: Action) -> Action:
    try:
        action = Action(value)
    except (TypeError, ValueError):
        return default
    return action if action in _TIER_ACTIONS else default


@dataclass
class WorkflowProfile:
    """Which tiers run for a workflow and what a hit in each tier does.

    A ``reject`` action blocks the content at that tier; ``pending`` lets
    the remaining tiers run and then holds the content for human review.
    """

    enabled: bool = True
    tier1: bool = True
    tier2: bool = True
    tier3: bool = True
    tier1_action: Action = Action.REJECT
    tier2_action: Action = Action.REJECT
    tier3_action: Action = Action.REJECT

    def __post_init__(self) -> None:
        for name in TIER_ACTION_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                value = Action(value)
                setattr(self, name, value)
            if value not in _TIER_ACTIONS:
                raise ValueError(f"{name} must be 'reject' or 'pending'")

    @property
    def enabled_tiers(self) -> list[Tier]:
        flags = ((Tier.TIER1, self.tier1), (Tier.TIER2, self.tier2), (Tier.TIER3, self.tier3))
        return [tier for tier, on in flags if on]

    def action_for(self, tier: Tier) -> Action:
        return getattr(self, f"{tier.value}_action")

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "tier1": self.tier1,
            "tier2": self.tier2,
            "tier3": self.tier3,
            "tier1_action": self.tier1_action.value,
            "tier2_action": self.tier2_action.value,
            "tier3_action": self.tier3_action.value,
        }

    @classmethod
    def from_dict(cls, data: Any, default: Optional[WorkflowProfile] = None) -> WorkflowProfile:
        base = default or cls()
        if not isinstance(data, dict):
            return cls(**asdict(base))
        return cls(
            enabled=_coerce_bool(data.get("enabled"), base.enabled),
            tier1=_coerce_bool(data.get("tier1"), base.tier1),
            tier2=_coerce_bool(data.get("tier2"), base.tier2),
            tier3=_coerce_bool(data.get("tier3"), base.tier3),
            **{
                name: _coerce_tier_action(data.get(name, getattr(base, name)), getattr(base, name))
                for name in TIER_ACTION_FIELDS
            },
        )


def default_workflows() -> dict[Workflow, WorkflowProfile]:
    return {
        Workflow.COMMUNITY: WorkflowProfile(),
        Workflow.GROUPS: WorkflowProfile(tier3=False),
        Workflow.EVENTS: WorkflowProfile(tier2=False, tier3=False),
        Workflow.NOTIFICATIONS: WorkflowProfile(
            enabled=False, tier1=False, tier2=False, tier3=False
        ),
        Workflow.TRUSTED: WorkflowProfile(tier1=False, tier2=False, tier3=False),
    }


@dataclass
class ModerationConfig:
    """Admin-tunable moderation settings (a single stored document)."""

    id: str = "config"
    enabled: bool = True
    thresholds: Thresholds = field(default_factory=Thresholds)
    blocklist: list[str] = field(default_factory=lambda: list(DEFAULT_BLOCKLIST))
    match_whole_word: bool = False
    workflows: dict[Workflow, WorkflowProfile] = field(default_factory=default_workflows)
    safe_domains: list[str] = field(default_factory=lambda: list(DEFAULT_SAFE_DOMAINS))
    use_pattern_analysis: bool = True
    queue_rejections: bool = False
    flag_suspicious_links: bool = True
    show_pending_message: bool = True
    pending_message_text: str = DEFAULT_PENDING_MESSAGE
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        now = utcnow()
        if not self.created_at:
            self.created_at = now
        if not self.updated_at:
            self.updated_at = now

    def profile(self, workflow: Workflow) -> WorkflowProfile:
        return self.workflows.get(workflow) or default_workflows()[workflow]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "thresholds": self.thresholds.to_dict(),
            "blocklist": list(self.blocklist),
            "match_whole_word": self.match_whole_word,
            "workflows": {wf.value: p.to_dict() for wf, p in self.workflows.items()},
            "safe_domains": list(self.safe_domains),
            "use_pattern_analysis": self.use_pattern_analysis,
            "queue_rejections": self.queue_rejections,
            "flag_suspicious_links": self.flag_suspicious_links,
            "show_pending_message": self.show_pending_message,
            "pending_message_text": self.pending_message_text,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ModerationConfig:
        """Rebuild a config, falling back to the default for malformed fields."""
        from tiermod.moderation.blocklist import normalize_terms

        config = cls()
        if not isinstance(data, dict):
            return config

        config.enabled = _coerce_bool(data.get("enabled"), config.enabled)
        config.thresholds = Thresholds.from_dict(data.get("thresholds"))
        if isinstance(data.get("blocklist"), list):
            config.blocklist = normalize_terms(data["blocklist"])
        config.match_whole_word = _coerce_bool(data.get("match_whole_word"), False)

        stored = data.get("workflows")
        if isinstance(stored, dict):
            defaults = default_workflows()
            for wf in Workflow:
                if wf.value in stored:
                    config.workflows[wf] = WorkflowProfile.from_dict(stored[wf.value], defaults[wf])

        if isinstance(data.get("safe_domains"), list):
            config.safe_domains = [
                d.strip().lower() for d in data["safe_domains"] if isinstance(d, str) and d.strip()
            ]
        config.use_pattern_analysis = _coerce_bool(data.get("use_pattern_analysis"), True)
        config.queue_rejections = _coerce_bool(data.get("queue_rejections"), False)
        config.flag_suspicious_links = _coerce_bool(data.get("flag_suspicious_links"), True)
        config.show_pending_message = _coerce_bool(data.get("show_pending_message"), True)
        if isinstance(data.get("pending_message_text"), str):
            config.pending_message_text = data["pending_message_text"]
        config.created_at = data.get("created_at") or config.created_at
        config.updated_at = data.get("updated_at") or config.updated_at
        return config


# ---------------------------------------------------------------------------
# Per-tier results
# ---------------------------------------------------------------------------


@dataclass
class TierFlowEntry:
    """One executed tier in the audit trail of a moderation call."""

    tier: Tier
    verdict: Verdict
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"tier": self.tier.value, "verdict": self.verdict.value, "detail": self.detail}


@dataclass
class BlocklistResult:
    matched: bool = False
    matches: list[str] = field(default_factory=list)


@dataclass
class UrlVerdict:
    """Verdict for a single URL found in the content."""

    url: str
    verdict: Verdict
    source: str = ""  # allowlist | cache | reputation | pattern | unconfigured | error
    detail: str = ""
    defanged_url: str = ""
    suspicious: bool = False  # not malicious, but worth a human look


@dataclass
class LinkCheckResult:
    has_malicious_link: bool = False
    checked_urls: list[UrlVerdict] = field(default_factory=list)

    @property
    def has_suspicious_link(self) -> bool:
        return any(u.suspicious and u.verdict != Verdict.MALICIOUS for u in self.checked_urls)

    @property
    def verdict(self) -> Verdict:
        verdicts = {u.verdict for u in self.checked_urls}
        if Verdict.MALICIOUS in verdicts:
            return Verdict.MALICIOUS
        if Verdict.UNKNOWN in verdicts:
            return Verdict.UNKNOWN
        return Verdict.CLEAN

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_malicious_link": self.has_malicious_link,
            "has_suspicious_link": self.has_suspicious_link,
            "checked_urls": [
                {
                    "url": u.defanged_url or u.url,
                    "verdict": u.verdict.value,
                    "source": u.source,
                    "detail": u.detail,
                    "suspicious": u.suspicious,
                }
                for u in self.checked_urls
            ],
        }


@dataclass
class ClassificationResult:
    """Tier-3 outcome: category scores compared against thresholds."""

    category_scores: dict[str, int] = field(default_factory=lambda: dict.fromkeys(CATEGORIES, 0))
    violations: list[dict[str, Any]] = field(default_factory=list)
    violates_threshold: bool = False
    verdict: Verdict = Verdict.CLEAN
    source: str = "text"  # text | image
    error: str = ""
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["verdict"] = self.verdict.value
        return data


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


@dataclass
class ModerationRequest:
    """Content submitted for moderation."""

    text: str = ""
    image: Optional[bytes] = None
    user_id: str = ""
    user_email: str = ""
    type: str = "message"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""
    workflow: Workflow = Workflow.COMMUNITY

    def __post_init__(self) -> None:
        if self.text is None:
            self.text = ""
        if isinstance(self.workflow, str) and not isinstance(self.workflow, Workflow):
            try:
                self.workflow = Workflow(self.workflow)
            except ValueError:
                raise ValidationError(f"Unknown workflow '{self.workflow}'") from None
        if isinstance(self.image, str):
            try:
                self.image = base64.b64decode(self.image, validate=True)
            except (binascii.Error, ValueError):
                raise ValidationError("Image must be base64 encoded") from None
        if self.image == b"":
            self.image = None

    @property
    def has_content(self) -> bool:
        return bool(self.text.strip()) or self.image is not None

    @property
    def content_type(self) -> str:
        if self.text and self.image is not None:
            return "mixed"
        return "image" if self.image is not None else "text"


@dataclass
class ModerationResult:
    """Verdict returned to the caller, with the per-tier diagnostic trail."""

    allowed: bool = True
    action: Action = Action.ALLOW
    reason: Reason = Reason.NONE
    workflow: Workflow = Workflow.COMMUNITY
    tier_flow: list[TierFlowEntry] = field(default_factory=list)
    matches: list[str] = field(default_factory=list)
    tier1_result: Optional[BlocklistResult] = None
    tier2_result: Optional[LinkCheckResult] = None
    tier3_result: Optional[ClassificationResult] = None
    image_result: Optional[ClassificationResult] = None
    queue_item_id: str = ""
    pending_message: str = ""
    error: str = ""

    def decide(self, action: Action, reason: Reason) -> None:
        self.action = action
        self.reason = reason
        self.allowed = action == Action.ALLOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "action": self.action.value,
            "reason": self.reason.value,
            "workflow": self.workflow.value,
            "tier_flow": [e.to_dict() for e in self.tier_flow],
            "matches": list(self.matches),
            "tier1_result": asdict(self.tier1_result) if self.tier1_result else None,
            "tier2_result": self.tier2_result.to_dict() if self.tier2_result else None,
            "tier3_result": self.tier3_result.to_dict() if self.tier3_result else None,
            "image_result": self.image_result.to_dict() if self.image_result else None,
            "queue_item_id": self.queue_item_id,
            "pending_message": self.pending_message,
        }


# ---------------------------------------------------------------------------
# Persisted workflow records
# ---------------------------------------------------------------------------


@dataclass
class ModerationQueueItem:
    """Content awaiting (or having received) human review."""

    id: str
    text: str = ""
    safe_text: str = ""
    type: str = "message"
    content_type: str = "text"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""
    workflow: str = Workflow.COMMUNITY.value
    user_id: str = ""
    user_email: str = ""
    tier_flow: list[dict[str, Any]] = field(default_factory=list)
    triggering_tier: str = ""
    overall_action: str = Action.PENDING.value
    priority: str = Priority.MEDIUM.value
    status: str = QueueStatus.PENDING.value
    reviewed_by: str = ""
    reviewed_at: str = ""
    notes: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModerationQueueItem:
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


@dataclass
class UserModerationState:
    """Whether a user may post at all, with the history of block actions."""

    user_id: str
    blocked: bool = False
    reason: str = ""
    blocked_by: str = ""
    blocked_at: str = ""
    unblocked_at: str = ""
    updated_at: str = ""
    history: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = self.user_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserModerationState:
        known = cls.__dataclass_fields__
        values = {k: v for k, v in data.items() if k in known and v is not None}
        values.setdefault("user_id", data.get("id", ""))
        return cls(**values)

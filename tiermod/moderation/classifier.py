"""Tier 3: AI content classification.

The external service returns a severity (0-6) per harm category.  A
category violates when its severity meets or exceeds the configured
threshold.  Service failures fail open: the result is ``unknown`` and never
violating, with the error kept on the result for logging.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

from tiermod.moderation.fallback import FailOpenPolicy
from tiermod.moderation.models import (
    CATEGORIES,
    MAX_SEVERITY,
    MIN_SEVERITY,
    ClassificationResult,
    Thresholds,
    Verdict,
)

logger = logging.getLogger(__name__)


class AIModerationService(Protocol):
    async def classify_text(self, text: str) -> dict[str, int]: ...

    async def classify_image(self, data: bytes) -> dict[str, int]: ...


_CATEGORY_ALIASES: dict[str, str] = {
    "hate": "hate",
    "sexual": "sexual",
    "violence": "violence",
    "selfharm": "self_harm",
    "self_harm": "self_harm",
    "self-harm": "self_harm",
}


def normalize_scores(raw: Mapping[str, Any]) -> dict[str, int]:
    """Map service category names onto ours and clamp severities to 0-6."""
    scores = dict.fromkeys(CATEGORIES, 0)
    for name, value in raw.items():
        key = _CATEGORY_ALIASES.get(str(name).replace(" ", "").lower())
        if key is None:
            continue
        try:
            severity = int(value)
        except (TypeError, ValueError):
            continue
        scores[key] = max(MIN_SEVERITY, min(MAX_SEVERITY, severity))
    return scores


def find_violations(scores: Mapping[str, int], thresholds: Thresholds) -> list[dict[str, Any]]:
    violations = []
    for category in CATEGORIES:
        severity = scores.get(category, 0)
        threshold = thresholds.get(category)
        if severity >= threshold:
            violations.append({"category": category, "severity": severity, "threshold": threshold})
    return violations


class ContentClassifier:
    """Runs tier 3 against an :class:`AIModerationService`."""

    def __init__(
        self,
        service: Optional[AIModerationService] = None,
        policy: Optional[FailOpenPolicy] = None,
    ) -> None:
        self.service = service
        self.policy = policy or FailOpenPolicy("ai-classifier")

    @property
    def configured(self) -> bool:
        return self.service is not None

    async def classify_content(
        self,
        text: str,
        thresholds: Thresholds,
        image: Optional[bytes] = None,
    ) -> ClassificationResult:
        """Classify *text*, or *image* when one is given."""
        source = "image" if image is not None else "text"
        if self.service is None:
            return ClassificationResult(
                verdict=Verdict.UNKNOWN,
                source=source,
                skipped=True,
                error="AI moderation service not configured",
            )

        if image is not None:
            outcome = await self.policy.call(self.service.classify_image, image, fallback=None)
        else:
            outcome = await self.policy.call(self.service.classify_text, text, fallback=None)

        if outcome.failed:
            return ClassificationResult(verdict=Verdict.UNKNOWN, source=source, error=outcome.error)
        if not isinstance(outcome.value, Mapping):
            logger.warning("AI classifier returned an unusable %s response", source)
            return ClassificationResult(
                verdict=Verdict.UNKNOWN, source=source, error="malformed classifier response"
            )

        scores = normalize_scores(outcome.value)
        violations = find_violations(scores, thresholds)
        return ClassificationResult(
            category_scores=scores,
            violations=violations,
            violates_threshold=bool(violations),
            verdict=Verdict.VIOLATION if violations else Verdict.CLEAN,
            source=source,
        )

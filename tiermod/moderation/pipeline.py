"""Tier orchestration: keyword → link safety → AI classification.

Tiers run strictly in order and the first hard block ends the run, so the
paid AI classifier is only called for content that survived the cheaper
tiers.  A hit in a tier whose workflow action is ``pending`` does not
stop the run; the content is queued for review once the remaining tiers
pass.  The pipeline never blocks content because a dependency failed:
tiers 2 and 3 fail open on their own, and anything else that goes wrong
here is logged and the content is allowed with ``moderation_error``.
"""

from __future__ import annotations

import logging
from typing import Optional

from tiermod.moderation.blocklist import match_blocklist
from tiermod.moderation.classifier import ContentClassifier
from tiermod.moderation.links import LinkSafetyChecker, defang_text, extract_urls
from tiermod.moderation.models import (
    Action,
    BlocklistResult,
    ClassificationResult,
    ModerationConfig,
    ModerationQueueItem,
    ModerationRequest,
    ModerationResult,
    Priority,
    Reason,
    Tier,
    TierFlowEntry,
    Verdict,
)
from tiermod.moderation.store import ModerationStore

logger = logging.getLogger(__name__)

_QUEUED_TEXT_LIMIT = 1000


def compute_priority(result: ModerationResult) -> Priority:
    """Rank a queue item so reviewers see the worst content first."""
    urls = result.tier2_result.checked_urls if result.tier2_result else []
    if any(u.verdict == Verdict.MALICIOUS and u.source == "reputation" for u in urls):
        return Priority.CRITICAL
    for classification in (result.tier3_result, result.image_result):
        if classification and any(v["severity"] >= 4 for v in classification.violations):
            return Priority.HIGH
    if result.matches or any(u.verdict == Verdict.MALICIOUS for u in urls):
        return Priority.HIGH
    return Priority.MEDIUM


def _classification_detail(classification: ClassificationResult) -> dict:
    detail = {
        "source": classification.source,
        "scores": dict(classification.category_scores),
        "violations": list(classification.violations),
    }
    if classification.skipped:
        detail["skipped"] = True
    if classification.error:
        detail["error"] = classification.error
    return detail


class ModerationPipeline:
    """Runs the configured tiers for a request and decides its fate."""

    def __init__(
        self,
        store: ModerationStore,
        link_checker: LinkSafetyChecker,
        classifier: ContentClassifier,
    ) -> None:
        self.store = store
        self.link_checker = link_checker
        self.classifier = classifier

    async def moderate_content(self, request: ModerationRequest) -> ModerationResult:
        """Moderate one piece of content and return the verdict with its tier flow."""
        result = ModerationResult(workflow=request.workflow)
        try:
            await self._run(request, result)
        except Exception as exc:
            logger.exception(
                "Moderation failed for user %s in %s; allowing content",
                request.user_id,
                request.workflow.value,
            )
            result.decide(Action.ALLOW, Reason.MODERATION_ERROR)
            result.queue_item_id = ""
            result.error = str(exc) or exc.__class__.__name__
        return result

    # ------------------------------------------------------------------
    # Tier sequencing
    # ------------------------------------------------------------------

    async def _run(self, request: ModerationRequest, result: ModerationResult) -> None:
        config = await self._load_config()

        if not config.enabled:
            result.decide(Action.ALLOW, Reason.MODERATION_DISABLED)
            return
        profile = config.profile(request.workflow)
        if not profile.enabled:
            result.decide(Action.ALLOW, Reason.WORKFLOW_DISABLED)
            return
        if not profile.enabled_tiers:
            return
        if not request.has_content:
            result.decide(Action.REJECT, Reason.EMPTY_CONTENT)
            return

        text = request.text if request.text.strip() else ""
        # First tier whose hit holds the content for review instead of rejecting it.
        review_tier: Optional[Tier] = None

        if profile.tier1 and text:
            tier1 = self._run_tier1(text, config)
            result.tier1_result = tier1
            result.tier_flow.append(
                TierFlowEntry(
                    Tier.TIER1,
                    Verdict.MATCH if tier1.matched else Verdict.NO_MATCH,
                    {"matches": list(tier1.matches), "terms_checked": len(config.blocklist)},
                )
            )
            if tier1.matched:
                result.matches = list(tier1.matches)
                if profile.tier1_action == Action.REJECT:
                    await self._reject(request, result, config, Reason.TIER1_KEYWORD_MATCH, Tier.TIER1)
                    return
                review_tier = review_tier or Tier.TIER1

        if profile.tier2 and text:
            tier2 = await self.link_checker.check_links(
                text, config.safe_domains, config.use_pattern_analysis
            )
            result.tier2_result = tier2
            detail = tier2.to_dict()
            result.tier_flow.append(
                TierFlowEntry(
                    Tier.TIER2,
                    tier2.verdict,
                    {"urls": detail["checked_urls"], "suspicious": detail["has_suspicious_link"]},
                )
            )
            if tier2.has_malicious_link:
                if profile.tier2_action == Action.REJECT:
                    await self._reject(request, result, config, Reason.TIER2_MALICIOUS_LINK, Tier.TIER2)
                    return
                review_tier = review_tier or Tier.TIER2
            elif tier2.has_suspicious_link and config.flag_suspicious_links:
                review_tier = review_tier or Tier.TIER2

        if profile.tier3:
            if text:
                tier3 = await self.classifier.classify_content(text, config.thresholds)
                result.tier3_result = tier3
                result.tier_flow.append(TierFlowEntry(Tier.TIER3, tier3.verdict, _classification_detail(tier3)))
                if tier3.error and not tier3.skipped:
                    logger.warning("Tier 3 text analysis failed open: %s", tier3.error)
                if tier3.violates_threshold:
                    if profile.tier3_action == Action.REJECT:
                        await self._reject(request, result, config, Reason.TIER3_AI_VIOLATION, Tier.TIER3)
                        return
                    review_tier = review_tier or Tier.TIER3

            if request.image is not None:
                image = await self.classifier.classify_content("", config.thresholds, image=request.image)
                result.image_result = image
                result.tier_flow.append(TierFlowEntry(Tier.TIER3, image.verdict, _classification_detail(image)))
                if image.error and not image.skipped:
                    logger.warning("Tier 3 image analysis failed open: %s", image.error)
                if image.violates_threshold:
                    await self._reject(request, result, config, Reason.TIER3_IMAGE_VIOLATION, Tier.TIER3)
                    return

        if review_tier is not None:
            await self._queue_for_review(request, result, config, review_tier)

    async def _load_config(self) -> ModerationConfig:
        try:
            return await self.store.get_config()
        except Exception:
            logger.exception("Could not load moderation config; using defaults")
            return ModerationConfig()

    @staticmethod
    def _run_tier1(text: str, config: ModerationConfig) -> BlocklistResult:
        try:
            return match_blocklist(text, config.blocklist, whole_word=config.match_whole_word)
        except Exception:
            logger.exception("Blocklist matching failed; treating as no match")
            return BlocklistResult()

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _reject(
        self,
        request: ModerationRequest,
        result: ModerationResult,
        config: ModerationConfig,
        reason: Reason,
        tier: Tier,
    ) -> None:
        result.decide(Action.REJECT, reason)
        logger.info(
            "Rejected %s from user %s in %s: %s",
            request.type,
            request.user_id,
            request.workflow.value,
            reason.value,
        )
        if not config.queue_rejections:
            return
        try:
            item = await self.store.enqueue(self._build_queue_item(request, result, tier))
        except Exception:
            logger.exception("Could not record rejected content in the review queue")
        else:
            result.queue_item_id = item.id

    async def _queue_for_review(
        self,
        request: ModerationRequest,
        result: ModerationResult,
        config: ModerationConfig,
        tier: Tier,
    ) -> None:
        item = await self.store.enqueue(self._build_queue_item(request, result, tier, pending=True))
        result.decide(Action.PENDING, Reason.PENDING_REVIEW)
        result.queue_item_id = item.id
        if config.show_pending_message:
            result.pending_message = config.pending_message_text

    @staticmethod
    def _build_queue_item(
        request: ModerationRequest,
        result: ModerationResult,
        tier: Tier,
        pending: bool = False,
    ) -> ModerationQueueItem:
        text = request.text[:_QUEUED_TEXT_LIMIT] if request.text else "[image]"
        return ModerationQueueItem(
            id="",
            text=text,
            safe_text=defang_text(text, extract_urls(text)),
            type=request.type,
            content_type=request.content_type,
            content_id=request.content_id,
            channel_id=request.channel_id,
            group_id=request.group_id,
            workflow=request.workflow.value,
            user_id=request.user_id,
            user_email=request.user_email,
            tier_flow=[entry.to_dict() for entry in result.tier_flow],
            triggering_tier=tier.value,
            overall_action=Action.PENDING.value if pending else Action.REJECT.value,
            priority=compute_priority(result).value,
        )

"""Builds the moderation components from :class:`~tiermod.settings.Settings`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from tiermod.clients.anthropic_moderation import AnthropicModerationClient
from tiermod.clients.content_safety import ContentSafetyClient
from tiermod.clients.virustotal import VirusTotalClient
from tiermod.moderation.cache import VerdictCache
from tiermod.moderation.classifier import AIModerationService, ContentClassifier
from tiermod.moderation.fallback import FailOpenPolicy
from tiermod.moderation.links import LinkSafetyChecker
from tiermod.moderation.pipeline import ModerationPipeline
from tiermod.moderation.store import ModerationStore
from tiermod.security.audit_log import AuditLogger
from tiermod.settings import Settings
from tiermod.storage.documents import JsonDocumentStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> ModerationStore:
    return ModerationStore(JsonDocumentStore(Path(settings.data_dir) / "documents"))


def build_audit_logger(settings: Settings) -> AuditLogger:
    return AuditLogger(Path(settings.data_dir) / "audit_logs")


def _policy(name: str, settings: Settings) -> FailOpenPolicy:
    return FailOpenPolicy(name, timeout=settings.http_timeout, attempts=settings.http_attempts)


def build_link_checker(settings: Settings) -> LinkSafetyChecker:
    service = None
    if settings.virustotal_api_key:
        service = VirusTotalClient(settings.virustotal_api_key, timeout=settings.http_timeout)
    else:
        logger.info("VIRUSTOTAL_API_KEY not set; link reputation lookups are disabled")
    cache = VerdictCache(ttl=settings.link_cache_ttl, max_entries=settings.link_cache_size)
    return LinkSafetyChecker(service, cache=cache, policy=_policy("link-reputation", settings))


def build_classifier(settings: Settings) -> ContentClassifier:
    service: Optional[AIModerationService] = None
    if settings.classifier == "anthropic":
        if settings.anthropic_api_key:
            service = AnthropicModerationClient(settings.anthropic_api_key, timeout=settings.http_timeout)
    elif settings.content_safety_endpoint and settings.content_safety_key:
        service = ContentSafetyClient(
            settings.content_safety_endpoint,
            settings.content_safety_key,
            timeout=settings.http_timeout,
        )
    if service is None:
        logger.info("No %s credentials configured; AI classification is disabled", settings.classifier)
    return ContentClassifier(service, policy=_policy("ai-classifier", settings))


def build_pipeline(settings: Settings, store: Optional[ModerationStore] = None) -> ModerationPipeline:
    return ModerationPipeline(
        store or build_store(settings),
        build_link_checker(settings),
        build_classifier(settings),
    )

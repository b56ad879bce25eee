"""Tier 2: link safety.

URLs are pulled out of the message, checked against the configured safe
domains and a set of local phishing heuristics, and finally looked up in an
external link-reputation service.  Reputation lookups are cached and go
through a :class:`FailOpenPolicy`, so an unreachable service yields an
``unknown`` verdict instead of blocking the message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol
from urllib.parse import urlsplit

from tiermod.moderation.cache import VerdictCache
from tiermod.moderation.fallback import FailOpenPolicy
from tiermod.moderation.models import LinkCheckResult, UrlVerdict, Verdict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# URL extraction and defanging
# ---------------------------------------------------------------------------

_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!?)\]'\"]+$")


def extract_urls(text: str | None) -> list[str]:
    """Return the unique ``http(s)://`` URLs in *text*, in order of appearance."""
    if not text:
        return []
    seen: set[str] = set()
    urls: list[str] = []
    for match in _URL_RE.findall(text):
        url = _TRAILING_PUNCT_RE.sub("", match)
        if url and url not in seen and extract_domain(url):
            seen.add(url)
            urls.append(url)
    return urls


def extract_domain(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def defang_url(url: str) -> str:
    """``http://evil.com`` → ``hxxp[://]evil[.]com`` so it cannot be clicked."""
    if not url:
        return ""
    defanged = re.sub(r"^http", "hxxp", url, flags=re.IGNORECASE)
    defanged = defanged.replace(".", "[.]")
    return defanged.replace("://", "[://]")


def refang_url(defanged: str) -> str:
    if not defanged:
        return ""
    url = re.sub(r"^hxxp", "http", defanged, flags=re.IGNORECASE)
    url = url.replace("[.]", ".")
    return url.replace("[://]", "://")


def defang_text(text: str, urls: Iterable[str]) -> str:
    """Replace every occurrence of *urls* in *text* with its defanged form."""
    if not text:
        return text
    # Longest first so a URL that prefixes another is not replaced inside it.
    for url in sorted(set(urls), key=len, reverse=True):
        text = text.replace(url, defang_url(url))
    return text


def is_safe_domain(domain: Optional[str], safe_domains: Iterable[str]) -> bool:
    if not domain:
        return False
    return any(domain == safe or domain.endswith("." + safe) for safe in safe_domains)


# ---------------------------------------------------------------------------
# Local heuristics
# ---------------------------------------------------------------------------

_MALICIOUS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        # Phishing-style hosts
        r"login\.(secure|verify|update)-?[a-z]+\.(com|net|org)",
        r"[a-z]+-?(login|signin|verify|secure|account|update)\.(com|net|org|co)\b",
        r"(paypal|apple|google|microsoft|amazon|facebook|instagram|twitter).*\.(tk|ml|ga|cf|gq)\b",
        # Shorteners hide the real destination
        r"^https?://(bit\.ly|tinyurl\.com|t\.co|goo\.gl|ow\.ly|is\.gd|buff\.ly)/",
        # Raw IPv4 hosts
        r"^https?://\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}",
    ]
]

_HIGH_RISK_TLDS: frozenset[str] = frozenset(
    "tk ml ga cf gq pw cc ws top xyz click link work date racing download stream "
    "cricket science party win bid trade webcam review accountant faith loan men pro".split()
)

_SUSPICIOUS_KEYWORDS: tuple[str, ...] = (
    "password", "passwd", "credential", "login", "signin", "verify",
    "confirm", "update", "secure", "account", "bank", "wallet",
    "crypto", "bitcoin", "prize", "winner", "lottery", "free",
    "urgent", "suspended", "limited", "expire", "alert",
)

_MAX_URL_LENGTH = 200


@dataclass
class PatternAnalysis:
    """Result of the local URL heuristics."""

    safe: bool = True
    risk_level: str = "low"  # low | medium | high
    threats: list[str] = field(default_factory=list)


def analyze_url_patterns(url: str) -> PatternAnalysis:
    """Score a URL with local heuristics only (no network).

    The top-level-domain check looks at the URL's host, so
    ``https://example.pro/page`` is flagged the same as ``https://example.pro``.
    """
    result = PatternAnalysis()
    domain = extract_domain(url) or ""

    for pattern in _MALICIOUS_PATTERNS:
        if pattern.search(url):
            result.safe = False
            result.risk_level = "high"
            result.threats.append("matches a known malicious URL pattern")
            break

    tld = domain.rsplit(".", 1)[-1] if "." in domain else ""
    if tld in _HIGH_RISK_TLDS:
        result.safe = False
        result.risk_level = "high"
        result.threats.append(f"high-risk top-level domain .{tld}")

    lowered = url.lower()
    keywords = [kw for kw in _SUSPICIOUS_KEYWORDS if kw in lowered]
    if len(keywords) >= 2:
        result.safe = False
        result.risk_level = "high"
        result.threats.append(f"suspicious keywords: {', '.join(keywords)}")
    elif keywords:
        result.threats.append(f"suspicious keyword: {keywords[0]}")
        if result.risk_level == "low":
            result.risk_level = "medium"

    if len(url) > _MAX_URL_LENGTH:
        result.threats.append(f"unusually long URL ({len(url)} characters)")
        if result.risk_level == "low":
            result.risk_level = "medium"

    if domain and not domain.isascii():
        result.safe = False
        result.risk_level = "high"
        result.threats.append("non-ASCII characters in domain (possible homograph attack)")

    return result


# ---------------------------------------------------------------------------
# Reputation service contract
# ---------------------------------------------------------------------------


@dataclass
class ReputationResponse:
    verdict: Verdict
    detail: str = ""
    raw: dict = field(default_factory=dict)
    suspicious: bool = False


class LinkReputationService(Protocol):
    async def check_url(self, url: str) -> ReputationResponse: ...


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------


class LinkSafetyChecker:
    """Runs tier 2 over the URLs in a message.

    Besides the malicious/clean verdict, a URL is marked ``suspicious``
    when the local heuristics rate it medium risk or the reputation
    service reports detections below the malicious threshold.
    """

    def __init__(
        self,
        service: Optional[LinkReputationService] = None,
        cache: Optional[VerdictCache] = None,
        policy: Optional[FailOpenPolicy] = None,
    ) -> None:
        self.service = service
        self.cache = cache if cache is not None else VerdictCache()
        self.policy = policy or FailOpenPolicy("link-reputation")

    async def check_links(
        self,
        text: str | None,
        safe_domains: Iterable[str] = (),
        use_patterns: bool = True,
    ) -> LinkCheckResult:
        safe_domains = tuple(safe_domains)
        result = LinkCheckResult()
        for url in extract_urls(text):
            result.checked_urls.append(await self.check_url(url, safe_domains, use_patterns))
        result.has_malicious_link = any(u.verdict == Verdict.MALICIOUS for u in result.checked_urls)
        return result

    async def check_url(
        self,
        url: str,
        safe_domains: Iterable[str] = (),
        use_patterns: bool = True,
    ) -> UrlVerdict:
        defanged = defang_url(url)
        domain = extract_domain(url)

        if is_safe_domain(domain, safe_domains):
            return UrlVerdict(url, Verdict.CLEAN, "allowlist", f"{domain} is a trusted domain", defanged)

        suspicion = ""
        if use_patterns:
            analysis = analyze_url_patterns(url)
            if not analysis.safe:
                return UrlVerdict(url, Verdict.MALICIOUS, "pattern", "; ".join(analysis.threats), defanged)
            if analysis.risk_level == "medium":
                suspicion = "; ".join(analysis.threats)

        checked = await self._lookup(url, defanged)
        if suspicion and checked.verdict != Verdict.MALICIOUS:
            checked.suspicious = True
            checked.detail = "; ".join(d for d in (checked.detail, suspicion) if d)
        return checked

    async def _lookup(self, url: str, defanged: str) -> UrlVerdict:
        cached = self.cache.lookup(url)
        if cached is not None:
            verdict, suspicious = cached
            return UrlVerdict(url, verdict, "cache", "", defanged, suspicious)

        if self.service is None:
            return UrlVerdict(
                url, Verdict.UNKNOWN, "unconfigured", "link reputation service not configured", defanged
            )

        outcome = await self.policy.call(self.service.check_url, url, fallback=None)
        if outcome.failed or outcome.value is None:
            return UrlVerdict(url, Verdict.UNKNOWN, "error", outcome.error, defanged)

        response = outcome.value
        self.cache.put(url, response.verdict, response.suspicious)
        if response.verdict == Verdict.MALICIOUS:
            logger.info("Link reputation flagged %s as malicious", defanged)
        return UrlVerdict(
            url, response.verdict, "reputation", response.detail, defanged, response.suspicious
        )

"""Azure AI Content Safety client (text and image analysis)."""

from __future__ import annotations

import base64
from typing import Any, Optional

import httpx

from tiermod.errors import ServiceError

API_VERSION = "2023-10-01"
MAX_TEXT_LENGTH = 10000


class ContentSafetyClient:
    """Calls ``text:analyze`` / ``image:analyze`` and returns raw severities.

    The returned mapping uses the service's category names
    (``Hate``, ``SelfHarm`` ...); :func:`tiermod.moderation.classifier.normalize_scores`
    maps them onto ours.
    """

    def __init__(
        self,
        endpoint: str,
        key: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.key = key
        self.timeout = timeout
        self._transport = transport

    async def classify_text(self, text: str) -> dict[str, int]:
        return await self._analyze(
            "text:analyze",
            {"text": text[:MAX_TEXT_LENGTH], "outputType": "FourSeverityLevels"},
        )

    async def classify_image(self, data: bytes) -> dict[str, int]:
        content = base64.b64encode(data).decode("ascii")
        return await self._analyze("image:analyze", {"image": {"content": content}})

    async def _analyze(self, operation: str, body: dict[str, Any]) -> dict[str, int]:
        url = f"{self.endpoint}/contentsafety/{operation}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                url,
                params={"api-version": API_VERSION},
                headers={"Ocp-Apim-Subscription-Key": self.key},
                json=body,
            )
        if response.status_code >= 400:
            raise ServiceError(
                f"Content Safety API error: {response.status_code}",
                service="content_safety",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )
        return parse_categories(response.json())


def parse_categories(payload: Any) -> dict[str, int]:
    """Turn ``categoriesAnalysis`` into ``{category: severity}``."""
    if not isinstance(payload, dict) or not isinstance(payload.get("categoriesAnalysis"), list):
        raise ServiceError("Content Safety response has no categoriesAnalysis", service="content_safety")
    scores: dict[str, int] = {}
    for entry in payload["categoriesAnalysis"]:
        if isinstance(entry, dict) and entry.get("category"):
            scores[str(entry["category"])] = int(entry.get("severity") or 0)
    return scores

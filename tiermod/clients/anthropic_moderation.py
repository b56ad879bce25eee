"""Anthropic model used as the tier-3 content classifier.

The model is asked for a JSON object of severities (0-6) for each harm
category, so it can stand in for Azure Content Safety where that service
is not available.
"""

from __future__ import annotations

import base64
import json
import re
from typing import Any

import anthropic

from tiermod.errors import ServiceError
from tiermod.moderation.models import CATEGORIES

DEFAULT_MODEL = "claude-haiku-3-5-20241022"

SYSTEM_PROMPT = (
    "You are a content moderation classifier for a community platform. "
    "Rate the user content for each harm category on a severity scale from "
    "0 (none) to 6 (most severe). Categories: "
    + ", ".join(CATEGORIES)
    + ". Respond with a single JSON object mapping each category to an "
    "integer severity and nothing else."
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def detect_media_type(data: bytes) -> str:
    """Guess an image media type from its magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def parse_severities(text: str) -> dict[str, int]:
    """Extract the severity object from the model's reply."""
    match = _JSON_OBJECT_RE.search(text or "")
    if match is None:
        raise ServiceError("Classifier reply contained no JSON object", service="anthropic")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ServiceError(f"Classifier reply was not valid JSON: {exc}", service="anthropic") from exc
    if not isinstance(data, dict):
        raise ServiceError("Classifier reply was not a JSON object", service="anthropic")
    return data


class AnthropicModerationClient:
    """Thin wrapper around the async Anthropic SDK.

    Parameters
    ----------
    api_key : str
        Anthropic API key.
    model : str
        Model identifier to classify with.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = 5.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def classify_text(self, text: str) -> dict[str, int]:
        return await self._classify([{"type": "text", "text": text}])

    async def classify_image(self, data: bytes) -> dict[str, int]:
        image = {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": detect_media_type(data),
                "data": base64.b64encode(data).decode("ascii"),
            },
        }
        return await self._classify([image, {"type": "text", "text": "Rate this image."}])

    async def _classify(self, content: list[dict[str, Any]]) -> dict[str, int]:
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=200,
                temperature=0,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.RateLimitError as exc:
            raise ServiceError("Anthropic rate limit exceeded", service="anthropic", status_code=429) from exc
        except anthropic.APIStatusError as exc:
            raise ServiceError(
                f"Anthropic API error: {exc.status_code}",
                service="anthropic",
                status_code=exc.status_code,
                retryable=exc.status_code >= 500,
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ServiceError("Could not reach the Anthropic API", service="anthropic", retryable=True) from exc

        reply = response.content[0].text if response.content else ""
        return parse_severities(reply)

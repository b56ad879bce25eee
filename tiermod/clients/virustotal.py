"""VirusTotal v3 URL reputation client."""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import httpx

from tiermod.errors import ServiceError
from tiermod.moderation.links import ReputationResponse
from tiermod.moderation.models import Verdict

logger = logging.getLogger(__name__)

VIRUSTOTAL_API_URL = "https://www.virustotal.com/api/v3"

# A URL is malicious once more than this many engines flag it.
MALICIOUS_ENGINE_THRESHOLD = 2


def url_id(url: str) -> str:
    """VirusTotal URL identifier: unpadded URL-safe base64 of the URL."""
    return base64.urlsafe_b64encode(url.encode()).decode().rstrip("=")


class VirusTotalClient:
    """Looks URLs up in VirusTotal; unseen URLs are submitted for analysis.

    Parameters
    ----------
    api_key : str
        VirusTotal API key, sent as ``x-apikey``.
    timeout : float
        Per-request timeout in seconds.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (used by tests).
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 5.0,
        base_url: str = VIRUSTOTAL_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"x-apikey": self.api_key},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def check_url(self, url: str) -> ReputationResponse:
        async with self._client() as client:
            response = await client.get(f"/urls/{url_id(url)}")
            if response.status_code == 404:
                await self._submit(client, url)
                return ReputationResponse(Verdict.UNKNOWN, "submitted for analysis")
            _raise_for_status(response)
            data = response.json()

        stats = _analysis_stats(data)
        malicious = int(stats.get("malicious", 0) or 0)
        suspicious = int(stats.get("suspicious", 0) or 0)
        verdict = Verdict.MALICIOUS if malicious > MALICIOUS_ENGINE_THRESHOLD else Verdict.CLEAN
        if malicious:
            detail = f"{malicious} engines detected malicious content"
        elif suspicious:
            detail = f"{suspicious} engines flagged as suspicious"
        else:
            detail = "No threats detected"
        flagged = verdict != Verdict.MALICIOUS and bool(malicious or suspicious)
        return ReputationResponse(verdict, detail, raw=stats, suspicious=flagged)

    async def _submit(self, client: httpx.AsyncClient, url: str) -> None:
        response = await client.post("/urls", data={"url": url})
        _raise_for_status(response)
        logger.info("Submitted unseen URL to VirusTotal for analysis")


def _analysis_stats(data: Any) -> dict[str, Any]:
    try:
        stats = data["data"]["attributes"]["last_analysis_stats"]
    except (KeyError, TypeError):
        return {}
    return stats if isinstance(stats, dict) else {}


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise ServiceError("VirusTotal rate limit exceeded", service="virustotal", status_code=status)
    raise ServiceError(
        f"VirusTotal API error: {status}",
        service="virustotal",
        status_code=status,
        retryable=status >= 500,
    )

"""Tests for the moderation HTTP API."""

import asyncio
import base64
import tempfile
from pathlib import Path

from fastapi.testclient import TestClient

from tiermod.moderation.classifier import ContentClassifier
from tiermod.moderation.links import LinkSafetyChecker, ReputationResponse
from tiermod.moderation.models import ModerationQueueItem, Verdict
from tiermod.moderation.pipeline import ModerationPipeline
from tiermod.moderation.store import ModerationStore
from tiermod.security.audit_log import AuditLogger
from tiermod.storage.documents import JsonDocumentStore
from web.backend.app.main import app
from web.backend.app.middleware.auth import encode_client_principal
from web.backend.app.routers import moderation


class FakeReputation:
    async def check_url(self, url):
        if "evil" in url:
            return ReputationResponse(Verdict.MALICIOUS, "5 engines detected malicious content")
        return ReputationResponse(Verdict.CLEAN)


class FakeAIService:
    async def classify_text(self, text):
        return {"Violence": 6} if "hurt" in text else {}

    async def classify_image(self, data):
        return {}


def _client():
    """Return a TestClient wired to temporary stores, plus the store and audit log."""
    base = Path(tempfile.mkdtemp())
    store = ModerationStore(JsonDocumentStore(base / "documents"))
    audit = AuditLogger(base / "audit_logs")
    pipeline = ModerationPipeline(
        store, LinkSafetyChecker(FakeReputation()), ContentClassifier(FakeAIService())
    )
    app.dependency_overrides[moderation.get_store] = lambda: store
    app.dependency_overrides[moderation.get_pipeline] = lambda: pipeline
    app.dependency_overrides[moderation.get_audit_logger] = lambda: audit
    return TestClient(app), store, audit


def _headers(user_id="u1", roles=None):
    return {"X-MS-CLIENT-PRINCIPAL": encode_client_principal(user_id, f"{user_id}@example.com", roles)}


ADMIN = _headers("admin1", ["authenticated", "admin"])
MODERATOR = _headers("mod1", ["authenticated", "moderator"])
MEMBER = _headers("u1")


def test_root_and_health():
    client, _, _ = _client()
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["name"] == "tiermod API"


def test_analyze_requires_authentication():
    client, _, _ = _client()
    assert client.post("/api/moderation/analyze", json={"text": "hi"}).status_code == 401
    bad = {"X-MS-CLIENT-PRINCIPAL": "not-base64!"}
    assert client.post("/api/moderation/analyze", json={"text": "hi"}, headers=bad).status_code == 401


def test_analyze_clean_content():
    client, _, _ = _client()
    resp = client.post("/api/moderation/analyze", json={"text": "hello everyone"}, headers=MEMBER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["allowed"] is True
    assert body["action"] == "allow"
    assert body["tier_flow"] == []


def test_analyze_malicious_link_for_moderator_shows_tier_flow():
    client, _, audit = _client()
    resp = client.post(
        "/api/moderation/analyze",
        json={"text": "check this out http://evil.example.com"},
        headers=MODERATOR,
    )
    body = resp.json()
    assert body["action"] == "reject"
    assert body["reason"] == "tier2_malicious_link"
    assert [e["tier"] for e in body["tier_flow"]] == ["tier1", "tier2"]
    assert audit.get_events(action="content.rejected")[0].actor == "mod1"


def test_analyze_rejects_unknown_workflow():
    client, _, _ = _client()
    resp = client.post("/api/moderation/analyze", json={"text": "hi", "workflow": "nope"}, headers=MEMBER)
    assert resp.status_code == 400


def test_analyze_rejects_bad_image():
    client, _, _ = _client()
    resp = client.post("/api/moderation/analyze", json={"image": "%%%"}, headers=MEMBER)
    assert resp.status_code == 400


def test_analyze_image():
    client, _, _ = _client()
    image = base64.b64encode(b"\x89PNG\r\n\x1a\nrest").decode()
    resp = client.post("/api/moderation/analyze", json={"image": image}, headers=MEMBER)
    assert resp.json()["allowed"] is True


def test_blocked_user_cannot_post():
    client, _, _ = _client()
    resp = client.put("/api/moderation/user/u1/block", json={"reason": "spam"}, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["blocked"] is True

    resp = client.post("/api/moderation/analyze", json={"text": "hello"}, headers=MEMBER)
    assert resp.status_code == 403

    client.put("/api/moderation/user/u1/unblock", headers=ADMIN)
    resp = client.post("/api/moderation/analyze", json={"text": "hello"}, headers=MEMBER)
    assert resp.status_code == 200


def test_config_requires_admin():
    client, _, _ = _client()
    assert client.get("/api/moderation/config", headers=MEMBER).status_code == 403
    assert client.get("/api/moderation/config", headers=MODERATOR).status_code == 403
    assert client.get("/api/moderation/config", headers=ADMIN).status_code == 200
    resp = client.put("/api/moderation/config", json={"enabled": False}, headers=MODERATOR)
    assert resp.status_code == 403


def test_moderator_cannot_use_admin_endpoints():
    client, store, _ = _client()
    item = asyncio.run(store.enqueue(ModerationQueueItem(id="", text="queued", user_id="u1")))

    resp = client.put(f"/api/moderation/queue/{item.id}", json={"status": "approved"}, headers=MODERATOR)
    assert resp.status_code == 403
    assert asyncio.run(store.get_queue_item(item.id)).status == "pending"

    for path in (
        "/api/moderation/config",
        "/api/moderation/queue",
        f"/api/moderation/queue/{item.id}",
        "/api/moderation/stats",
        "/api/moderation/user/u2",
        "/api/moderation/audit",
    ):
        assert client.get(path, headers=MODERATOR).status_code == 403, path


def test_partial_config_update():
    client, _, audit = _client()
    resp = client.put("/api/moderation/config", json={"thresholds": {"hate": 3}}, headers=ADMIN)
    assert resp.status_code == 200
    config = client.get("/api/moderation/config", headers=ADMIN).json()
    assert config["thresholds"] == {"hate": 3, "sexual": 2, "violence": 4, "self_harm": 2}
    assert audit.get_events(action="config.updated")[0].details == {"fields": ["thresholds"]}


def test_invalid_config_update():
    client, _, _ = _client()
    resp = client.put("/api/moderation/config", json={"thresholds": {"hate": 9}}, headers=ADMIN)
    assert resp.status_code == 400


def test_blocklist_update():
    client, _, _ = _client()
    resp = client.post("/api/moderation/blocklist", json={"terms": ["Spam", "scam"]}, headers=ADMIN)
    assert resp.json() == {"blocklist": ["spam", "scam"], "count": 2}

    resp = client.post("/api/moderation/analyze", json={"text": "buy spam now"}, headers=MEMBER)
    assert resp.json()["reason"] == "tier1_keyword_match"


def test_review_queue_flow():
    client, _, _ = _client()
    client.put(
        "/api/moderation/config",
        json={"workflows": {"community": {"tier3_action": "pending"}}},
        headers=ADMIN,
    )
    resp = client.post("/api/moderation/analyze", json={"text": "I will hurt you"}, headers=MEMBER)
    body = resp.json()
    assert body["action"] == "pending"
    item_id = body["queue_item_id"]

    queue = client.get("/api/moderation/queue", headers=ADMIN).json()
    assert [i["id"] for i in queue] == [item_id]
    assert client.get(f"/api/moderation/queue/{item_id}", headers=ADMIN).json()["status"] == "pending"

    resp = client.put(
        f"/api/moderation/queue/{item_id}",
        json={"status": "approved", "notes": "context ok"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["reviewed_by"] == "admin1"

    resp = client.put(f"/api/moderation/queue/{item_id}", json={"status": "rejected"}, headers=ADMIN)
    assert resp.status_code == 409

    stats = client.get("/api/moderation/stats", headers=ADMIN).json()
    assert stats["approved"] == 1
    assert stats["pending"] == 0


def test_queue_errors():
    client, _, _ = _client()
    assert client.get("/api/moderation/queue/mod-missing", headers=ADMIN).status_code == 404
    assert client.get("/api/moderation/queue?status=bogus", headers=ADMIN).status_code == 400
    assert client.get("/api/moderation/queue", headers=MEMBER).status_code == 403


def test_block_requires_admin_and_reason():
    client, _, _ = _client()
    assert client.put("/api/moderation/user/u2/block", json={"reason": "x"}, headers=MODERATOR).status_code == 403
    assert client.put("/api/moderation/user/u2/block", json={"reason": " "}, headers=ADMIN).status_code == 400
    state = client.get("/api/moderation/user/u2", headers=ADMIN).json()
    assert state["blocked"] is False


def test_audit_endpoint():
    client, _, _ = _client()
    client.put("/api/moderation/user/u2/block", json={"reason": "spam"}, headers=ADMIN)
    events = client.get("/api/moderation/audit", headers=ADMIN).json()
    assert events[0]["action"] == "user.blocked"
    assert events[0]["resource_id"] == "u2"


def test_unreadable_store():
    client, store, _ = _client()
    documents = Path(store._docs._base)
    (documents / "moderation-config.json").write_text("[{")
    (documents / "user-moderation.json").write_text("[{")

    resp = client.post("/api/moderation/analyze", json={"text": "hello"}, headers=MEMBER)
    assert resp.status_code == 200
    assert resp.json()["allowed"] is True

    assert client.get("/api/moderation/config", headers=ADMIN).status_code == 503
    assert client.get("/api/moderation/user/u2", headers=ADMIN).status_code == 503
    assert (documents / "moderation-config.json").read_text() == "[{"

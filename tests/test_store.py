"""Tests for the moderation config, queue and user-state store."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from tiermod.errors import ConflictError, NotFoundError, StorageError, ValidationError
from tiermod.moderation.models import (
    DEFAULT_BLOCKLIST,
    Action,
    ModerationQueueItem,
    Workflow,
)
from tiermod.moderation.store import QUEUE_COLLECTION, ModerationStore
from tiermod.storage.documents import JsonDocumentStore


def _store() -> ModerationStore:
    return ModerationStore(JsonDocumentStore(tempfile.mkdtemp()))


def _item(text: str = "queued text", workflow: str = "community") -> ModerationQueueItem:
    return ModerationQueueItem(id="", text=text, safe_text=text, user_id="u1", workflow=workflow)


# ── Config ───────────────────────────────────────────────────────────


def test_get_config_creates_defaults():
    store = _store()
    config = asyncio.run(store.get_config())
    assert config.enabled
    assert config.thresholds.hate == 2
    assert config.thresholds.violence == 4
    assert config.blocklist == DEFAULT_BLOCKLIST
    assert not config.profile(Workflow.NOTIFICATIONS).enabled


def test_partial_threshold_update_keeps_other_fields():
    store = _store()
    before = asyncio.run(store.get_config())
    asyncio.run(store.save_config({"thresholds": {"hate": 3}}))
    after = asyncio.run(store.get_config())

    assert after.thresholds.hate == 3
    assert after.thresholds.sexual == before.thresholds.sexual
    assert after.thresholds.violence == before.thresholds.violence
    assert after.thresholds.self_harm == before.thresholds.self_harm
    assert after.blocklist == before.blocklist
    assert after.enabled == before.enabled
    assert after.created_at == before.created_at


def test_partial_workflow_update_merges_settings():
    store = _store()
    asyncio.run(store.save_config({"workflows": {"groups": {"tier3": True, "tier3_action": "pending"}}}))
    config = asyncio.run(store.get_config())
    groups = config.profile(Workflow.GROUPS)
    assert groups.tier1 and groups.tier2 and groups.tier3
    assert groups.tier3_action == Action.PENDING
    assert config.profile(Workflow.COMMUNITY).tier3_action == Action.REJECT


@pytest.mark.parametrize(
    "update",
    [
        {"thresholds": {"hate": 7}},
        {"thresholds": {"hate": "high"}},
        {"thresholds": {"spam": 2}},
        {"workflows": {"unknown": {"tier1": True}}},
        {"workflows": {"community": {"tier3_action": "allow"}}},
        {"workflows": {"community": {"tier1_action": "block"}}},
        {"flag_suspicious_links": "yes"},
        {"blocklist": "spam"},
        {"enabled": "yes"},
        {"not_a_field": 1},
    ],
)
def test_invalid_config_updates_are_rejected(update):
    store = _store()
    with pytest.raises(ValidationError):
        asyncio.run(store.save_config(update))
    assert asyncio.run(store.get_config()).thresholds.hate == 2


def test_read_only_fields_are_ignored():
    store = _store()
    config = asyncio.run(store.save_config({"id": "other", "created_at": "1999", "enabled": False}))
    assert config.id == "config"
    assert config.created_at != "1999"
    assert not config.enabled


def test_update_blocklist_normalizes_terms():
    store = _store()
    config = asyncio.run(store.update_blocklist(["  Spam ", "spam", "SCAM"]))
    assert config.blocklist == ["spam", "scam"]
    assert asyncio.run(store.get_config()).blocklist == ["spam", "scam"]


# ── Queue ────────────────────────────────────────────────────────────


def test_enqueue_forces_pending():
    store = _store()
    item = _item()
    item.status = "approved"
    saved = asyncio.run(store.enqueue(item))
    assert saved.id.startswith("mod-")
    assert saved.status == "pending"
    assert asyncio.run(store.get_queue_item(saved.id)).text == "queued text"


def test_corrupt_queue_file_keeps_existing_items():
    base = tempfile.mkdtemp()
    store = ModerationStore(JsonDocumentStore(base))
    for text in ("one", "two", "three"):
        asyncio.run(store.enqueue(_item(text)))
    path = Path(base) / f"{QUEUE_COLLECTION}.json"
    intact = path.read_text()
    path.write_text(intact[:-20])

    with pytest.raises(StorageError):
        asyncio.run(store.enqueue(_item("new")))

    path.write_text(intact)
    items = asyncio.run(store.list_queue(status="all"))
    assert sorted(i.text for i in items) == ["one", "three", "two"]


def test_list_queue_most_recent_first():
    store = _store()
    first = asyncio.run(store.enqueue(_item("first")))
    second = asyncio.run(store.enqueue(_item("second")))
    items = asyncio.run(store.list_queue())
    assert [i.id for i in items] == [second.id, first.id]


def test_list_queue_filters():
    store = _store()
    a = asyncio.run(store.enqueue(_item("a", workflow="community")))
    asyncio.run(store.enqueue(_item("b", workflow="groups")))
    asyncio.run(store.resolve_queue_item(a.id, "approved", "mod1"))

    assert [i.text for i in asyncio.run(store.list_queue())] == ["b"]
    assert [i.text for i in asyncio.run(store.list_queue(status="approved"))] == ["a"]
    assert len(asyncio.run(store.list_queue(status="all"))) == 2
    assert [i.text for i in asyncio.run(store.list_queue(status="all", workflow="community"))] == ["a"]
    assert len(asyncio.run(store.list_queue(status="all", limit=1))) == 1


@pytest.mark.parametrize("kwargs", [{"status": "bogus"}, {"limit": 0}, {"limit": 501}, {"workflow": "nope"}])
def test_list_queue_rejects_bad_arguments(kwargs):
    with pytest.raises(ValidationError):
        asyncio.run(_store().list_queue(**kwargs))


def test_resolve_queue_item():
    store = _store()
    item = asyncio.run(store.enqueue(_item()))
    resolved = asyncio.run(store.resolve_queue_item(item.id, "rejected", "mod1", "spam"))
    assert resolved.status == "rejected"
    assert resolved.reviewed_by == "mod1"
    assert resolved.notes == "spam"
    assert resolved.reviewed_at


def test_double_resolution_conflicts_and_keeps_first_review():
    store = _store()
    item = asyncio.run(store.enqueue(_item()))
    asyncio.run(store.resolve_queue_item(item.id, "approved", "mod1", "looks fine"))

    with pytest.raises(ConflictError):
        asyncio.run(store.resolve_queue_item(item.id, "rejected", "mod2", "actually no"))

    stored = asyncio.run(store.get_queue_item(item.id))
    assert stored.status == "approved"
    assert stored.reviewed_by == "mod1"
    assert stored.notes == "looks fine"


def test_concurrent_modification_conflicts():
    docs = JsonDocumentStore(tempfile.mkdtemp())
    store = ModerationStore(docs)
    item = asyncio.run(store.enqueue(_item()))

    original_get = docs.get

    async def get_then_race(collection, doc_id):
        doc = await original_get(collection, doc_id)
        if collection == QUEUE_COLLECTION:
            # Another reviewer writes between our read and our write.
            await docs.replace(collection, doc_id, dict(doc, notes="other reviewer"))
        return doc

    docs.get = get_then_race
    with pytest.raises(ConflictError):
        asyncio.run(store.resolve_queue_item(item.id, "approved", "mod1"))


def test_resolve_missing_item():
    with pytest.raises(NotFoundError):
        asyncio.run(_store().resolve_queue_item("mod-missing", "approved", "mod1"))


@pytest.mark.parametrize("status", ["pending", "maybe", ""])
def test_resolve_rejects_bad_status(status):
    store = _store()
    item = asyncio.run(store.enqueue(_item()))
    with pytest.raises(ValidationError):
        asyncio.run(store.resolve_queue_item(item.id, status, "mod1"))


def test_resolve_requires_id():
    with pytest.raises(ValidationError):
        asyncio.run(_store().resolve_queue_item("", "approved", "mod1"))


def test_stats():
    store = _store()
    a = asyncio.run(store.enqueue(_item("a")))
    b = asyncio.run(store.enqueue(_item("b")))
    asyncio.run(store.enqueue(_item("c")))
    asyncio.run(store.resolve_queue_item(a.id, "approved", "mod1"))
    asyncio.run(store.resolve_queue_item(b.id, "rejected", "mod1"))

    stats = asyncio.run(store.get_stats())
    assert stats == {"pending": 1, "approved": 1, "rejected": 1, "today_total": 3}


# ── Users ────────────────────────────────────────────────────────────


def test_unknown_user_is_not_blocked():
    assert not asyncio.run(_store().is_user_blocked("u1"))


def test_block_and_unblock_user():
    store = _store()
    blocked = asyncio.run(store.set_user_block_status("u1", True, "spamming", "admin1"))
    assert blocked.blocked
    assert blocked.reason == "spamming"
    assert blocked.blocked_by == "admin1"
    assert asyncio.run(store.is_user_blocked("u1"))

    unblocked = asyncio.run(store.set_user_block_status("u1", False, actor_id="admin1"))
    assert not unblocked.blocked
    assert unblocked.unblocked_at
    assert [h["action"] for h in unblocked.history] == ["blocked", "unblocked"]
    assert not asyncio.run(store.is_user_blocked("u1"))


def test_block_requires_reason():
    with pytest.raises(ValidationError):
        asyncio.run(_store().set_user_block_status("u1", True, "  "))


def test_block_requires_user_id():
    with pytest.raises(ValidationError):
        asyncio.run(_store().set_user_block_status("", True, "spam"))

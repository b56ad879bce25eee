"""Tests for the JSON document store."""

import asyncio
import json
import tempfile
import threading
from pathlib import Path

import pytest

from tiermod.errors import ConflictError, NotFoundError, StorageError, ValidationError
from tiermod.storage.documents import JsonDocumentStore


def _store() -> JsonDocumentStore:
    return JsonDocumentStore(tempfile.mkdtemp())


def test_create_and_get():
    store = _store()
    created = asyncio.run(store.create("items", {"id": "a", "value": 1}))
    assert created["_etag"]
    fetched = asyncio.run(store.get("items", "a"))
    assert fetched["value"] == 1


def test_create_assigns_id():
    created = asyncio.run(_store().create("items", {"value": 1}))
    assert created["id"]


def test_duplicate_create_conflicts():
    store = _store()
    asyncio.run(store.create("items", {"id": "a"}))
    with pytest.raises(ConflictError):
        asyncio.run(store.create("items", {"id": "a"}))


def test_get_missing():
    with pytest.raises(NotFoundError):
        asyncio.run(_store().get("items", "missing"))


def test_query_filters_by_equality():
    store = _store()
    asyncio.run(store.create("items", {"id": "a", "status": "pending"}))
    asyncio.run(store.create("items", {"id": "b", "status": "approved"}))
    pending = asyncio.run(store.query("items", {"status": "pending"}))
    assert [r["id"] for r in pending] == ["a"]
    assert len(asyncio.run(store.query("items"))) == 2


def test_replace_with_matching_etag():
    store = _store()
    created = asyncio.run(store.create("items", {"id": "a", "value": 1}))
    replaced = asyncio.run(store.replace("items", "a", {"value": 2}, if_match=created["_etag"]))
    assert replaced["value"] == 2
    assert replaced["_etag"] != created["_etag"]


def test_replace_with_stale_etag_conflicts():
    store = _store()
    created = asyncio.run(store.create("items", {"id": "a", "value": 1}))
    asyncio.run(store.replace("items", "a", {"value": 2}))
    with pytest.raises(ConflictError):
        asyncio.run(store.replace("items", "a", {"value": 3}, if_match=created["_etag"]))
    assert asyncio.run(store.get("items", "a"))["value"] == 2


def test_replace_missing():
    with pytest.raises(NotFoundError):
        asyncio.run(_store().replace("items", "missing", {}))


def test_invalid_collection_name():
    with pytest.raises(ValidationError):
        asyncio.run(_store().get("../etc", "a"))


def test_data_persists_across_instances():
    base = tempfile.mkdtemp()
    asyncio.run(JsonDocumentStore(base).create("items", {"id": "a"}))
    assert asyncio.run(JsonDocumentStore(base).get("items", "a"))["id"] == "a"


def test_unreadable_collection_is_not_overwritten():
    base = tempfile.mkdtemp()
    store = JsonDocumentStore(base)
    for doc_id in ("a", "b", "c"):
        asyncio.run(store.create("items", {"id": doc_id}))
    path = Path(base) / "items.json"
    damaged = path.read_text()[: len(path.read_text()) // 2]
    path.write_text(damaged)

    with pytest.raises(StorageError):
        asyncio.run(store.create("items", {"id": "new"}))
    with pytest.raises(StorageError):
        asyncio.run(store.replace("items", "a", {"value": 1}))
    with pytest.raises(StorageError):
        asyncio.run(store.query("items"))
    assert path.read_text() == damaged


def test_non_list_collection_is_rejected():
    base = tempfile.mkdtemp()
    (Path(base) / "items.json").write_text(json.dumps({"id": "a"}))
    with pytest.raises(StorageError):
        asyncio.run(JsonDocumentStore(base).get("items", "a"))


def test_file_access_runs_off_the_event_loop_thread():
    store = _store()
    threads = []
    read_json = store._read_json

    def recording_read(path):
        threads.append(threading.get_ident())
        return read_json(path)

    store._read_json = recording_read
    asyncio.run(store.create("items", {"id": "a"}))
    asyncio.run(store.get("items", "a"))
    assert len(threads) == 2
    assert threading.get_ident() not in threads

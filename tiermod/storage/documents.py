"""File-based JSON document store.

Implements the narrow document-store contract the moderation core needs
(get / query / create / replace on named collections).  Each collection is
a JSON list in ``<base_dir>/<collection>.json``.  Every write stamps the
record with a fresh ``_etag``; ``replace(..., if_match=etag)`` is a
compare-and-swap that fails with :class:`ConflictError` when another
writer got there first.  A collection file that exists but cannot be
parsed raises :class:`StorageError` and is left untouched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol

from tiermod.errors import ConflictError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_COLLECTION_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any]: ...

    async def query(
        self, collection: str, filter: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]: ...

    async def create(self, collection: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def replace(
        self,
        collection: str,
        doc_id: str,
        record: dict[str, Any],
        if_match: Optional[str] = None,
    ) -> dict[str, Any]: ...


class JsonDocumentStore:
    """Document store backed by one JSON file per collection.

    Storage path defaults to ``~/.tiermod/documents/``.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        if base_dir is None:
            self._base = Path.home() / ".tiermod" / "documents"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, collection: str) -> Path:
        if not _COLLECTION_RE.match(collection):
            raise ValidationError(f"Invalid collection name '{collection}'")
        return self._base / f"{collection}.json"

    def _read_json(self, path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Unreadable collection file %s: %s", path, exc)
            raise StorageError(f"Collection file {path.name} is unreadable: {exc}") from exc
        if not isinstance(data, list):
            logger.error("Collection file %s does not hold a list", path)
            raise StorageError(f"Collection file {path.name} is malformed")
        return data

    def _write_json(self, path: Path, data: list[dict]) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2, default=str))
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageError(f"Could not write {path.name}: {exc}") from exc

    def _get(self, collection: str, doc_id: str) -> dict[str, Any]:
        for record in self._read_json(self._path(collection)):
            if record.get("id") == doc_id:
                return dict(record)
        raise NotFoundError(f"{collection}/{doc_id} not found")

    def _query(self, collection: str, filter: Optional[dict[str, Any]]) -> list[dict[str, Any]]:
        records = self._read_json(self._path(collection))
        if filter:
            records = [r for r in records if all(r.get(k) == v for k, v in filter.items())]
        return [dict(r) for r in records]

    def _create(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        path = self._path(collection)
        doc = dict(record)
        doc.setdefault("id", uuid.uuid4().hex)
        doc["_etag"] = uuid.uuid4().hex
        with self._lock:
            records = self._read_json(path)
            if any(r.get("id") == doc["id"] for r in records):
                raise ConflictError(f"{collection}/{doc['id']} already exists")
            records.append(doc)
            self._write_json(path, records)
        return dict(doc)

    def _replace(
        self,
        collection: str,
        doc_id: str,
        record: dict[str, Any],
        if_match: Optional[str],
    ) -> dict[str, Any]:
        path = self._path(collection)
        with self._lock:
            records = self._read_json(path)
            for index, current in enumerate(records):
                if current.get("id") != doc_id:
                    continue
                if if_match is not None and current.get("_etag") != if_match:
                    raise ConflictError(f"{collection}/{doc_id} was modified concurrently")
                doc = dict(record)
                doc["id"] = doc_id
                doc["_etag"] = uuid.uuid4().hex
                records[index] = doc
                self._write_json(path, records)
                return dict(doc)
        raise NotFoundError(f"{collection}/{doc_id} not found")

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------
    # File access runs in a worker thread so the event loop is never blocked.

    async def get(self, collection: str, doc_id: str) -> dict[str, Any]:
        """Return the document *doc_id*; raise NotFoundError if absent."""
        return await asyncio.to_thread(self._get, collection, doc_id)

    async def query(
        self, collection: str, filter: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal every value in *filter*."""
        return await asyncio.to_thread(self._query, collection, filter)

    async def create(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document.  Raises ConflictError if the id exists."""
        return await asyncio.to_thread(self._create, collection, record)

    async def replace(
        self,
        collection: str,
        doc_id: str,
        record: dict[str, Any],
        if_match: Optional[str] = None,
    ) -> dict[str, Any]:
        """Overwrite document *doc_id*, optionally only if its etag matches."""
        return await asyncio.to_thread(self._replace, collection, doc_id, record, if_match)

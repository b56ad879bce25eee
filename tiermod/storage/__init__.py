"""Document storage backends."""

from tiermod.storage.documents import DocumentStore, JsonDocumentStore

__all__ = ["DocumentStore", "JsonDocumentStore"]

"""DocumentStore backends."""

from src.schedule_sync.stores.base import DocumentStore
from src.schedule_sync.stores.firestore import FirestoreRestStore
from src.schedule_sync.stores.json_file import JsonFileDocumentStore
from src.schedule_sync.stores.memory import InMemoryDocumentStore

__all__ = [
    "DocumentStore",
    "FirestoreRestStore",
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
]

"""
Thin adapter over the MongoDB driver: the document store collaborator.

Only what the query pipeline needs: collection handles and a listing with
estimated counts.  Connection profiles and document CRUD live outside this
service.
"""

from typing import Any, Dict, List, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import Settings
from errors import ExecutionFailure
from logger import logger


class DocumentStore:

    def __init__(self, settings: Settings, client: Optional[MongoClient] = None):
        self.mongo_uri = settings.mongo_uri
        self.database_name = settings.database_name
        self.server_selection_timeout_ms = settings.server_selection_timeout_ms
        self._client = client

    @property
    def client(self) -> MongoClient:
        """Create the MongoClient lazily with timeout protection."""
        if self._client is None:
            self._client = MongoClient(
                self.mongo_uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
        return self._client

    def collection(self, name: str, database: Optional[str] = None):
        return self.client[database or self.database_name][name]

    def list_collections(self, database: Optional[str] = None) -> List[Dict[str, Any]]:
        """List collections with estimated doc counts (avoids full scans)."""
        try:
            db = self.client[database or self.database_name]
            collections_info = []
            for name in db.list_collection_names():
                try:
                    count = db[name].estimated_document_count()
                except PyMongoError:
                    count = None
                collections_info.append({"name": name, "count": count})
        except PyMongoError as e:
            logger.error("list-collections error: %s", e)
            raise ExecutionFailure(f"Failed to list collections: {e}")
        return sorted(collections_info, key=lambda c: c["name"])

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

"""
Thin wrapper over a pymongo Database.

The Store is built once by the process (see `create_app`) and handed to the
services that need it. It exposes only the operations the ledger relies on
and turns driver errors into ledger errors.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from errors import Conflict, UpstreamFailure
from serialization import utc_now

logger = logging.getLogger(__name__)

WALLETS = "wallets"
CATEGORIES = "categories"
TRANSACTIONS = "transactions"
KEYWORD_MAPPINGS = "keywordMappings"
BUDGETS = "budgets"

SortSpec = Sequence[Tuple[str, int]]


class Store:
    def __init__(self, db, client: Optional[MongoClient] = None):
        self.db = db
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        client = MongoClient(
            settings.database_url,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        )
        return cls(client[settings.database_name], client)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    @contextmanager
    def _guard(self, op: str, collection: str):
        try:
            yield
        except DuplicateKeyError as e:
            logger.info("duplicate key on %s.%s: %s", collection, op, e)
            raise Conflict("A document with the same name already exists") from e
        except PyMongoError as e:
            logger.exception("store failure on %s.%s", collection, op)
            raise UpstreamFailure(f"Database error during {op} on {collection}") from e

    def ensure_indexes(self) -> None:
        with self._guard("create_index", "*"):
            self.db[WALLETS].create_index([("name", ASCENDING)], unique=True)
            self.db[CATEGORIES].create_index([("name", ASCENDING)], unique=True)
            self.db[KEYWORD_MAPPINGS].create_index([("keyword", ASCENDING)], unique=True)
            self.db[TRANSACTIONS].create_index([("walletId", ASCENDING)])
            self.db[TRANSACTIONS].create_index([("categoryId", ASCENDING)])
            self.db[BUDGETS].create_index([("categoryId", ASCENDING), ("month", ASCENDING)])

    # -----------------------------
    # Primitive operations
    # -----------------------------
    def find_one(self, collection: str, filter: Dict[str, Any], sort: Optional[SortSpec] = None):
        if sort:
            docs = self.find(collection, filter, sort=sort, limit=1)
            return docs[0] if docs else None
        with self._guard("find_one", collection):
            return self.db[collection].find_one(filter)

    def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        with self._guard("find", collection):
            cursor = self.db[collection].find(filter or {})
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def insert_one(self, collection: str, document: Dict[str, Any]) -> str:
        with self._guard("insert_one", collection):
            result = self.db[collection].insert_one(document)
        return str(result.inserted_id)

    def update_one(
        self,
        collection: str,
        filter: Dict[str, Any],
        set: Optional[Dict[str, Any]] = None,
        inc: Optional[Dict[str, Union[int, float]]] = None,
    ) -> int:
        update: Dict[str, Any] = {}
        if set:
            update["$set"] = set
        if inc:
            update["$inc"] = inc
        if not update:
            return 0
        with self._guard("update_one", collection):
            result = self.db[collection].update_one(filter, update)
        return result.matched_count

    def delete_one(self, collection: str, filter: Dict[str, Any]) -> int:
        with self._guard("delete_one", collection):
            result = self.db[collection].delete_one(filter)
        return result.deleted_count

    def count_documents(self, collection: str, filter: Optional[Dict[str, Any]] = None) -> int:
        with self._guard("count_documents", collection):
            return self.db[collection].count_documents(filter or {})

    def ping(self) -> List[str]:
        with self._guard("ping", "*"):
            if self._client is not None:
                self._client.admin.command("ping")
            return self.db.list_collection_names()

    # -----------------------------
    # Document helpers
    # -----------------------------
    def create_document(self, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
        """Insert `data` stamped with createdAt/updatedAt and return the new id."""
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = utc_now()
        data_dict.setdefault("createdAt", now)
        data_dict["updatedAt"] = now
        return self.insert_one(collection, data_dict)

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        return self.find(collection, filter_dict, sort=sort, limit=limit or 0)

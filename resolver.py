"""
Name-or-id normalization for wallet and category references.

Callers (the API, the assistant) may refer to a wallet or category either by
its canonical id or by its human-readable name. `IdentifierResolver` is the
single place that turns such a value into a canonical id, creating the
entity when a name is unknown:

* category: a new category named after the value, typed like the
  transaction that referenced it;
* wallet: the earliest-created existing wallet, or, when there is none,
  a fresh wallet called `default wallet` with a zero balance.

Well-formed ids are returned untouched; whether they point at a live
document is checked later by the lifecycle manager.
"""

import logging
from typing import Optional

from pymongo import ASCENDING

from database import CATEGORIES, WALLETS, Store
from errors import Conflict, ValidationError
from serialization import is_object_id

logger = logging.getLogger(__name__)

KINDS = (WALLETS, CATEGORIES)

DEFAULT_WALLET_NAME = "default wallet"
DEFAULT_CATEGORY_COLOR = "#3B82F6"


class IdentifierResolver:
    def __init__(
        self,
        store: Store,
        default_wallet_name: str = DEFAULT_WALLET_NAME,
        default_category_color: str = DEFAULT_CATEGORY_COLOR,
    ):
        self.store = store
        self.default_wallet_name = default_wallet_name
        self.default_category_color = default_category_color

    def resolve(self, kind: str, value: Optional[str], tx_type: str = "expense") -> Optional[str]:
        if kind not in KINDS:
            raise ValueError(f"unknown reference kind: {kind}")
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if is_object_id(value):
            return value

        found = self.store.find_one(kind, {"name": value})
        if found:
            return str(found["_id"])

        if kind == CATEGORIES:
            return self._create_category(value, tx_type)
        return self._fallback_wallet()

    def resolve_category(self, value: Optional[str], tx_type: str = "expense") -> Optional[str]:
        return self.resolve(CATEGORIES, value, tx_type)

    def resolve_wallet(self, value: Optional[str]) -> Optional[str]:
        return self.resolve(WALLETS, value)

    def _create_category(self, name: str, tx_type: str) -> str:
        if len(name) > 50:
            raise ValidationError("Invalid data", [{"field": "categoryId", "message": "category name too long"}])
        doc = {
            "name": name,
            "defaultType": tx_type,
            "color": self.default_category_color,
            "icon": None,
            "isDefault": False,
        }
        return self._insert_or_reread(CATEGORIES, name, doc)

    def _fallback_wallet(self) -> str:
        first = self.store.find_one(WALLETS, {}, sort=[("createdAt", ASCENDING), ("_id", ASCENDING)])
        if first:
            return str(first["_id"])
        doc = {
            "name": self.default_wallet_name,
            "balance": 0,
            "openingBalance": 0,
            "currency": "VND",
            "isDefault": True,
        }
        return self._insert_or_reread(WALLETS, self.default_wallet_name, doc)

    def _insert_or_reread(self, kind: str, name: str, doc: dict) -> str:
        try:
            new_id = self.store.create_document(kind, doc)
        except Conflict:
            # Another request created the same name between our lookup and insert.
            winner = self.store.find_one(kind, {"name": name})
            if winner is None:
                raise
            logger.info("resolver lost create race for %s %r, using %s", kind, name, winner["_id"])
            return str(winner["_id"])
        logger.info("resolver created %s %r as %s", kind, name, new_id)
        return new_id

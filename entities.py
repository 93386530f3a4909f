"""
CRUD for wallets, categories, keyword mappings and budgets.

Deletion of a wallet or category is refused while any transaction (or, for
a category, any budget) still references it. A direct balance correction on
a wallet is absorbed into its opening balance so the transaction-sum
invariant keeps holding.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import ASCENDING

import reports
from database import BUDGETS, CATEGORIES, KEYWORD_MAPPINGS, TRANSACTIONS, WALLETS, Store
from errors import Conflict, NotFound, ValidationError
from locks import KeyedLocks, category_key, wallet_key
from resolver import DEFAULT_CATEGORY_COLOR
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    KeywordMappingIn,
    WalletIn,
    WalletUpdate,
    parse_input,
)
from serialization import object_id, serialize, to_minor, utc_now

logger = logging.getLogger(__name__)


class _Collection:
    collection = ""
    label = ""
    # (collection, field) pairs whose documents keep this entity alive
    referenced_by: Sequence[Tuple[str, str]] = ()

    def __init__(self, store: Store, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.locks = locks or KeyedLocks()

    def list(self) -> List[Dict[str, Any]]:
        docs = self.store.find(self.collection, {}, sort=[("createdAt", ASCENDING), ("_id", ASCENDING)])
        return [serialize(d) for d in docs]

    def get(self, entity_id: str) -> Dict[str, Any]:
        return serialize(self._fetch(entity_id))

    def _fetch(self, entity_id: str) -> Dict[str, Any]:
        doc = self.store.find_one(self.collection, {"_id": object_id(entity_id, f"{self.label} ID")})
        if not doc:
            raise NotFound(f"{self.label.capitalize()} not found")
        return doc

    def _ensure_name_free(self, name: str, exclude=None) -> None:
        query: Dict[str, Any] = {"name": name}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if self.store.find_one(self.collection, query):
            raise Conflict(f"A {self.label} named {name!r} already exists")

    def _guard_unreferenced(self, entity_id: str) -> None:
        for collection, field in self.referenced_by:
            if self.store.count_documents(collection, {field: entity_id}) > 0:
                raise Conflict(
                    f"Cannot delete {self.label} with existing {collection}. "
                    f"Please move or delete {collection} first.",
                    status_code=400,
                )


class WalletService(_Collection):
    collection = WALLETS
    label = "wallet"
    referenced_by = ((TRANSACTIONS, "walletId"),)

    def create(self, data) -> Dict[str, Any]:
        payload = parse_input(WalletIn, data)
        self._ensure_name_free(payload.name)
        opening = to_minor(payload.balance)
        doc = {
            "name": payload.name,
            "balance": opening,
            "openingBalance": opening,
            "currency": payload.currency.upper(),
            "isDefault": payload.isDefault,
        }
        wallet_id = self.store.create_document(WALLETS, doc)
        if payload.isDefault:
            self._clear_default(except_id=wallet_id)
        logger.info("created wallet %s %r", wallet_id, payload.name)
        return self.get(wallet_id)

    def update(self, wallet_id: str, data) -> Dict[str, Any]:
        payload = parse_input(WalletUpdate, data)
        existing = self._fetch(wallet_id)
        fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        if "name" in fields and fields["name"] != existing["name"]:
            self._ensure_name_free(fields["name"], exclude=existing["_id"])
        if "currency" in fields:
            fields["currency"] = fields["currency"].upper()

        with self.locks.hold(wallet_key(existing["_id"])):
            inc = None
            if "balance" in fields:
                fields["balance"] = to_minor(fields["balance"])
                current = self.store.find_one(WALLETS, {"_id": existing["_id"]})
                correction = fields["balance"] - current.get("balance", 0)
                if correction:
                    inc = {"openingBalance": correction}
                    logger.info("wallet %s balance corrected by %+d minor units", wallet_id, correction)
            fields["updatedAt"] = utc_now()
            self.store.update_one(WALLETS, {"_id": existing["_id"]}, set=fields, inc=inc)

        if fields.get("isDefault"):
            self._clear_default(except_id=str(existing["_id"]))
        return self.get(wallet_id)

    def delete(self, wallet_id: str) -> None:
        existing = self._fetch(wallet_id)
        # held across the check and the delete so no transaction slips in between
        with self.locks.hold(wallet_key(existing["_id"])):
            self._guard_unreferenced(str(existing["_id"]))
            self.store.delete_one(WALLETS, {"_id": existing["_id"]})
        logger.info("deleted wallet %s", wallet_id)

    def _clear_default(self, except_id: str) -> None:
        for w in self.store.find(WALLETS, {"isDefault": True}):
            if str(w["_id"]) != except_id:
                self.store.update_one(WALLETS, {"_id": w["_id"]}, set={"isDefault": False})


class CategoryService(_Collection):
    collection = CATEGORIES
    label = "category"
    referenced_by = ((TRANSACTIONS, "categoryId"), (BUDGETS, "categoryId"))

    def __init__(
        self,
        store: Store,
        default_color: str = DEFAULT_CATEGORY_COLOR,
        locks: Optional[KeyedLocks] = None,
    ):
        super().__init__(store, locks)
        self.default_color = default_color

    def create(self, data) -> Dict[str, Any]:
        payload = parse_input(CategoryIn, data)
        self._ensure_name_free(payload.name)
        doc = payload.model_dump()
        doc["color"] = doc.get("color") or self.default_color
        doc["isDefault"] = False
        category_id = self.store.create_document(CATEGORIES, doc)
        return self.get(category_id)

    def update(self, category_id: str, data) -> Dict[str, Any]:
        payload = parse_input(CategoryUpdate, data)
        existing = self._fetch(category_id)
        fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        if "name" in fields and fields["name"] != existing["name"]:
            self._ensure_name_free(fields["name"], exclude=existing["_id"])
        fields["updatedAt"] = utc_now()
        self.store.update_one(CATEGORIES, {"_id": existing["_id"]}, set=fields)
        return self.get(category_id)

    def delete(self, category_id: str) -> None:
        existing = self._fetch(category_id)
        cid = str(existing["_id"])
        with self.locks.hold(category_key(cid)):
            self._guard_unreferenced(cid)
            self.store.delete_one(CATEGORIES, {"_id": existing["_id"]})
        # mappings pointing at a deleted category can never match again
        for m in self.store.find(KEYWORD_MAPPINGS, {"categoryId": cid}):
            self.store.delete_one(KEYWORD_MAPPINGS, {"_id": m["_id"]})
        logger.info("deleted category %s", category_id)


class KeywordMappingService:
    def __init__(self, store: Store):
        self.store = store

    def list(self) -> List[Dict[str, Any]]:
        return [serialize(m) for m in self.store.find(KEYWORD_MAPPINGS, {}, sort=[("keyword", ASCENDING)])]

    def create(self, data) -> Dict[str, Any]:
        payload = parse_input(KeywordMappingIn, data)
        keyword = payload.keyword.lower()
        category_oid = object_id(payload.categoryId, "category ID")
        if not self.store.find_one(CATEGORIES, {"_id": category_oid}):
            raise NotFound("Category not found")
        if self.store.find_one(KEYWORD_MAPPINGS, {"keyword": keyword}):
            raise Conflict(f"Keyword {keyword!r} is already mapped")
        mapping_id = self.store.create_document(
            KEYWORD_MAPPINGS, {"keyword": keyword, "categoryId": str(category_oid)}
        )
        return serialize(self.store.find_one(KEYWORD_MAPPINGS, {"_id": object_id(mapping_id)}))

    def delete(self, mapping_id: str) -> None:
        deleted = self.store.delete_one(KEYWORD_MAPPINGS, {"_id": object_id(mapping_id, "keyword mapping ID")})
        if not deleted:
            raise NotFound("Keyword mapping not found")

    def suggest(self, description: str) -> Optional[Dict[str, Any]]:
        """Category of the longest keyword found in `description`, if any."""
        text = description.lower()
        hits = [m for m in self.store.find(KEYWORD_MAPPINGS, {}) if m.get("keyword") and m["keyword"] in text]
        for mapping in sorted(hits, key=lambda m: len(m["keyword"]), reverse=True):
            category = self.store.find_one(CATEGORIES, {"_id": object_id(mapping["categoryId"])})
            if category:
                return serialize(category)
        return None


class BudgetService(_Collection):
    """Monthly spending limits, per expense category or overall (no category)."""

    collection = BUDGETS
    label = "budget"

    def list(self, month: Optional[str] = None) -> List[Dict[str, Any]]:
        query = {"month": month} if month else {}
        docs = self.store.find(BUDGETS, query, sort=[("month", ASCENDING), ("createdAt", ASCENDING)])
        return [reports.budget_status(self.store, b) for b in docs]

    def get(self, budget_id: str) -> Dict[str, Any]:
        return reports.budget_status(self.store, self._fetch(budget_id))

    def create(self, data) -> Dict[str, Any]:
        payload = parse_input(BudgetIn, data)
        category_id = self._expense_category(payload.categoryId)
        with self.locks.hold(category_key(category_id)):
            self._require_category(category_id)
            self._ensure_period_free(category_id, payload.month)
            budget_id = self.store.create_document(
                BUDGETS,
                {"categoryId": category_id, "month": payload.month, "amount": to_minor(payload.amount)},
            )
        logger.info("created budget %s for %s in %s", budget_id, category_id or "all categories", payload.month)
        return self.get(budget_id)

    def update(self, budget_id: str, data) -> Dict[str, Any]:
        payload = parse_input(BudgetUpdate, data)
        existing = self._fetch(budget_id)
        fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        if "amount" in fields:
            fields["amount"] = to_minor(fields["amount"])
        category_id = existing.get("categoryId")
        if "categoryId" in fields:
            category_id = fields["categoryId"] = self._expense_category(fields["categoryId"])
        month = fields.get("month", existing["month"])

        with self.locks.hold(category_key(category_id)):
            self._require_category(category_id)
            if category_id != existing.get("categoryId") or month != existing["month"]:
                self._ensure_period_free(category_id, month, exclude=existing["_id"])
            fields["updatedAt"] = utc_now()
            self.store.update_one(BUDGETS, {"_id": existing["_id"]}, set=fields)
        return self.get(budget_id)

    def delete(self, budget_id: str) -> None:
        existing = self._fetch(budget_id)
        self.store.delete_one(BUDGETS, {"_id": existing["_id"]})

    def _expense_category(self, category_id: Optional[str]) -> Optional[str]:
        if category_id is None:
            return None
        category = self.store.find_one(CATEGORIES, {"_id": object_id(category_id, "category ID")})
        if not category:
            raise NotFound("Category not found")
        if category.get("defaultType") != "expense":
            raise ValidationError(
                "Budget only allowed for expense categories",
                [{"field": "categoryId", "message": "category is not an expense category"}],
            )
        return str(category["_id"])

    def _require_category(self, category_id: Optional[str]) -> None:
        # re-checked under the category lock; the category may have gone meanwhile
        if category_id and not self.store.find_one(CATEGORIES, {"_id": object_id(category_id)}):
            raise NotFound("Category not found")

    def _ensure_period_free(self, category_id: Optional[str], month: str, exclude=None) -> None:
        query: Dict[str, Any] = {"categoryId": category_id, "month": month}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if self.store.find_one(BUDGETS, query):
            raise Conflict(f"A budget for this category in {month} already exists")

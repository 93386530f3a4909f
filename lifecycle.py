"""
Transaction lifecycle: the only code that moves wallet balances.

For every wallet w the ledger keeps

    w.balance == w.openingBalance + sum(delta(t) for t referencing w)

where delta(t) is +amount for income and -amount for expense, all in
integer minor units so the sums are exact. Create, update and delete each
write the transaction document first and then shift the affected
wallet(s) with a single atomic ``$inc``; a crash between the two leaves
balance drift that `reconcile` repairs, never an orphaned balance change
without its transaction.

Inside one process the steps of an operation are serialized per
transaction, wallet and category id (see `locks.KeyedLocks`). Across
processes only the individual ``$inc`` is atomic.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING

from database import CATEGORIES, TRANSACTIONS, WALLETS, Store
from errors import NotFound
from locks import KeyedLocks, category_key, tx_key, wallet_key
from resolver import IdentifierResolver
from schemas import TransactionIn, TransactionUpdate, parse_input
from serialization import (
    from_minor,
    is_object_id,
    month_range,
    object_id,
    parse_datetime,
    serialize,
    to_minor,
    utc_now,
)

logger = logging.getLogger(__name__)


def signed_delta(amount: int, tx_type: str) -> int:
    return amount if tx_type == "income" else -amount


class TransactionLifecycle:
    def __init__(self, store: Store, resolver: IdentifierResolver, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.resolver = resolver
        self.locks = locks or KeyedLocks()

    # -----------------------------
    # Reads
    # -----------------------------
    def list(
        self,
        wallet_id: Optional[str] = None,
        category_id: Optional[str] = None,
        tx_type: Optional[str] = None,
        month: Optional[str] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if wallet_id:
            query["walletId"] = wallet_id
        if category_id:
            query["categoryId"] = category_id
        if tx_type:
            query["type"] = tx_type
        if month:
            start, next_month = month_range(month)
            query["date"] = {"$gte": start, "$lt": next_month}
        docs = self.store.find(
            TRANSACTIONS, query, sort=[("date", DESCENDING), ("createdAt", DESCENDING)], limit=limit
        )
        return [serialize(d) for d in docs]

    def get(self, tx_id: str) -> Dict[str, Any]:
        return serialize(self._fetch(object_id(tx_id, "transaction ID")))

    # -----------------------------
    # Mutations
    # -----------------------------
    def create(self, data, include_names: bool = False) -> Dict[str, Any]:
        payload = parse_input(TransactionIn, data)

        self._require_if_id(WALLETS, payload.walletId)
        self._require_if_id(CATEGORIES, payload.categoryId)
        category_id = self.resolver.resolve_category(payload.categoryId, payload.type)
        wallet_id = self.resolver.resolve_wallet(payload.walletId)

        amount = to_minor(payload.amount)
        now = utc_now()
        doc = {
            "_id": ObjectId(),
            "amount": amount,
            "description": payload.description,
            "type": payload.type,
            "categoryId": category_id,
            "walletId": wallet_id,
            "date": parse_datetime(payload.date) if payload.date else now,
            "status": payload.status,
            "createdAt": now,
            "updatedAt": now,
        }
        with self.locks.hold(category_key(category_id), wallet_key(wallet_id)):
            # a wallet or category deleted since the first check must not be referenced
            self._require_if_id(WALLETS, wallet_id)
            self._require_if_id(CATEGORIES, category_id)
            self.store.insert_one(TRANSACTIONS, doc)
            self._shift(wallet_id, signed_delta(amount, payload.type), doc["_id"])

        out = serialize(doc)
        if include_names:
            out.update(self._names(category_id, wallet_id))
        return out

    def update(self, tx_id: str, data) -> Dict[str, Any]:
        oid = object_id(tx_id, "transaction ID")
        patch = parse_input(TransactionUpdate, data)
        # null means "leave as is"
        fields = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
        if "amount" in fields:
            fields["amount"] = to_minor(fields["amount"])

        with self.locks.hold(tx_key(oid)):
            existing = self._fetch(oid)
            new_type = fields.get("type", existing["type"])

            if "walletId" in fields:
                self._require_if_id(WALLETS, fields["walletId"])
            if "categoryId" in fields:
                self._require_if_id(CATEGORIES, fields["categoryId"])
                fields["categoryId"] = self.resolver.resolve_category(fields["categoryId"], new_type)
            if "walletId" in fields:
                fields["walletId"] = self.resolver.resolve_wallet(fields["walletId"])
            if "date" in fields:
                fields["date"] = parse_datetime(fields["date"])

            old_wallet = existing.get("walletId")
            new_wallet = fields.get("walletId", old_wallet)
            old_amount = existing.get("amount", 0)
            new_amount = fields.get("amount", old_amount)
            old_delta = signed_delta(old_amount, existing["type"])
            new_delta = signed_delta(new_amount, new_type)
            changed = new_wallet != old_wallet or new_amount != old_amount or new_type != existing["type"]

            fields["updatedAt"] = utc_now()
            keys = [wallet_key(old_wallet), wallet_key(new_wallet), category_key(fields.get("categoryId"))]
            with self.locks.hold(*keys):
                if new_wallet != old_wallet:
                    self._require_if_id(WALLETS, new_wallet)
                if "categoryId" in fields:
                    self._require_if_id(CATEGORIES, fields["categoryId"])
                self.store.update_one(TRANSACTIONS, {"_id": oid}, set=fields)
                if changed:
                    if new_wallet == old_wallet:
                        self._shift(old_wallet, new_delta - old_delta, oid)
                    else:
                        self._shift(old_wallet, -old_delta, oid)
                        self._shift(new_wallet, new_delta, oid)

            return serialize(self._fetch(oid))

    def delete(self, tx_id: str) -> None:
        oid = object_id(tx_id, "transaction ID")
        with self.locks.hold(tx_key(oid)):
            existing = self._fetch(oid)
            wallet_id = existing.get("walletId")
            with self.locks.hold(wallet_key(wallet_id)):
                if self.store.delete_one(TRANSACTIONS, {"_id": oid}):
                    self._shift(wallet_id, -signed_delta(existing.get("amount", 0), existing["type"]), oid)

    def reconcile(self, wallet_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rewrite wallet balances that drifted from their transactions.

        Returns one entry per corrected wallet, amounts in major units.
        """
        if wallet_id:
            wallet_ids = [str(self._fetch_wallet(wallet_id)["_id"])]
        else:
            wallet_ids = [str(w["_id"]) for w in self.store.find(WALLETS, {})]

        corrected = []
        for wid in wallet_ids:
            with self.locks.hold(wallet_key(wid)):
                wallet = self.store.find_one(WALLETS, {"_id": ObjectId(wid)})
                if wallet is None:
                    continue
                txs = self.store.find(TRANSACTIONS, {"walletId": wid})
                expected = wallet.get("openingBalance", 0) + sum(
                    signed_delta(t.get("amount", 0), t["type"]) for t in txs
                )
                stored = wallet.get("balance", 0)
                if stored == expected:
                    continue
                self.store.update_one(
                    WALLETS, {"_id": wallet["_id"]}, set={"balance": expected, "updatedAt": utc_now()}
                )
                logger.warning("reconciled wallet %s: stored=%s expected=%s", wid, stored, expected)
                corrected.append({
                    "walletId": wid,
                    "stored": from_minor(stored),
                    "expected": from_minor(expected),
                    "drift": from_minor(stored - expected),
                })
        return corrected

    # -----------------------------
    # Helpers
    # -----------------------------
    def _fetch(self, oid: ObjectId) -> Dict[str, Any]:
        doc = self.store.find_one(TRANSACTIONS, {"_id": oid})
        if not doc:
            raise NotFound("Transaction not found")
        return doc

    def _fetch_wallet(self, wallet_id: str) -> Dict[str, Any]:
        doc = self.store.find_one(WALLETS, {"_id": object_id(wallet_id, "wallet ID")})
        if not doc:
            raise NotFound("Wallet not found")
        return doc

    def _require_if_id(self, kind: str, value: Optional[str]) -> None:
        if value is None or not is_object_id(value.strip()):
            return
        if not self.store.find_one(kind, {"_id": ObjectId(value.strip())}):
            raise NotFound("Wallet not found" if kind == WALLETS else "Category not found")

    def _shift(self, wallet_id: Optional[str], delta: int, tx_id) -> None:
        if not wallet_id or delta == 0:
            return
        matched = self.store.update_one(
            WALLETS, {"_id": ObjectId(wallet_id)}, set={"updatedAt": utc_now()}, inc={"balance": delta}
        )
        if matched:
            logger.info("wallet %s balance %+d minor units (transaction %s)", wallet_id, delta, tx_id)
        else:
            logger.warning("wallet %s missing while applying %+d for transaction %s", wallet_id, delta, tx_id)

    def _names(self, category_id: Optional[str], wallet_id: Optional[str]) -> Dict[str, Optional[str]]:
        names: Dict[str, Optional[str]] = {"categoryName": None, "walletName": None}
        if category_id:
            category = self.store.find_one(CATEGORIES, {"_id": ObjectId(category_id)})
            names["categoryName"] = category.get("name") if category else None
        if wallet_id:
            wallet = self.store.find_one(WALLETS, {"_id": ObjectId(wallet_id)})
            names["walletName"] = wallet.get("name") if wallet else None
        return names

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import TRANSACTIONS, WALLETS, Store
from entities import BudgetService, CategoryService, KeywordMappingService, WalletService
from lifecycle import TransactionLifecycle, signed_delta
from locks import KeyedLocks
from resolver import IdentifierResolver
from serialization import from_minor


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient()["ledger-test"])
    s.ensure_indexes()
    return s


@pytest.fixture
def resolver(store):
    return IdentifierResolver(store)


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def lifecycle(store, resolver, locks):
    return TransactionLifecycle(store, resolver, locks)


@pytest.fixture
def wallets(store, locks):
    return WalletService(store, locks)


@pytest.fixture
def categories(store, locks):
    return CategoryService(store, locks=locks)


@pytest.fixture
def keywords(store):
    return KeywordMappingService(store)


@pytest.fixture
def budgets(store, locks):
    return BudgetService(store, locks)


@pytest.fixture
def client(store):
    from main import create_app

    app = create_app(settings=Settings(log_json=False), store=store)
    with TestClient(app) as c:
        yield c


def wallet_balance(store, wallet_id):
    from bson import ObjectId

    return from_minor(store.find_one(WALLETS, {"_id": ObjectId(wallet_id)})["balance"])


def assert_balances_consistent(store):
    """Every wallet balance equals its opening balance plus its transactions, exactly."""
    for w in store.find(WALLETS, {}):
        txs = store.find(TRANSACTIONS, {"walletId": str(w["_id"])})
        expected = w.get("openingBalance", 0) + sum(signed_delta(t["amount"], t["type"]) for t in txs)
        assert isinstance(w["balance"], int), w["name"]
        assert w["balance"] == expected, w["name"]

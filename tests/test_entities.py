import pytest
from bson import ObjectId

from conftest import assert_balances_consistent, wallet_balance
from database import BUDGETS, CATEGORIES, KEYWORD_MAPPINGS
from errors import Conflict, NotFound, ValidationError


class TestWallets:
    def test_create_records_opening_balance(self, wallets):
        w = wallets.create({"name": "  Savings ", "balance": 250, "currency": "usd"})
        assert w["name"] == "Savings"
        assert w["balance"] == 250
        assert w["openingBalance"] == 250
        assert w["currency"] == "USD"

    def test_name_limits(self, wallets):
        with pytest.raises(ValidationError):
            wallets.create({"name": ""})
        with pytest.raises(ValidationError):
            wallets.create({"name": "x" * 51})

    def test_duplicate_name_conflicts(self, wallets):
        wallets.create({"name": "Cash"})
        with pytest.raises(Conflict) as exc:
            wallets.create({"name": "Cash"})
        assert exc.value.status_code == 409

    def test_rename_onto_existing_name_conflicts(self, wallets):
        wallets.create({"name": "Cash"})
        bank = wallets.create({"name": "Bank"})
        with pytest.raises(Conflict):
            wallets.update(bank["id"], {"name": "Cash"})
        assert wallets.update(bank["id"], {"name": "Bank"})["name"] == "Bank"

    def test_balance_correction_keeps_invariant(self, wallets, lifecycle, store):
        wid = wallets.create({"name": "Cash", "balance": 100})["id"]
        lifecycle.create({"amount": 30, "type": "expense", "description": "Fuel", "walletId": wid})
        updated = wallets.update(wid, {"balance": 90})
        assert updated["balance"] == 90
        assert updated["openingBalance"] == 120
        assert_balances_consistent(store)
        assert lifecycle.reconcile() == []

    def test_only_one_default_wallet(self, wallets):
        a = wallets.create({"name": "A", "isDefault": True})
        b = wallets.create({"name": "B", "isDefault": True})
        assert wallets.get(a["id"])["isDefault"] is False
        assert wallets.get(b["id"])["isDefault"] is True

    def test_list_in_creation_order(self, wallets):
        for name in ("One", "Two", "Three"):
            wallets.create({"name": name})
        assert [w["name"] for w in wallets.list()] == ["One", "Two", "Three"]

    def test_missing_wallet(self, wallets):
        with pytest.raises(NotFound):
            wallets.get(str(ObjectId()))
        with pytest.raises(NotFound):
            wallets.delete(str(ObjectId()))

    def test_unreferenced_wallet_is_deleted(self, wallets, lifecycle):
        wid = wallets.create({"name": "Old"})["id"]
        tx = lifecycle.create({"amount": 5, "type": "income", "description": "x", "walletId": wid})
        lifecycle.delete(tx["id"])
        wallets.delete(wid)
        assert wallets.list() == []


class TestCategories:
    def test_create_defaults(self, categories):
        c = categories.create({"name": "Food", "defaultType": "expense"})
        assert c["isDefault"] is False
        assert c["color"] == "#3B82F6"

    def test_bad_color_is_rejected(self, categories):
        with pytest.raises(ValidationError) as exc:
            categories.create({"name": "Food", "defaultType": "expense", "color": "red"})
        assert exc.value.errors[0]["field"] == "color"

    def test_update_is_partial(self, categories):
        c = categories.create({"name": "Food", "defaultType": "expense", "icon": "fork"})
        updated = categories.update(c["id"], {"color": "#FF0000"})
        assert updated["color"] == "#FF0000"
        assert updated["icon"] == "fork"
        assert updated["name"] == "Food"

    def test_referenced_category_cannot_be_deleted(self, categories, lifecycle, store):
        c = categories.create({"name": "Food", "defaultType": "expense"})
        lifecycle.create({"amount": 9, "type": "expense", "description": "Pho", "categoryId": c["id"]})
        with pytest.raises(Conflict) as exc:
            categories.delete(c["id"])
        assert exc.value.status_code == 400
        assert store.count_documents(CATEGORIES, {"_id": ObjectId(c["id"])}) == 1

    def test_delete_drops_keyword_mappings(self, categories, keywords, store):
        c = categories.create({"name": "Food", "defaultType": "expense"})
        keywords.create({"keyword": "pho", "categoryId": c["id"]})
        categories.delete(c["id"])
        assert store.count_documents(KEYWORD_MAPPINGS) == 0


class TestKeywordMappings:
    def test_keywords_are_lowercased_and_unique(self, categories, keywords):
        c = categories.create({"name": "Food", "defaultType": "expense"})
        m = keywords.create({"keyword": "Pizza", "categoryId": c["id"]})
        assert m["keyword"] == "pizza"
        with pytest.raises(Conflict):
            keywords.create({"keyword": "PIZZA", "categoryId": c["id"]})

    def test_mapping_requires_live_category(self, keywords):
        with pytest.raises(NotFound):
            keywords.create({"keyword": "pizza", "categoryId": str(ObjectId())})

    def test_suggest_prefers_longest_keyword(self, categories, keywords):
        food = categories.create({"name": "Food", "defaultType": "expense"})
        transport = categories.create({"name": "Transport", "defaultType": "expense"})
        keywords.create({"keyword": "coffee", "categoryId": food["id"]})
        keywords.create({"keyword": "grab coffee", "categoryId": transport["id"]})

        assert keywords.suggest("Morning COFFEE")["name"] == "Food"
        assert keywords.suggest("grab coffee to office")["name"] == "Transport"
        assert keywords.suggest("rent") is None

    def test_delete(self, categories, keywords):
        c = categories.create({"name": "Food", "defaultType": "expense"})
        m = keywords.create({"keyword": "rice", "categoryId": c["id"]})
        keywords.delete(m["id"])
        assert keywords.list() == []
        with pytest.raises(NotFound):
            keywords.delete(m["id"])


def test_wallet_balance_helper_matches_service(wallets, store):
    wid = wallets.create({"name": "Cash", "balance": 3})["id"]
    assert wallet_balance(store, wid) == wallets.get(wid)["balance"]


class TestBudgets:
    @pytest.fixture
    def food(self, categories):
        return categories.create({"name": "Food", "defaultType": "expense"})

    def _spend(self, lifecycle, amount, category_id=None, day="2024-05-10"):
        lifecycle.create({
            "amount": amount,
            "type": "expense",
            "description": "spend",
            "categoryId": category_id,
            "date": f"{day}T12:00:00",
        })

    def test_create_reports_spending(self, budgets, lifecycle, food):
        self._spend(lifecycle, 30.5, food["id"])
        self._spend(lifecycle, 50, food["id"], day="2024-06-01")
        b = budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 100})
        assert b["amount"] == 100
        assert b["spent"] == 30.5
        assert b["remaining"] == 69.5
        assert b["percentage"] == 30.5
        assert b["isOverBudget"] is False
        assert b["alertTriggered"] is False

    def test_only_expense_categories(self, budgets, categories, store):
        salary = categories.create({"name": "Salary", "defaultType": "income"})
        with pytest.raises(ValidationError) as exc:
            budgets.create({"categoryId": salary["id"], "month": "2024-05", "amount": 100})
        assert exc.value.message == "Budget only allowed for expense categories"
        assert exc.value.status_code == 400
        with pytest.raises(NotFound):
            budgets.create({"categoryId": str(ObjectId()), "month": "2024-05", "amount": 100})
        assert store.count_documents(BUDGETS) == 0

    def test_bad_month_is_rejected(self, budgets, food):
        with pytest.raises(ValidationError):
            budgets.create({"categoryId": food["id"], "month": "May 2024", "amount": 100})

    def test_overall_budget_counts_every_expense(self, budgets, categories, lifecycle, food):
        rent = categories.create({"name": "Rent", "defaultType": "expense"})
        self._spend(lifecycle, 60, food["id"])
        self._spend(lifecycle, 45, rent["id"])
        lifecycle.create({"amount": 500, "type": "income", "description": "pay", "date": "2024-05-02T08:00:00"})
        b = budgets.create({"month": "2024-05", "amount": 100})
        assert b["categoryId"] is None
        assert b["spent"] == 105
        assert b["remaining"] == -5
        assert b["isOverBudget"] is True
        assert b["alertTriggered"] is True

    def test_one_budget_per_category_and_month(self, budgets, food):
        budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 100})
        with pytest.raises(Conflict):
            budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 200})
        budgets.create({"categoryId": food["id"], "month": "2024-06", "amount": 200})

    def test_update_and_list_by_month(self, budgets, lifecycle, food):
        self._spend(lifecycle, 85, food["id"])
        b = budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 200})
        updated = budgets.update(b["id"], {"amount": 100})
        assert updated["amount"] == 100
        assert updated["percentage"] == 85.0
        assert updated["alertTriggered"] is True
        assert updated["isOverBudget"] is False

        budgets.create({"categoryId": food["id"], "month": "2024-06", "amount": 50})
        assert [x["month"] for x in budgets.list()] == ["2024-05", "2024-06"]
        assert [x["id"] for x in budgets.list("2024-05")] == [b["id"]]

    def test_update_cannot_move_onto_taken_month(self, budgets, food):
        budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 100})
        june = budgets.create({"categoryId": food["id"], "month": "2024-06", "amount": 100})
        with pytest.raises(Conflict):
            budgets.update(june["id"], {"month": "2024-05"})

    def test_delete(self, budgets, food):
        b = budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 100})
        budgets.delete(b["id"])
        assert budgets.list() == []
        with pytest.raises(NotFound):
            budgets.get(b["id"])

    def test_budgeted_category_cannot_be_deleted(self, budgets, categories, store, food):
        b = budgets.create({"categoryId": food["id"], "month": "2024-05", "amount": 100})
        with pytest.raises(Conflict) as exc:
            categories.delete(food["id"])
        assert exc.value.status_code == 400
        assert "budgets" in exc.value.message
        assert store.count_documents(CATEGORIES, {"_id": ObjectId(food["id"])}) == 1

        budgets.delete(b["id"])
        categories.delete(food["id"])
        assert categories.list() == []

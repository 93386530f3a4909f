from typing import Any, Dict, List, Optional

from database import BUDGETS, CATEGORIES, TRANSACTIONS, WALLETS, Store
from serialization import from_minor, month_range, serialize

# share of a budget spent at which it is flagged
ALERT_THRESHOLD = 0.8


def _month_query(month: Optional[str]) -> Dict[str, Any]:
    if not month:
        return {}
    start, next_month = month_range(month)
    return {"date": {"$gte": start, "$lt": next_month}}


def budget_status(store: Store, budget: Dict[str, Any], txs: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """A budget with what was spent against it in its month.

    `txs` are the raw transaction documents of that month; they are read
    from the store when not given. A budget without a category counts every
    expense.
    """
    if txs is None:
        txs = store.get_documents(TRANSACTIONS, _month_query(budget["month"]))
    category_id = budget.get("categoryId")
    spent = sum(
        t.get("amount", 0)
        for t in txs
        if t["type"] == "expense" and (category_id is None or t.get("categoryId") == category_id)
    )
    limit = budget.get("amount", 0)
    if limit:
        percentage = round(spent * 100 / limit, 1)
    else:
        percentage = 100.0 if spent else 0.0

    out = serialize(budget)
    out.update({
        "spent": from_minor(spent),
        "remaining": from_minor(limit - spent),
        "percentage": percentage,
        "isOverBudget": spent > limit,
        "alertTriggered": percentage >= ALERT_THRESHOLD * 100,
    })
    return out


def summary(store: Store, month: Optional[str] = None) -> Dict[str, Any]:
    wallets = store.get_documents(WALLETS)
    categories = [serialize(c) for c in store.get_documents(CATEGORIES)]
    txs = store.get_documents(TRANSACTIONS, _month_query(month), sort=[("date", -1), ("createdAt", -1)])

    # sums stay in integer minor units until the very end
    total_income = sum(t.get("amount", 0) for t in txs if t["type"] == "income")
    total_expense = sum(t.get("amount", 0) for t in txs if t["type"] == "expense")

    # Wallet balances are the cached running totals, independent of the month filter
    wallet_balances = {}
    for w in wallets:
        wallet_balances[str(w["_id"])] = {
            "name": w["name"],
            "currency": w.get("currency"),
            "balance": from_minor(w.get("balance", 0)),
        }
    overall_balance = from_minor(sum(w.get("balance", 0) for w in wallets))

    budgets = []
    if month:
        budgets = [budget_status(store, b, txs) for b in store.get_documents(BUDGETS, {"month": month})]

    return {
        "month": month,
        "total_income": from_minor(total_income),
        "total_expense": from_minor(total_expense),
        "net": from_minor(total_income - total_expense),
        "overall_balance": overall_balance,
        "wallets": wallet_balances,
        "categories": categories,
        "budgets": budgets,
        "transactions": [serialize(t) for t in txs[:50]],  # limit to recent 50 for dashboard
    }

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

import reports
from config import Settings, get_settings
from database import CATEGORIES, TRANSACTIONS, WALLETS, Store
from entities import BudgetService, CategoryService, KeywordMappingService, WalletService
from errors import FinanceError, UpstreamFailure, ValidationError
from lifecycle import TransactionLifecycle
from locks import KeyedLocks
from logging_config import configure_logging
from resolver import IdentifierResolver
from schemas import (
    MONTH,
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    KeywordMappingIn,
    SuggestCategoryIn,
    TransactionIn,
    TransactionUpdate,
    TypeLiteral,
    WalletIn,
    WalletUpdate,
)

logger = logging.getLogger(__name__)
request_log = logging.getLogger("req")


class Ledger:
    """Services sharing one store and one lock registry."""

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        locks = KeyedLocks()
        self.resolver = IdentifierResolver(
            store,
            default_wallet_name=settings.default_wallet_name,
            default_category_color=settings.default_category_color,
        )
        self.transactions = TransactionLifecycle(store, self.resolver, locks)
        self.wallets = WalletService(store, locks)
        self.categories = CategoryService(store, settings.default_category_color, locks)
        self.keywords = KeywordMappingService(store)
        self.budgets = BudgetService(store, locks)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        payload = {
            "rid": rid,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": int((time.perf_counter() - t0) * 1000),
        }
        request_log.info(json.dumps(payload, ensure_ascii=False))
        return response


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    store = store or Store.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            store.ensure_indexes()
        except UpstreamFailure:
            logger.warning("could not create indexes; name uniqueness is best-effort until the store is reachable")
        yield
        store.close()

    app = FastAPI(title="Personal Finance Ledger API", lifespan=lifespan)
    app.state.ledger = Ledger(store, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(FinanceError)
    async def finance_error_handler(request: Request, exc: FinanceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError.from_pydantic(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # -----------------------------
    # Base routes
    # -----------------------------
    @app.get("/")
    def root():
        return {"message": "Personal Finance Ledger API is running"}

    @app.get("/api/health")
    def health(ledger: Ledger = Depends(get_ledger)):
        t0 = time.perf_counter()
        try:
            collections = ledger.store.ping()
            counts = {name: ledger.store.count_documents(name) for name in (TRANSACTIONS, CATEGORIES, WALLETS)}
        except UpstreamFailure as e:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": {"status": "disconnected", "error": e.message}},
                headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
            )
        return JSONResponse(
            content={
                "status": "healthy",
                "responseTime": f"{int((time.perf_counter() - t0) * 1000)}ms",
                "database": {"status": "connected", "collections": collections, "documentCounts": counts},
            },
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    # -----------------------------
    # Wallets
    # -----------------------------
    @app.get("/api/wallets")
    def list_wallets(ledger: Ledger = Depends(get_ledger)):
        return ledger.wallets.list()

    @app.post("/api/wallets", status_code=201)
    def create_wallet(payload: WalletIn, ledger: Ledger = Depends(get_ledger)):
        return ledger.wallets.create(payload)

    @app.post("/api/wallets/reconcile")
    def reconcile_wallets(walletId: Optional[str] = None, ledger: Ledger = Depends(get_ledger)):
        return {"corrected": ledger.transactions.reconcile(walletId)}

    @app.get("/api/wallets/{wallet_id}")
    def get_wallet(wallet_id: str, ledger: Ledger = Depends(get_ledger)):
        return ledger.wallets.get(wallet_id)

    @app.put("/api/wallets/{wallet_id}")
    def update_wallet(wallet_id: str, payload: WalletUpdate, ledger: Ledger = Depends(get_ledger)):
        return ledger.wallets.update(wallet_id, payload.model_dump(exclude_unset=True))

    @app.delete("/api/wallets/{wallet_id}")
    def delete_wallet(wallet_id: str, ledger: Ledger = Depends(get_ledger)):
        ledger.wallets.delete(wallet_id)
        return {"message": "Wallet deleted successfully"}

    # -----------------------------
    # Categories
    # -----------------------------
    @app.get("/api/categories")
    def list_categories(ledger: Ledger = Depends(get_ledger)):
        return ledger.categories.list()

    @app.post("/api/categories", status_code=201)
    def create_category(payload: CategoryIn, ledger: Ledger = Depends(get_ledger)):
        return ledger.categories.create(payload)

    @app.get("/api/categories/{category_id}")
    def get_category(category_id: str, ledger: Ledger = Depends(get_ledger)):
        return ledger.categories.get(category_id)

    @app.put("/api/categories/{category_id}")
    def update_category(category_id: str, payload: CategoryUpdate, ledger: Ledger = Depends(get_ledger)):
        return ledger.categories.update(category_id, payload.model_dump(exclude_unset=True))

    @app.delete("/api/categories/{category_id}")
    def delete_category(category_id: str, ledger: Ledger = Depends(get_ledger)):
        ledger.categories.delete(category_id)
        return {"message": "Category deleted successfully"}

    # -----------------------------
    # Transactions
    # -----------------------------
    @app.get("/api/transactions")
    def list_transactions(
        walletId: Optional[str] = None,
        categoryId: Optional[str] = None,
        type: Optional[TypeLiteral] = None,
        month: Optional[str] = Query(None, pattern=MONTH),
        ledger: Ledger = Depends(get_ledger),
    ):
        return ledger.transactions.list(wallet_id=walletId, category_id=categoryId, tx_type=type, month=month)

    @app.post("/api/transactions", status_code=201)
    def create_transaction(payload: TransactionIn, ledger: Ledger = Depends(get_ledger)):
        return ledger.transactions.create(payload)

    @app.get("/api/transactions/{tx_id}")
    def get_transaction(tx_id: str, ledger: Ledger = Depends(get_ledger)):
        return ledger.transactions.get(tx_id)

    @app.put("/api/transactions/{tx_id}")
    def update_transaction(tx_id: str, payload: TransactionUpdate, ledger: Ledger = Depends(get_ledger)):
        return ledger.transactions.update(tx_id, payload.model_dump(exclude_unset=True))

    @app.delete("/api/transactions/{tx_id}")
    def delete_transaction(tx_id: str, ledger: Ledger = Depends(get_ledger)):
        ledger.transactions.delete(tx_id)
        return {"message": "Transaction deleted successfully"}

    # -----------------------------
    # Keyword mappings and assistant helpers
    # -----------------------------
    @app.get("/api/keyword-mappings")
    def list_keyword_mappings(ledger: Ledger = Depends(get_ledger)):
        return ledger.keywords.list()

    @app.post("/api/keyword-mappings", status_code=201)
    def create_keyword_mapping(payload: KeywordMappingIn, ledger: Ledger = Depends(get_ledger)):
        return ledger.keywords.create(payload)

    @app.delete("/api/keyword-mappings/{mapping_id}")
    def delete_keyword_mapping(mapping_id: str, ledger: Ledger = Depends(get_ledger)):
        ledger.keywords.delete(mapping_id)
        return {"message": "Keyword mapping deleted successfully"}

    @app.post("/api/ai/suggest-category")
    def suggest_category(payload: SuggestCategoryIn, ledger: Ledger = Depends(get_ledger)):
        return {"suggestedCategory": ledger.keywords.suggest(payload.description)}

    @app.post("/api/ai/create-transaction", status_code=201)
    def ai_create_transaction(payload: TransactionIn, ledger: Ledger = Depends(get_ledger)):
        if not payload.categoryId:
            suggested = ledger.keywords.suggest(payload.description)
            if suggested:
                payload = payload.model_copy(update={"categoryId": suggested["id"]})
        return ledger.transactions.create(payload, include_names=True)

    # -----------------------------
    # Budgets
    # -----------------------------
    @app.get("/api/budgets")
    def list_budgets(month: Optional[str] = Query(None, pattern=MONTH), ledger: Ledger = Depends(get_ledger)):
        return ledger.budgets.list(month)

    @app.post("/api/budgets", status_code=201)
    def create_budget(payload: BudgetIn, ledger: Ledger = Depends(get_ledger)):
        return ledger.budgets.create(payload)

    @app.get("/api/budgets/{budget_id}")
    def get_budget(budget_id: str, ledger: Ledger = Depends(get_ledger)):
        return ledger.budgets.get(budget_id)

    @app.put("/api/budgets/{budget_id}")
    def update_budget(budget_id: str, payload: BudgetUpdate, ledger: Ledger = Depends(get_ledger)):
        return ledger.budgets.update(budget_id, payload.model_dump(exclude_unset=True))

    @app.delete("/api/budgets/{budget_id}")
    def delete_budget(budget_id: str, ledger: Ledger = Depends(get_ledger)):
        ledger.budgets.delete(budget_id)
        return {"message": "Budget deleted successfully"}

    # -----------------------------
    # Summary
    # -----------------------------
    @app.get("/api/summary")
    def summary(month: Optional[str] = Query(None, pattern=MONTH), ledger: Ledger = Depends(get_ledger)):
        return reports.summary(ledger.store, month)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)

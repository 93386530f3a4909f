"""
Database Schemas for the Personal Finance Ledger

Each collection has a create model (validated input for a new document) and,
where documents can be edited, an update model whose fields are all optional.
Collection names: wallets, categories, transactions, keywordMappings, budgets.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

TypeLiteral = Literal["income", "expense"]
StatusLiteral = Literal["pending", "completed", "cancelled"]

HEX_COLOR = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"
MONTH = r"^\d{4}-\d{2}$"


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# -----------------------------
# Wallets
# -----------------------------
class WalletIn(_Input):
    name: str = Field(..., min_length=1, max_length=50, description="Wallet name, e.g. Cash, Bank")
    balance: float = Field(0, ge=0, allow_inf_nan=False, description="Opening balance")
    currency: str = Field("VND", min_length=3, max_length=3, description="ISO currency code")
    isDefault: bool = Field(False, description="Whether this is the user's main wallet")


class WalletUpdate(_Input):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    balance: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Corrected balance")
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    isDefault: Optional[bool] = None


# -----------------------------
# Categories
# -----------------------------
class CategoryIn(_Input):
    name: str = Field(..., min_length=1, max_length=50, description="Category name, e.g. Food, Salary")
    defaultType: TypeLiteral = Field(..., description="Income or Expense")
    color: Optional[str] = Field(None, pattern=HEX_COLOR, description="Hex color for UI tag")
    icon: Optional[str] = Field(None, max_length=50)


class CategoryUpdate(_Input):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    defaultType: Optional[TypeLiteral] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    icon: Optional[str] = Field(None, max_length=50)


# -----------------------------
# Transactions
# -----------------------------
class TransactionIn(_Input):
    amount: float = Field(..., ge=0, allow_inf_nan=False, description="Non-negative amount")
    description: str = Field(..., min_length=1, max_length=200)
    type: TypeLiteral = Field(..., description="Income or Expense")
    categoryId: Optional[str] = Field(None, description="Category id or category name")
    walletId: Optional[str] = Field(None, description="Wallet id or wallet name")
    date: Optional[datetime] = Field(None, description="Defaults to the creation time")
    status: StatusLiteral = "completed"


class TransactionUpdate(_Input):
    amount: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[TypeLiteral] = None
    categoryId: Optional[str] = None
    walletId: Optional[str] = None
    date: Optional[datetime] = None
    status: Optional[StatusLiteral] = None


# -----------------------------
# Keyword mappings
# -----------------------------
class KeywordMappingIn(_Input):
    keyword: str = Field(..., min_length=1, max_length=100)
    categoryId: str = Field(..., description="Category the keyword classifies into")


class SuggestCategoryIn(_Input):
    description: str = Field(..., min_length=1)


# -----------------------------
# Budgets
# -----------------------------
class BudgetIn(_Input):
    categoryId: Optional[str] = Field(None, description="Expense category; null for an overall budget")
    month: str = Field(..., pattern=MONTH, description="YYYY-MM")
    amount: float = Field(..., ge=0, allow_inf_nan=False, description="Budget amount for the month")


class BudgetUpdate(_Input):
    categoryId: Optional[str] = None
    month: Optional[str] = Field(None, pattern=MONTH)
    amount: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


def parse_input(model, data):
    """Validate a plain field mapping against `model`, raising ledger errors."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

"""
Error kinds raised by the ledger services.

Each error carries the HTTP status the API layer answers with, so route
handlers never have to translate them one by one.
"""

from typing import Any, Dict, List, Optional


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message}


class ValidationError(FinanceError):
    """Malformed or out-of-range input. Raised before any store write."""

    status_code = 400

    def __init__(self, message: str = "Invalid data", errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        errors = []
        for err in exc.errors():
            field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            errors.append({"field": field, "message": err.get("msg", "invalid value")})
        return cls("Invalid data", errors)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["errors"] = self.errors
        return d


class NotFound(FinanceError):
    status_code = 404


class Conflict(FinanceError):
    """Duplicate name (409) or deletion blocked by references (400)."""

    status_code = 409


class UpstreamFailure(FinanceError):
    """The entity store is unreachable or answered with an error."""

    status_code = 500

"""
Ledger exceptions and the JSON error handlers that expose them.

Every error raised by the ledger core derives from LedgerError. The three
families map onto HTTP statuses: ValidationError (422) for input that can
never be posted, StateConflictError (409) for requests that clash with the
current state, and NotFoundError (404).
"""
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base ledger exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


# ==================== VALIDATION ====================

class ValidationError(LedgerError):
    def __init__(self, message: str, error_code: str = "ERR_VALIDATION", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class EmptyEntry(ValidationError):
    """Raised when a journal entry has fewer than two lines."""

    def __init__(self, line_count: int):
        super().__init__(
            f"A journal entry needs at least 2 lines, got {line_count}",
            error_code="ERR_EMPTY_ENTRY",
            details={"line_count": line_count}
        )


class InvalidAccount(ValidationError):
    """Raised when a line references a missing or inactive account."""

    def __init__(self, account_id: Any, reason: str = "not found"):
        super().__init__(
            f"Account {account_id} is {reason}",
            error_code="ERR_INVALID_ACCOUNT",
            details={"account_id": account_id, "reason": reason}
        )


class MalformedLine(ValidationError):
    """Raised when a line is not exactly one positive debit or credit."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(
            f"Line {line_number}: {reason}",
            error_code="ERR_MALFORMED_LINE",
            details={"line_number": line_number, "reason": reason}
        )


class UnbalancedEntry(ValidationError):
    def __init__(self, debit_cents: int, credit_cents: int):
        super().__init__(
            f"Debits ({debit_cents}) must equal credits ({credit_cents})",
            error_code="ERR_UNBALANCED_ENTRY",
            details={"debit_cents": debit_cents, "credit_cents": credit_cents}
        )


class ReservedIdempotencyKey(ValidationError):
    """Raised when a caller submits a key from a namespace the ledger assigns itself."""

    def __init__(self, idempotency_key: str):
        super().__init__(
            f"Idempotency key '{idempotency_key}' uses a reserved prefix",
            error_code="ERR_RESERVED_KEY",
            details={"idempotency_key": idempotency_key}
        )


class InvalidNormalBalance(ValidationError):
    def __init__(self, account_type: str, normal_balance: str):
        super().__init__(
            f"{account_type} accounts cannot carry a {normal_balance} normal balance",
            error_code="ERR_INVALID_NORMAL_BALANCE",
            details={"type": account_type, "normal_balance": normal_balance}
        )


class InvalidParent(ValidationError):
    def __init__(self, parent_id: Any, reason: str):
        super().__init__(
            f"Invalid parent account {parent_id}: {reason}",
            error_code="ERR_INVALID_PARENT",
            details={"parent_id": parent_id, "reason": reason}
        )


class InvalidPayrollRecord(ValidationError):
    def __init__(self, reason: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Invalid payroll record: {reason}",
            error_code="ERR_INVALID_PAYROLL_RECORD",
            details=details
        )


# ==================== STATE CONFLICTS ====================

class StateConflictError(LedgerError):
    def __init__(self, message: str, error_code: str = "ERR_CONFLICT", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class DuplicateCode(StateConflictError):
    def __init__(self, code: str):
        super().__init__(
            f"Account with code '{code}' already exists",
            error_code="ERR_DUPLICATE_CODE",
            details={"code": code}
        )


class AccountInUse(StateConflictError):
    def __init__(self, account_id: int, reason: str):
        super().__init__(
            f"Account {account_id} cannot be deactivated: {reason}",
            error_code="ERR_ACCOUNT_IN_USE",
            details={"account_id": account_id, "reason": reason}
        )


class AlreadyVoided(StateConflictError):
    def __init__(self, entry_id: int):
        super().__init__(
            f"Journal entry {entry_id} is already void",
            error_code="ERR_ALREADY_VOIDED",
            details={"entry_id": entry_id}
        )


class InvalidTransition(StateConflictError):
    """Raised for any payroll batch or record move not on the state graph."""

    def __init__(self, current: str, requested: str, resource: str = "PayrollBatch", resource_id: Any = None):
        super().__init__(
            f"{resource} cannot move from {current} to {requested}",
            error_code="ERR_INVALID_TRANSITION",
            details={"resource": resource, "id": resource_id, "from": current, "to": requested}
        )


# ==================== NOT FOUND ====================

class NotFoundError(LedgerError):
    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# ==================== HANDLERS ====================

async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    logger.warning(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with the same body shape."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code_map.get(exc.status_code, "ERR_UNKNOWN"),
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request body validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {"errors": jsonable_encoder(exc.errors())}
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An unexpected error occurred",
            "details": {}
        }
    )

"""
Ledger Error Taxonomy

Every rejected call surfaces one stable error code. Four categories:

- ValidationError: bad signature, stale or replayed attestation, malformed
  input. Always rejected before any mutation.
- StateConflictError: insufficient balance, lock not in the expected status,
  daily limit exceeded, death clock already started / expired / flushed.
- AuthenticationError: missing, forged, expired or replayed caller token.
- AuthorizationError: caller lacks the required role.

The core never retries and never halts; the worst case is one rejected
transaction.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes."""
    # Validation
    INVALID_ATTESTATION = "INVALID_ATTESTATION"
    STALE_ATTESTATION = "STALE_ATTESTATION"
    REPLAYED_ATTESTATION = "REPLAYED_ATTESTATION"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    MALFORMED_INPUT = "MALFORMED_INPUT"
    INVALID_LOCK_DURATION = "INVALID_LOCK_DURATION"
    
    # State conflict
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_BALANCE_FOR_REMOVAL = "INSUFFICIENT_BALANCE_FOR_REMOVAL"
    INSUFFICIENT_DERIVATIVE = "INSUFFICIENT_DERIVATIVE"
    SUPPLY_CAP_EXCEEDED = "SUPPLY_CAP_EXCEEDED"
    ACCOUNT_NOT_VERIFIED = "ACCOUNT_NOT_VERIFIED"
    ACCOUNT_ALREADY_INACTIVE = "ACCOUNT_ALREADY_INACTIVE"
    ACCOUNT_NOT_DORMANT = "ACCOUNT_NOT_DORMANT"
    LOCK_NOT_FOUND = "LOCK_NOT_FOUND"
    LOCK_NOT_ACTIVE = "LOCK_NOT_ACTIVE"
    LOCK_NOT_MATURE = "LOCK_NOT_MATURE"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    JURISDICTION_NOT_FOUND = "JURISDICTION_NOT_FOUND"
    JURISDICTION_FLUSHED = "JURISDICTION_FLUSHED"
    CLOCK_ALREADY_STARTED = "CLOCK_ALREADY_STARTED"
    CLOCK_NOT_STARTED = "CLOCK_NOT_STARTED"
    CLOCK_EXPIRED = "CLOCK_EXPIRED"
    CLOCK_NOT_EXPIRED = "CLOCK_NOT_EXPIRED"
    ESCROW_NOT_INACTIVE = "ESCROW_NOT_INACTIVE"
    
    # Authentication
    CALLER_TOKEN_REQUIRED = "CALLER_TOKEN_REQUIRED"
    INVALID_CALLER_TOKEN = "INVALID_CALLER_TOKEN"
    EXPIRED_CALLER_TOKEN = "EXPIRED_CALLER_TOKEN"
    REPLAYED_CALLER_TOKEN = "REPLAYED_CALLER_TOKEN"
    
    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"


class LedgerError(Exception):
    """Base class for every rejected ledger call."""
    
    category = "LEDGER_ERROR"
    
    def __init__(
        self,
        code: ErrorCode,
        message: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message or code.value
        self.details = details or {}
        super().__init__(f"{code.value}: {self.message}")
    
    def to_dict(self) -> Dict[str, Any]:
        d = {
            "category": self.category,
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            d["details"] = self.details
        return d


class ValidationError(LedgerError):
    """Input rejected before any mutation."""
    category = "VALIDATION"


class StateConflictError(LedgerError):
    """Call conflicts with current ledger state; no partial effect."""
    category = "STATE_CONFLICT"


class AuthenticationError(LedgerError):
    """Caller identity could not be established from its signed token."""
    category = "AUTHENTICATION"


class AuthorizationError(LedgerError):
    """Caller lacks the required role."""
    category = "AUTHORIZATION"
    
    def __init__(self, caller: str, role: str):
        super().__init__(
            ErrorCode.UNAUTHORIZED,
            f"caller {caller!r} lacks role {role}",
            {"caller": caller, "required_role": role}
        )


def require_positive_amount(amount: Any, field_name: str = "amount") -> int:
    """Validate that an amount is a positive integer of base units."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"{field_name} must be an integer")
    if amount <= 0:
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"{field_name} must be positive")
    return amount


def require_identifier(value: Any, field_name: str) -> str:
    """Validate a non-empty account or caller identifier."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"{field_name} must be a non-empty string")
    if len(value) > 128:
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"{field_name} must not exceed 128 characters")
    return value

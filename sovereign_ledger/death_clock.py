"""
Escrow Death Clock

Every jurisdiction escrow carries a grace period from its first
conversion. A jurisdiction signer can activate it before expiry; an
escrow still INACTIVE at expiry is flushed exactly once, moving its
whole locked balance to the default pool account.

Expiry is evaluated lazily: the core flushes expired escrows touched by
an operation before running it, and `sweep_all_expired` is public.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import DAY, LedgerConfig
from .errors import ErrorCode, StateConflictError, ValidationError
from .events import EventKind, emit
from .state import ActivationStatus, JurisdictionEscrow, LedgerState

logger = logging.getLogger(__name__)

CRITICAL_DAYS = 7
WARNING_DAYS = 30

# ISO 3166-1 alpha-2 or alpha-3
JURISDICTION_CODE_RE = re.compile(r"^[A-Z]{2,3}$")


def validate_jurisdiction_code(code: Any) -> str:
    if not isinstance(code, str) or not JURISDICTION_CODE_RE.match(code):
        raise ValidationError(
            ErrorCode.MALFORMED_INPUT,
            "jurisdiction must be an ISO 3166 alpha-2 or alpha-3 code",
            {"jurisdiction": str(code)}
        )
    return code


def existing_escrow(state: LedgerState, code: str) -> JurisdictionEscrow:
    validate_jurisdiction_code(code)
    escrow = state.escrows.get(code)
    if escrow is None:
        raise StateConflictError(ErrorCode.JURISDICTION_NOT_FOUND, f"no escrow for {code}")
    return escrow


class Urgency(str, Enum):
    EXPIRED = "EXPIRED"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    NORMAL = "NORMAL"


@dataclass
class DeathClockSummary:
    code: str
    activation_status: ActivationStatus
    locked_balance: int
    death_clock_start: Optional[int]
    death_clock_expiry: Optional[int]
    seconds_remaining: Optional[int]
    days_remaining: Optional[int]
    urgency: Optional[Urgency]
    eligible_for_flush: bool
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "activation_status": self.activation_status.value,
            "locked_balance": str(self.locked_balance),
            "death_clock_start": self.death_clock_start,
            "death_clock_expiry": self.death_clock_expiry,
            "seconds_remaining": self.seconds_remaining,
            "days_remaining": self.days_remaining,
            "urgency": self.urgency.value if self.urgency else None,
            "eligible_for_flush": self.eligible_for_flush,
        }


def urgency_for(seconds_remaining: int) -> Urgency:
    if seconds_remaining <= 0:
        return Urgency.EXPIRED
    if seconds_remaining <= CRITICAL_DAYS * DAY:
        return Urgency.CRITICAL
    if seconds_remaining <= WARNING_DAYS * DAY:
        return Urgency.WARNING
    return Urgency.NORMAL


class EscrowDeathClock:
    
    def __init__(self, config: LedgerConfig):
        self.config = config
    
    def _escrow(self, state: LedgerState, code: str) -> JurisdictionEscrow:
        return existing_escrow(state, code)
    
    def start_clock(self, state: LedgerState, code: str, now: int) -> JurisdictionEscrow:
        """
        Raises:
            StateConflictError: JURISDICTION_NOT_FOUND, CLOCK_ALREADY_STARTED
        """
        escrow = self._escrow(state, code)
        if escrow.clock_started:
            raise StateConflictError(
                ErrorCode.CLOCK_ALREADY_STARTED,
                f"death clock for {code} started at {escrow.death_clock_start}",
            )
        
        pre = state.supply.aggregates()
        escrow.death_clock_start = now
        escrow.death_clock_expiry = now + self.config.death_clock_grace_seconds
        emit(state, EventKind.DEATH_CLOCK_START, now, {
            "jurisdiction": code,
            "death_clock_start": now,
            "death_clock_expiry": escrow.death_clock_expiry,
        }, pre)
        logger.info("death clock started for %s, expires %d", code, escrow.death_clock_expiry)
        return escrow
    
    def activate(self, state: LedgerState, code: str, now: int) -> JurisdictionEscrow:
        """
        Raises:
            StateConflictError: JURISDICTION_NOT_FOUND, ESCROW_NOT_INACTIVE,
                CLOCK_NOT_STARTED, CLOCK_EXPIRED
        """
        escrow = self._escrow(state, code)
        if escrow.activation_status != ActivationStatus.INACTIVE:
            raise StateConflictError(
                ErrorCode.ESCROW_NOT_INACTIVE,
                f"escrow for {code} is {escrow.activation_status.value}",
            )
        if not escrow.clock_started:
            raise StateConflictError(ErrorCode.CLOCK_NOT_STARTED, f"death clock for {code} not started")
        if escrow.is_expired(now):
            raise StateConflictError(
                ErrorCode.CLOCK_EXPIRED,
                f"death clock for {code} expired at {escrow.death_clock_expiry}",
            )
        
        pre = state.supply.aggregates()
        escrow.activation_status = ActivationStatus.ACTIVE
        escrow.activated_at = now
        emit(state, EventKind.ESCROW_ACTIVATION, now, {"jurisdiction": code, "activated_at": now}, pre)
        return escrow
    
    def flush(self, state: LedgerState, code: str, now: int) -> int:
        """
        Move an expired INACTIVE escrow's locked balance to the default pool.
        
        Returns:
            The amount flushed
        
        Raises:
            StateConflictError: JURISDICTION_NOT_FOUND, ESCROW_NOT_INACTIVE,
                CLOCK_NOT_STARTED, CLOCK_NOT_EXPIRED
        """
        escrow = self._escrow(state, code)
        if escrow.activation_status != ActivationStatus.INACTIVE:
            raise StateConflictError(
                ErrorCode.ESCROW_NOT_INACTIVE,
                f"escrow for {code} is {escrow.activation_status.value}",
            )
        if not escrow.clock_started:
            raise StateConflictError(ErrorCode.CLOCK_NOT_STARTED, f"death clock for {code} not started")
        if not escrow.is_expired(now):
            raise StateConflictError(
                ErrorCode.CLOCK_NOT_EXPIRED,
                f"death clock for {code} expires at {escrow.death_clock_expiry}",
            )
        
        pre = state.supply.aggregates()
        amount = escrow.locked_balance
        escrow.locked_balance = 0
        escrow.activation_status = ActivationStatus.FLUSHED
        escrow.flushed_at = now
        escrow.flushed_amount = amount
        state.credit(self.config.default_pool_account, amount)
        emit(state, EventKind.DEATH_CLOCK_FLUSH, now, {
            "jurisdiction": code,
            "flushed_amount": str(amount),
            "recipient": self.config.default_pool_account,
            "orphaned_derivative": str(escrow.derivative_supply),
        }, pre)
        logger.warning("escrow %s flushed: %d to %s", code, amount, self.config.default_pool_account)
        return amount
    
    def expired_codes(self, state: LedgerState, now: int) -> List[str]:
        return sorted(code for code, e in state.escrows.items() if e.eligible_for_flush(now))
    
    def sweep_all_expired(self, state: LedgerState, now: int) -> int:
        """Flush every expired INACTIVE escrow. Returns how many were flushed."""
        codes = self.expired_codes(state, now)
        for code in codes:
            self.flush(state, code, now)
        return len(codes)
    
    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------
    
    def summary(self, state: LedgerState, code: str, now: int) -> DeathClockSummary:
        escrow = self._escrow(state, code)
        remaining = None
        days = None
        urgency = None
        if escrow.clock_started and escrow.activation_status == ActivationStatus.INACTIVE:
            remaining = max(0, escrow.death_clock_expiry - now)
            days = remaining // DAY
            urgency = urgency_for(remaining)
        return DeathClockSummary(
            code=code,
            activation_status=escrow.activation_status,
            locked_balance=escrow.locked_balance,
            death_clock_start=escrow.death_clock_start,
            death_clock_expiry=escrow.death_clock_expiry,
            seconds_remaining=remaining,
            days_remaining=days,
            urgency=urgency,
            eligible_for_flush=escrow.eligible_for_flush(now),
        )
    
    def flush_stats(self, state: LedgerState) -> Dict[str, Any]:
        escrows = list(state.escrows.values())
        return {
            "nations_total": len(escrows),
            "nations_active": sum(1 for e in escrows if e.activation_status == ActivationStatus.ACTIVE),
            "nations_inactive": sum(1 for e in escrows if e.activation_status == ActivationStatus.INACTIVE),
            "nations_flushed": sum(1 for e in escrows if e.activation_status == ActivationStatus.FLUSHED),
            "total_flushed": str(sum(e.flushed_amount for e in escrows)),
        }

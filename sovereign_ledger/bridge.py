"""
Cross-Jurisdiction Bridge

Converts base units into a jurisdiction's local derivative (1:1, backed
by the jurisdiction's escrow) and back. Conversions into a derivative
pass the liquidity gate; the first conversion into a jurisdiction starts
its death clock.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .config import LedgerConfig
from .death_clock import EscrowDeathClock, existing_escrow, validate_jurisdiction_code
from .errors import (
    ErrorCode,
    StateConflictError,
    require_identifier,
    require_positive_amount,
)
from .events import EventKind, emit
from .liquidity import LiquidityGate
from .state import ActivationStatus, JurisdictionEscrow, LedgerState

logger = logging.getLogger(__name__)


def _reject_if_flushed(escrow: JurisdictionEscrow) -> None:
    if escrow.activation_status == ActivationStatus.FLUSHED:
        raise StateConflictError(
            ErrorCode.JURISDICTION_FLUSHED,
            f"escrow for {escrow.code} was flushed at {escrow.flushed_at}",
        )


@dataclass
class BridgeResult:
    operation: str
    caller: str
    amount: int
    jurisdiction: str
    derivative_balance: int
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "caller": self.caller,
            "amount": str(self.amount),
            "jurisdiction": self.jurisdiction,
            "derivative_balance": str(self.derivative_balance),
        }


class CrossJurisdictionBridge:
    
    def __init__(
        self,
        config: LedgerConfig,
        gate: LiquidityGate,
        death_clock: EscrowDeathClock
    ):
        self.config = config
        self.gate = gate
        self.death_clock = death_clock
    
    # --------------------------------------------------------
    # Legs (no events, no gate)
    # --------------------------------------------------------
    
    def _issue_leg(
        self,
        state: LedgerState,
        payer: str,
        holder: str,
        code: str,
        amount: int,
        now: int
    ) -> JurisdictionEscrow:
        escrow = state.escrows.get(code)
        if escrow is None:
            escrow = JurisdictionEscrow(code=code)
            state.escrows[code] = escrow
        _reject_if_flushed(escrow)
        
        state.debit(payer, amount)
        escrow.locked_balance += amount
        escrow.derivative_supply += amount
        escrow.holdings[holder] = escrow.holdings.get(holder, 0) + amount
        
        if not escrow.clock_started:
            self.death_clock.start_clock(state, code, now)
        return escrow
    
    def _redeem_leg(self, state: LedgerState, holder: str, code: str, amount: int) -> JurisdictionEscrow:
        escrow = existing_escrow(state, code)
        _reject_if_flushed(escrow)
        
        held = escrow.holdings.get(holder, 0)
        if held < amount:
            raise StateConflictError(
                ErrorCode.INSUFFICIENT_DERIVATIVE,
                f"{holder} holds {held} {code} derivative, needs {amount}",
                {"held": str(held), "required": str(amount)}
            )
        escrow.holdings[holder] = held - amount
        escrow.derivative_supply -= amount
        escrow.locked_balance -= amount
        state.credit(holder, amount)
        return escrow
    
    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------
    
    def issue_local(
        self,
        state: LedgerState,
        caller: str,
        jurisdiction: str,
        amount: int,
        now: int
    ) -> BridgeResult:
        """
        Lock base units in the jurisdiction's escrow and mint derivative 1:1.
        
        Raises:
            ValidationError: MALFORMED_INPUT
            StateConflictError: INSUFFICIENT_BALANCE, DAILY_LIMIT_EXCEEDED,
                JURISDICTION_FLUSHED
        """
        require_identifier(caller, "caller")
        validate_jurisdiction_code(jurisdiction)
        require_positive_amount(amount)
        
        escrow = state.escrows.get(jurisdiction)
        if escrow is not None:
            _reject_if_flushed(escrow)
        balance = state.balance(caller)
        if balance < amount:
            raise StateConflictError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"account {caller} holds {balance}, needs {amount}",
                {"account_id": caller, "balance": str(balance), "required": str(amount)}
            )
        self.gate.check_and_record(state, caller, amount, state.locked_collateral_of(caller), now)
        
        pre = state.supply.aggregates()
        escrow = self._issue_leg(state, caller, caller, jurisdiction, amount, now)
        emit(state, EventKind.LOCAL_ISSUE, now, {
            "caller": caller,
            "jurisdiction": jurisdiction,
            "amount": str(amount),
            "locked_balance": str(escrow.locked_balance),
        }, pre)
        return BridgeResult("issue_local", caller, amount, jurisdiction, escrow.holdings[caller])
    
    def redeem_local(
        self,
        state: LedgerState,
        caller: str,
        jurisdiction: str,
        amount: int,
        now: int
    ) -> BridgeResult:
        """
        Burn derivative and release the backing base units to the caller.
        
        Raises:
            ValidationError: MALFORMED_INPUT
            StateConflictError: JURISDICTION_NOT_FOUND, JURISDICTION_FLUSHED,
                INSUFFICIENT_DERIVATIVE
        """
        require_identifier(caller, "caller")
        require_positive_amount(amount)
        
        pre = state.supply.aggregates()
        escrow = self._redeem_leg(state, caller, jurisdiction, amount)
        emit(state, EventKind.LOCAL_REDEEM, now, {
            "caller": caller,
            "jurisdiction": jurisdiction,
            "amount": str(amount),
            "locked_balance": str(escrow.locked_balance),
        }, pre)
        return BridgeResult("redeem_local", caller, amount, jurisdiction, escrow.holdings[caller])
    
    def cross_transfer(
        self,
        state: LedgerState,
        caller: str,
        from_jurisdiction: str,
        to_jurisdiction: str,
        recipient: str,
        amount: int,
        now: int
    ) -> BridgeResult:
        """
        Redeem the caller's derivative in one jurisdiction and issue the same
        amount in another, credited to `recipient`. Both legs or neither.
        
        The liquidity gate is evaluated against the caller's locked
        collateral as it stood before the redeem leg released any of it.
        """
        require_identifier(caller, "caller")
        require_identifier(recipient, "recipient")
        validate_jurisdiction_code(from_jurisdiction)
        validate_jurisdiction_code(to_jurisdiction)
        require_positive_amount(amount)
        
        collateral_before = state.locked_collateral_of(caller)
        
        pre = state.supply.aggregates()
        self._redeem_leg(state, caller, from_jurisdiction, amount)
        target = state.escrows.get(to_jurisdiction)
        if target is not None:
            _reject_if_flushed(target)
        self.gate.check_and_record(state, caller, amount, collateral_before, now)
        escrow = self._issue_leg(state, caller, recipient, to_jurisdiction, amount, now)
        
        emit(state, EventKind.CROSS_JURISDICTION_TRANSFER, now, {
            "caller": caller,
            "recipient": recipient,
            "from_jurisdiction": from_jurisdiction,
            "to_jurisdiction": to_jurisdiction,
            "amount": str(amount),
        }, pre)
        logger.debug("cross transfer %d %s->%s for %s", amount, from_jurisdiction, to_jurisdiction, recipient)
        return BridgeResult("cross_transfer", caller, amount, to_jurisdiction, escrow.holdings[recipient])

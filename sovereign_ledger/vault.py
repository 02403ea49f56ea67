"""
Vault Lock Manager

Time-locks base units as collateral. A lock moves from LOCKED to exactly
one terminal status: UNLOCKED (returned to the owner once the minimum
duration has elapsed) or LIQUIDATED (moved to the liquidation recipient).
Records are never deleted.
"""

import logging
from typing import List

from .config import LedgerConfig
from .errors import (
    ErrorCode,
    StateConflictError,
    ValidationError,
    require_identifier,
    require_positive_amount,
)
from .events import EventKind, emit
from .state import LedgerState, LockRecord, LockStatus

logger = logging.getLogger(__name__)


class VaultLockManager:
    
    def __init__(self, config: LedgerConfig):
        self.config = config
    
    def lock(
        self,
        state: LedgerState,
        account_id: str,
        amount: int,
        duration: int,
        now: int
    ) -> LockRecord:
        """
        Debit `amount` from the account into a new LOCKED record.
        
        Raises:
            ValidationError: INVALID_LOCK_DURATION, MALFORMED_INPUT
            StateConflictError: INSUFFICIENT_BALANCE
        """
        require_identifier(account_id, "account_id")
        require_positive_amount(amount)
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise ValidationError(ErrorCode.MALFORMED_INPUT, "duration must be an integer number of seconds")
        
        cfg = self.config
        if not cfg.min_lock_duration_seconds <= duration <= cfg.max_lock_duration_seconds:
            raise ValidationError(
                ErrorCode.INVALID_LOCK_DURATION,
                f"duration {duration}s outside [{cfg.min_lock_duration_seconds}, {cfg.max_lock_duration_seconds}]",
                {"duration": duration}
            )
        
        pre = state.supply.aggregates()
        state.debit(account_id, amount)
        
        lock_id = f"lock-{state.next_lock_seq:08d}"
        state.next_lock_seq += 1
        record = LockRecord(
            lock_id=lock_id,
            owner=account_id,
            amount=amount,
            created_at=now,
            min_duration=cfg.min_lock_duration_seconds,
            max_duration=duration,
        )
        state.locks[lock_id] = record
        state.account(account_id).lock_ids.append(lock_id)
        
        emit(state, EventKind.LOCK, now, record.to_dict(), pre)
        logger.debug("locked %d for %s as %s", amount, account_id, lock_id)
        return record
    
    def _active_lock(self, state: LedgerState, lock_id: str) -> LockRecord:
        record = state.locks.get(lock_id)
        if record is None:
            raise StateConflictError(ErrorCode.LOCK_NOT_FOUND, f"no lock {lock_id}")
        if record.status != LockStatus.LOCKED:
            raise StateConflictError(
                ErrorCode.LOCK_NOT_ACTIVE,
                f"lock {lock_id} is {record.status.value}",
                {"status": record.status.value}
            )
        return record
    
    def unlock(self, state: LedgerState, lock_id: str, now: int) -> LockRecord:
        """
        Return a matured lock's amount to its owner.
        
        Raises:
            StateConflictError: LOCK_NOT_FOUND, LOCK_NOT_ACTIVE, LOCK_NOT_MATURE
        """
        record = self._active_lock(state, lock_id)
        if now < record.unlockable_at:
            raise StateConflictError(
                ErrorCode.LOCK_NOT_MATURE,
                f"lock {lock_id} unlockable at {record.unlockable_at}",
                {"unlockable_at": record.unlockable_at}
            )
        
        pre = state.supply.aggregates()
        record.status = LockStatus.UNLOCKED
        record.closed_at = now
        state.credit(record.owner, record.amount)
        emit(state, EventKind.UNLOCK, now, record.to_dict(), pre)
        return record
    
    def liquidate(self, state: LedgerState, lock_id: str, now: int) -> LockRecord:
        """
        Seize a lock's amount for the liquidation recipient.
        
        Raises:
            StateConflictError: LOCK_NOT_FOUND, LOCK_NOT_ACTIVE
        """
        record = self._active_lock(state, lock_id)
        
        pre = state.supply.aggregates()
        record.status = LockStatus.LIQUIDATED
        record.closed_at = now
        state.credit(self.config.liquidation_recipient, record.amount)
        payload = record.to_dict()
        payload["recipient"] = self.config.liquidation_recipient
        emit(state, EventKind.LIQUIDATE, now, payload, pre)
        logger.info("liquidated %s (%d) to %s", lock_id, record.amount, self.config.liquidation_recipient)
        return record
    
    def locks_of(self, state: LedgerState, account_id: str) -> List[LockRecord]:
        acct = state.accounts.get(account_id)
        if acct is None:
            return []
        return [state.locks[i] for i in acct.lock_ids]

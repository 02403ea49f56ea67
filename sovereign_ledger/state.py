"""
Ledger State

Plain data records for the ledger and the single `LedgerState` container
that every component operation receives explicitly. Nothing here knows
about policy; components in supply/era/vitality/vault/bridge/death_clock
decide what is allowed and mutate the records.
"""

import heapq
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .errors import ErrorCode, StateConflictError


class Era(str, Enum):
    """Issuance eras. Transitions are monotonic: FOUNDATION -> SCARCITY -> EQUILIBRIUM."""
    FOUNDATION = "FOUNDATION"
    SCARCITY = "SCARCITY"
    EQUILIBRIUM = "EQUILIBRIUM"
    
    @property
    def rank(self) -> int:
        return _ERA_ORDER.index(self)


_ERA_ORDER = [Era.FOUNDATION, Era.SCARCITY, Era.EQUILIBRIUM]


class LockStatus(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"      # terminal
    LIQUIDATED = "LIQUIDATED"  # terminal


class ActivationStatus(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"    # terminal
    FLUSHED = "FLUSHED"  # terminal, one-time


@dataclass
class Account:
    account_id: str
    balance: int = 0
    verified: bool = False
    last_activity_time: Optional[int] = None
    inactive: bool = False
    lock_ids: List[str] = field(default_factory=list)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "balance": str(self.balance),
            "verified": self.verified,
            "last_activity_time": self.last_activity_time,
            "inactive": self.inactive,
            "lock_ids": list(self.lock_ids),
        }


@dataclass
class SupplyState:
    """
    Process-wide supply counters.
    
    Invariant: total_issued - total_burned equals the sum of all account
    balances, active lock amounts and jurisdiction locked balances.
    """
    total_issued: int = 0
    total_burned: int = 0
    total_verified_accounts: int = 0
    inactive_accounts: int = 0
    re_vitalizations: int = 0
    removals: int = 0
    current_era: Era = Era.FOUNDATION
    
    @property
    def circulating(self) -> int:
        return self.total_issued - self.total_burned
    
    @property
    def active_accounts(self) -> int:
        return self.total_verified_accounts - self.inactive_accounts
    
    def aggregates(self) -> Dict[str, Any]:
        """Aggregate values recorded before/after every event."""
        return {
            "total_issued": str(self.total_issued),
            "total_burned": str(self.total_burned),
            "circulating": str(self.circulating),
            "total_verified_accounts": self.total_verified_accounts,
            "inactive_accounts": self.inactive_accounts,
            "era": self.current_era.value,
        }


@dataclass(frozen=True)
class EraTransition:
    """Immutable record of one era change."""
    old_era: Era
    new_era: Era
    supply_at_transition: int
    reason: str
    timestamp: int
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_era": self.old_era.value,
            "new_era": self.new_era.value,
            "supply_at_transition": str(self.supply_at_transition),
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


@dataclass
class LockRecord:
    lock_id: str
    owner: str
    amount: int
    created_at: int
    min_duration: int
    max_duration: int
    status: LockStatus = LockStatus.LOCKED
    closed_at: Optional[int] = None
    
    @property
    def unlockable_at(self) -> int:
        return self.created_at + self.min_duration
    
    @property
    def matures_at(self) -> int:
        return self.created_at + self.max_duration
    
    def is_active(self) -> bool:
        return self.status == LockStatus.LOCKED
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "lock_id": self.lock_id,
            "owner": self.owner,
            "amount": str(self.amount),
            "created_at": self.created_at,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "unlockable_at": self.unlockable_at,
            "matures_at": self.matures_at,
            "status": self.status.value,
            "closed_at": self.closed_at,
        }


@dataclass
class JurisdictionEscrow:
    """
    Base units locked for one jurisdiction, backing its derivative 1:1.
    
    `holdings` maps account id to derivative balance; its sum is
    `derivative_supply`, which equals `locked_balance` until a flush.
    """
    code: str
    locked_balance: int = 0
    derivative_supply: int = 0
    holdings: Dict[str, int] = field(default_factory=dict)
    death_clock_start: Optional[int] = None
    death_clock_expiry: Optional[int] = None
    activation_status: ActivationStatus = ActivationStatus.INACTIVE
    activated_at: Optional[int] = None
    flushed_at: Optional[int] = None
    flushed_amount: int = 0
    
    @property
    def clock_started(self) -> bool:
        return self.death_clock_start is not None
    
    def is_expired(self, now: int) -> bool:
        return self.death_clock_expiry is not None and now >= self.death_clock_expiry
    
    def eligible_for_flush(self, now: int) -> bool:
        return self.activation_status == ActivationStatus.INACTIVE and self.is_expired(now)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "locked_balance": str(self.locked_balance),
            "derivative_supply": str(self.derivative_supply),
            "holders": len([a for a, v in self.holdings.items() if v > 0]),
            "death_clock_start": self.death_clock_start,
            "death_clock_expiry": self.death_clock_expiry,
            "activation_status": self.activation_status.value,
            "activated_at": self.activated_at,
            "flushed_at": self.flushed_at,
            "flushed_amount": str(self.flushed_amount),
        }


@dataclass
class DailyLiquidityWindow:
    window_start: int
    volume_used: int = 0


class JournaledDict(dict):
    """
    A dict whose inserts and deletes are undoable while its owning state
    has a transaction open. Records read through `[]` or `get` are
    snapshotted before the caller can mutate them.
    """
    
    def __init__(self, owner: "LedgerState"):
        super().__init__()
        self._owner = owner
    
    def __getitem__(self, key):
        value = super().__getitem__(key)
        self._owner.touch(value)
        return value
    
    def get(self, key, default=None):
        value = super().get(key, default)
        self._owner.touch(value)
        return value
    
    def __setitem__(self, key, value):
        self._owner.journal_key(self, key)
        super().__setitem__(key, value)
    
    def __delitem__(self, key):
        self._owner.journal_key(self, key)
        super().__delitem__(key)
    
    def pop(self, key, *default):
        if key in self:
            self._owner.journal_key(self, key)
        return super().pop(key, *default)


def _restore_fields(record: Any, fields: Dict[str, Any]) -> None:
    record.__dict__.clear()
    record.__dict__.update(fields)


class LedgerState:
    """
    All mutable ledger state.
    
    Between `begin()` and `commit()`/`rollback()` every change is journaled:
    a record is snapshotted the first time it is reached through the state's
    maps or the `supply` accessor, and map inserts and deletes record their
    inverse. Rollback replays the journal backwards, so it costs what the
    transaction touched rather than the size of the ledger.
    """
    
    def __init__(self):
        self._journal: Optional[List[Callable[[], None]]] = None
        self._touched: Dict[int, Any] = {}
        self._marks: Tuple[int, int] = (0, 1)
        
        self._supply = SupplyState()
        self.accounts: Dict[str, Account] = JournaledDict(self)
        self.locks: Dict[str, LockRecord] = JournaledDict(self)
        self.escrows: Dict[str, JurisdictionEscrow] = JournaledDict(self)
        self.liquidity_windows: Dict[str, DailyLiquidityWindow] = JournaledDict(self)
        self.consumed_nonces: Dict[str, int] = JournaledDict(self)
        # (attestation timestamp, nonce), a min-heap; may hold stale entries
        self.nonce_expiry: List[Tuple[int, str]] = []
        self.era_history: List[EraTransition] = []
        self.next_lock_seq = 1
        # events emitted by the open transaction; drained on commit
        self.outbox: List[Any] = []
    
    @property
    def supply(self) -> SupplyState:
        self.touch(self._supply)
        return self._supply
    
    # --------------------------------------------------------
    # Transaction journal
    # --------------------------------------------------------
    
    @property
    def in_transaction(self) -> bool:
        return self._journal is not None
    
    def begin(self) -> None:
        if self._journal is not None:
            raise RuntimeError("transaction already open")
        self._journal = []
        self._touched = {}
        self._marks = (len(self.era_history), self.next_lock_seq)
        self.outbox = []
    
    def commit(self) -> None:
        self._journal = None
        self._touched = {}
    
    def rollback(self) -> None:
        journal = self._journal or []
        self._journal = None
        for undo in reversed(journal):
            undo()
        history_len, self.next_lock_seq = self._marks
        del self.era_history[history_len:]
        self.outbox = []
        self._touched = {}
    
    def on_rollback(self, undo: Callable[[], None]) -> None:
        """Register an undo for a change made outside the state (e.g. role grants)."""
        if self._journal is not None:
            self._journal.append(undo)
    
    def touch(self, record: Any) -> None:
        """Snapshot `record` once per transaction, before it is mutated."""
        if self._journal is None or not hasattr(record, "__dict__") or id(record) in self._touched:
            return
        fields = {
            k: (v.copy() if isinstance(v, (dict, list)) else v)
            for k, v in vars(record).items()
        }
        self._touched[id(record)] = record
        self._journal.append(lambda: _restore_fields(record, fields))
    
    def journal_key(self, mapping: Dict[Any, Any], key: Any) -> None:
        if self._journal is None:
            return
        if key in mapping:
            old = dict.__getitem__(mapping, key)
            self._journal.append(lambda: dict.__setitem__(mapping, key, old))
        else:
            self._journal.append(lambda: dict.pop(mapping, key, None))
    
    # --------------------------------------------------------
    # Attestation nonces
    # --------------------------------------------------------
    
    def consume_nonce(self, nonce: str, timestamp: int) -> None:
        self.consumed_nonces[nonce] = timestamp
        # a rolled-back push leaves a stale heap entry; prune_nonces skips it
        heapq.heappush(self.nonce_expiry, (timestamp, nonce))
    
    def prune_nonces(self, horizon: int) -> int:
        """Forget nonces whose attestation timestamp is before `horizon`."""
        pruned = 0
        while self.nonce_expiry and self.nonce_expiry[0][0] < horizon:
            entry = heapq.heappop(self.nonce_expiry)
            self.on_rollback(lambda entry=entry: heapq.heappush(self.nonce_expiry, entry))
            timestamp, nonce = entry
            if dict.get(self.consumed_nonces, nonce) == timestamp:
                del self.consumed_nonces[nonce]
                pruned += 1
        return pruned
    
    # --------------------------------------------------------
    # Accounts
    # --------------------------------------------------------
    
    def account(self, account_id: str) -> Account:
        """Get an account, creating an empty record on first reference."""
        acct = self.accounts.get(account_id)
        if acct is None:
            acct = Account(account_id=account_id)
            self.accounts[account_id] = acct
        return acct
    
    def balance(self, account_id: str) -> int:
        acct = self.accounts.get(account_id)
        return acct.balance if acct else 0
    
    def credit(self, account_id: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("credit amount cannot be negative")
        self.account(account_id).balance += amount
    
    def debit(self, account_id: str, amount: int) -> None:
        acct = self.account(account_id)
        if amount < 0:
            raise ValueError("debit amount cannot be negative")
        if acct.balance < amount:
            raise StateConflictError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"account {account_id} holds {acct.balance}, needs {amount}",
                {"account_id": account_id, "balance": str(acct.balance), "required": str(amount)}
            )
        acct.balance -= amount
    
    # --------------------------------------------------------
    # Collateral
    # --------------------------------------------------------
    
    def active_locks_of(self, account_id: str) -> List[LockRecord]:
        acct = self.accounts.get(account_id)
        if acct is None:
            return []
        return [self.locks[i] for i in acct.lock_ids if self.locks[i].is_active()]
    
    def escrowed_balance_of(self, account_id: str) -> int:
        return sum(
            e.holdings.get(account_id, 0)
            for e in self.escrows.values()
            if e.activation_status != ActivationStatus.FLUSHED
        )
    
    def locked_collateral_of(self, account_id: str) -> int:
        """Vault-locked plus bridge-escrowed base units attributable to an account."""
        vault = sum(lock.amount for lock in self.active_locks_of(account_id))
        return vault + self.escrowed_balance_of(account_id)
    
    # --------------------------------------------------------
    # Invariants
    # --------------------------------------------------------
    
    def held_total(self) -> int:
        """Sum of every place base units can sit."""
        balances = sum(a.balance for a in self.accounts.values())
        locked = sum(lock.amount for lock in self.locks.values() if lock.is_active())
        escrowed = sum(e.locked_balance for e in self.escrows.values())
        return balances + locked + escrowed
    
    def closed_system_holds(self) -> bool:
        return self.supply.circulating == self.held_total()
    
    def verified_accounts(self) -> Set[str]:
        return {a.account_id for a in self.accounts.values() if a.verified}

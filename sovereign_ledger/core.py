"""
Ledger Core

The single authoritative sequencer. Every public call:

1. takes the process-wide lock (one writer at a time)
2. commits any passive transitions that have become due: an era
   transition, or the death-clock flush of a jurisdiction the call touches
3. runs the operation inside a transaction. The state journals every
   change; the emitted events are appended to the hash-chained log as one
   batch. If the operation or the append fails, the journal is rolled
   back and the events are discarded.

Reads take the lock but never mutate.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .attestation import AttestationValidator, PresenceAttestation
from .bridge import BridgeResult, CrossJurisdictionBridge
from .config import BPS_DENOMINATOR, BOOTSTRAP_ADMIN, LedgerConfig
from .death_clock import EscrowDeathClock, existing_escrow
from .era import EraEngine
from .errors import LedgerError, require_identifier
from .events import ChainVerification, EventKind, EventLog, LedgerEvent, drain_outbox, emit, verify_chain
from .liquidity import Allowance, LiquidityGate
from .logging_config import audit_log
from .roles import Role, RoleRegistry
from .state import LedgerState, LockRecord
from .supply import IssuanceResult, SupplyLedger, TransferResult
from .vault import VaultLockManager
from .vitality import ActiveSupplySnapshot, RemovalResult, VitalityTracker

logger = logging.getLogger(__name__)


# ============================================================
# Clocks
# ============================================================

class SystemClock:
    """Wall-clock time in integer epoch seconds."""
    
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that only moves when told to. For tests and simulations."""
    
    def __init__(self, start: int = 1_700_000_000):
        self._now = start
        self._lock = threading.Lock()
    
    def now(self) -> int:
        with self._lock:
            return self._now
    
    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now
    
    def set(self, now: int) -> None:
        with self._lock:
            if now < self._now:
                raise ValueError("clock cannot move backwards")
            self._now = now


# ============================================================
# Core
# ============================================================

class LedgerCore:
    """
    Facade over the ledger components and the only object that holds
    the mutable `LedgerState`.
    
    Example:
        core = LedgerCore(LedgerConfig(verifier_key_b64=key), clock=ManualClock())
        core.issue_on_presence("alice", attestation)
        core.transfer("alice", "bob", 4 * UNIT)
    """
    
    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Any = None,
        roles: Optional[RoleRegistry] = None,
        admins: Iterable[str] = (BOOTSTRAP_ADMIN,)
    ):
        self.config = (config or LedgerConfig()).validate()
        self.event_log = event_log if event_log is not None else EventLog()
        self.clock = clock if clock is not None else SystemClock()
        self.roles = roles if roles is not None else RoleRegistry(admins=admins)
        self.state = LedgerState()
        self._lock = threading.RLock()
        
        self.era_engine = EraEngine(self.config)
        self.vitality = VitalityTracker(self.config, self.era_engine)
        self.supply = SupplyLedger(
            self.config,
            era_engine=self.era_engine,
            vitality=self.vitality,
            validator=AttestationValidator(self.config),
        )
        self.vault = VaultLockManager(self.config)
        self.liquidity = LiquidityGate(self.config)
        self.death_clock = EscrowDeathClock(self.config)
        self.bridge = CrossJurisdictionBridge(self.config, self.liquidity, self.death_clock)
    
    # --------------------------------------------------------
    # Transaction machinery
    # --------------------------------------------------------
    
    @contextmanager
    def _transaction(self, operation: str, caller: Optional[str] = None) -> Iterator[LedgerState]:
        state = self.state
        state.begin()
        try:
            yield state
            # the batch is persisted before the changes are kept
            committed = self.event_log.append_all(drain_outbox(state))
        except LedgerError as e:
            state.rollback()
            audit_log.transaction_rejected(operation, caller, e.code.value, e.category, e.message)
            raise
        except Exception:
            state.rollback()
            logger.exception("%s failed; state restored", operation)
            raise
        state.commit()
        
        if committed:
            audit_log.transaction_committed(
                operation,
                caller,
                [e.kind.value for e in committed],
                committed[-1].seq,
            )
    
    def _catch_up(self, now: int, jurisdictions: Iterable[str] = ()) -> None:
        """Commit the passive transitions due at `now`, each independent of the call that follows."""
        due = [
            code for code in jurisdictions
            if code in self.state.escrows and self.state.escrows[code].eligible_for_flush(now)
        ]
        if not due and not self.era_engine.transition_due(self.state):
            return
        with self._transaction("catch_up") as state:
            self.era_engine.check_transition(state, now)
            for code in due:
                self.death_clock.flush(state, code, now)
    
    def _run(
        self,
        operation: str,
        fn: Callable[[LedgerState, int], Any],
        caller: Optional[str] = None,
        jurisdictions: Iterable[str] = ()
    ) -> Any:
        with self._lock:
            now = self.clock.now()
            self._catch_up(now, [j for j in jurisdictions if isinstance(j, str)])
            with self._transaction(operation, caller) as state:
                return fn(state, now)
    
    # --------------------------------------------------------
    # Supply
    # --------------------------------------------------------
    
    def issue_on_presence(
        self,
        account_id: str,
        attestation: Union[PresenceAttestation, Dict[str, Any]]
    ) -> IssuanceResult:
        if not isinstance(attestation, PresenceAttestation):
            attestation = PresenceAttestation.from_dict(attestation)
        return self._run(
            "issue_on_presence",
            lambda state, now: self.supply.issue_on_presence(state, account_id, attestation, now),
            caller=account_id,
        )
    
    def transfer(self, sender: str, recipient: str, amount: int) -> TransferResult:
        return self._run(
            "transfer",
            lambda state, now: self.supply.transfer(state, sender, recipient, amount, now),
            caller=sender,
        )
    
    # --------------------------------------------------------
    # Vitality
    # --------------------------------------------------------
    
    def sweep_inactivity(self, caller: str, account_id: str) -> RemovalResult:
        def op(state: LedgerState, now: int) -> RemovalResult:
            self.roles.require(caller, Role.INACTIVITY_SWEEPER)
            return self.vitality.sweep_inactivity(state, account_id, now)
        return self._run("sweep_inactivity", op, caller=caller)
    
    # --------------------------------------------------------
    # Vault
    # --------------------------------------------------------
    
    def lock(self, account_id: str, amount: int, duration: int) -> LockRecord:
        return self._run(
            "lock",
            lambda state, now: self.vault.lock(state, account_id, amount, duration, now),
            caller=account_id,
        )
    
    def unlock(self, caller: str, lock_id: str) -> LockRecord:
        def op(state: LedgerState, now: int) -> LockRecord:
            self.roles.require(caller, Role.VAULT_OPERATOR)
            return self.vault.unlock(state, lock_id, now)
        return self._run("unlock", op, caller=caller)
    
    def liquidate(self, caller: str, lock_id: str) -> LockRecord:
        def op(state: LedgerState, now: int) -> LockRecord:
            self.roles.require(caller, Role.VAULT_OPERATOR)
            return self.vault.liquidate(state, lock_id, now)
        return self._run("liquidate", op, caller=caller)
    
    # --------------------------------------------------------
    # Bridge
    # --------------------------------------------------------
    
    def issue_local(self, caller: str, jurisdiction: str, amount: int) -> BridgeResult:
        return self._run(
            "issue_local",
            lambda state, now: self.bridge.issue_local(state, caller, jurisdiction, amount, now),
            caller=caller,
            jurisdictions=[jurisdiction],
        )
    
    def redeem_local(self, caller: str, jurisdiction: str, amount: int) -> BridgeResult:
        return self._run(
            "redeem_local",
            lambda state, now: self.bridge.redeem_local(state, caller, jurisdiction, amount, now),
            caller=caller,
            jurisdictions=[jurisdiction],
        )
    
    def cross_transfer(
        self,
        caller: str,
        from_jurisdiction: str,
        to_jurisdiction: str,
        recipient: str,
        amount: int
    ) -> BridgeResult:
        return self._run(
            "cross_transfer",
            lambda state, now: self.bridge.cross_transfer(
                state, caller, from_jurisdiction, to_jurisdiction, recipient, amount, now
            ),
            caller=caller,
            jurisdictions=[from_jurisdiction, to_jurisdiction],
        )
    
    # --------------------------------------------------------
    # Death clock
    # --------------------------------------------------------
    
    def start_clock(self, jurisdiction: str):
        return self._run(
            "start_clock",
            lambda state, now: self.death_clock.start_clock(state, jurisdiction, now),
        )
    
    def activate(self, caller: str, jurisdiction: str):
        def op(state: LedgerState, now: int):
            self.roles.require(caller, Role.JURISDICTION_SIGNER)
            return self.death_clock.activate(state, jurisdiction, now)
        # no catch-up flush here: an expired escrow must surface CLOCK_EXPIRED
        return self._run("activate", op, caller=caller)
    
    def flush(self, jurisdiction: str) -> int:
        return self._run(
            "flush",
            lambda state, now: self.death_clock.flush(state, jurisdiction, now),
        )
    
    def sweep_all_expired(self) -> int:
        return self._run("sweep_all_expired", self.death_clock.sweep_all_expired)
    
    # --------------------------------------------------------
    # Roles
    # --------------------------------------------------------
    
    def grant_role(self, caller: str, grantee: str, role: Union[Role, str]) -> None:
        role = Role(role)
        
        def op(state: LedgerState, now: int) -> None:
            held = self.roles.roles_of(grantee)
            self.roles.grant(caller, grantee, role)
            state.on_rollback(lambda: self.roles.restore(grantee, held))
            emit(state, EventKind.ROLE_GRANTED, now, {
                "granter": caller, "grantee": grantee, "role": role.value,
            }, state.supply.aggregates())
        self._run("grant_role", op, caller=caller)
    
    def revoke_role(self, caller: str, grantee: str, role: Union[Role, str]) -> bool:
        role = Role(role)
        
        def op(state: LedgerState, now: int) -> bool:
            held = self.roles.roles_of(grantee)
            removed = self.roles.revoke(caller, grantee, role)
            if removed:
                state.on_rollback(lambda: self.roles.restore(grantee, held))
                emit(state, EventKind.ROLE_REVOKED, now, {
                    "revoker": caller, "grantee": grantee, "role": role.value,
                }, state.supply.aggregates())
            return removed
        return self._run("revoke_role", op, caller=caller)
    
    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------
    
    def supply_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            state = self.state
            gap, tolerance = self.era_engine.parity_gap(state)
            snapshot = state.supply.aggregates()
            snapshot.update({
                "target_supply": str(self.era_engine.target_supply(state)),
                "parity_gap": str(gap),
                "parity_tolerance": str(tolerance),
                "burn_active": self.era_engine.burn_active(state),
                "re_vitalizations": state.supply.re_vitalizations,
                "removals": state.supply.removals,
                "active_accounts": state.supply.active_accounts,
            })
            return snapshot
    
    def supply_status(self) -> Dict[str, Any]:
        """Progress toward the era threshold and the supply cap."""
        with self._lock:
            supply = self.state.supply
            cfg = self.config
            burn_active = self.era_engine.burn_active(self.state)
            threshold = cfg.supply_threshold
            return {
                "era": supply.current_era.value,
                "total_issued": str(supply.total_issued),
                "circulating": str(supply.circulating),
                "max_total_supply": str(cfg.max_total_supply),
                "remaining_mintable": str(max(0, cfg.max_total_supply - supply.circulating)),
                "cap_utilization_bps": supply.circulating * BPS_DENOMINATOR // cfg.max_total_supply,
                "threshold_progress_bps": (
                    min(BPS_DENOMINATOR, supply.total_issued * BPS_DENOMINATOR // threshold)
                    if threshold else BPS_DENOMINATOR
                ),
                "burn_active": burn_active,
                "current_burn_rate_bps": cfg.burn_rate_bps if burn_active else 0,
            }
    
    def active_supply_snapshot(self) -> ActiveSupplySnapshot:
        with self._lock:
            return self.vitality.get_active_supply_snapshot(self.state)
    
    def era_history(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [t.to_dict() for t in self.state.era_history]
    
    def balance(self, account_id: str) -> int:
        with self._lock:
            return self.state.balance(account_id)
    
    def account(self, account_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            acct = self.state.accounts.get(account_id)
            if acct is None:
                return None
            d = acct.to_dict()
            d["locked_collateral"] = str(self.state.locked_collateral_of(account_id))
            return d
    
    def locks_of(self, account_id: str) -> List[LockRecord]:
        with self._lock:
            return [copy.copy(r) for r in self.vault.locks_of(self.state, account_id)]
    
    def derivative_balance(self, account_id: str, jurisdiction: str) -> int:
        with self._lock:
            escrow = self.state.escrows.get(jurisdiction)
            return escrow.holdings.get(account_id, 0) if escrow else 0
    
    def escrow_status(self, jurisdiction: str) -> Dict[str, Any]:
        with self._lock:
            now = self.clock.now()
            escrow = existing_escrow(self.state, jurisdiction)
            d = escrow.to_dict()
            d["death_clock"] = self.death_clock.summary(self.state, jurisdiction, now).to_dict()
            return d
    
    def death_clock_summaries(self) -> List[Dict[str, Any]]:
        with self._lock:
            now = self.clock.now()
            return [
                self.death_clock.summary(self.state, code, now).to_dict()
                for code in sorted(self.state.escrows)
            ]
    
    def flush_eligible(self) -> List[str]:
        with self._lock:
            return self.death_clock.expired_codes(self.state, self.clock.now())
    
    def flush_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.death_clock.flush_stats(self.state)
    
    def remaining_allowance(self, account_id: str) -> Allowance:
        require_identifier(account_id, "account_id")
        with self._lock:
            return self.liquidity.remaining_allowance(
                self.state,
                account_id,
                self.state.locked_collateral_of(account_id),
                self.clock.now(),
            )
    
    def events(
        self,
        kind: Optional[Union[EventKind, str]] = None,
        since_seq: int = 0,
        limit: Optional[int] = None
    ) -> List[LedgerEvent]:
        return self.event_log.query(EventKind(kind) if kind else None, since_seq, limit)
    
    def verify_log(self) -> ChainVerification:
        return verify_chain(self.event_log.export())
    
    def check_invariants(self) -> bool:
        """Closed-system check: circulating supply equals everything held."""
        with self._lock:
            return self.state.closed_system_holds()

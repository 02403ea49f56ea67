"""
Vitality Tracker

Liveness bookkeeping for verified accounts. An account with no presence
event for the inactivity threshold can be swept: one equilibrium unit is
burned and the account stops counting toward the active population. A
later presence event re-vitalizes it and issues one equilibrium unit.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from .config import BPS_DENOMINATOR, LedgerConfig, RemovalPolicy
from .era import EraEngine
from .errors import ErrorCode, StateConflictError, require_identifier
from .events import EventKind, emit
from .minting import burn_from, mint_split
from .state import EraTransition, LedgerState

logger = logging.getLogger(__name__)


@dataclass
class ActiveSupplySnapshot:
    circulating: int
    active_accounts: int
    inactive_accounts: int
    re_vitalizations: int
    removals: int
    ratio_bps: int
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "circulating": str(self.circulating),
            "active_accounts": self.active_accounts,
            "inactive_accounts": self.inactive_accounts,
            "re_vitalizations": self.re_vitalizations,
            "removals": self.removals,
            "ratio_bps": self.ratio_bps,
        }


@dataclass
class RemovalResult:
    account_id: str
    burned: int
    policy: RemovalPolicy
    transitions: List[EraTransition]
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "burned": str(self.burned),
            "policy": self.policy.value,
            "transitions": [t.to_dict() for t in self.transitions],
        }


class VitalityTracker:
    
    def __init__(self, config: LedgerConfig, era_engine: EraEngine):
        self.config = config
        self.era_engine = era_engine
    
    def record_activity(self, state: LedgerState, account_id: str, now: int) -> bool:
        """
        Stamp the account's last activity time.
        
        Returns:
            True if the account was inactive and has been re-vitalized
        """
        account = state.account(account_id)
        account.last_activity_time = now
        if not account.inactive:
            return False
        
        pre = state.supply.aggregates()
        account.inactive = False
        state.supply.inactive_accounts -= 1
        state.supply.re_vitalizations += 1
        
        amount = self.config.equilibrium_unit
        policy = self.era_engine.current_policy(state)
        issuer_share, counterparty_share = mint_split(state, self.config, account_id, amount, policy)
        emit(state, EventKind.REVITALIZATION, now, {
            "account_id": account_id,
            "counterparty": self.config.counterparty_account,
            "issued": str(amount),
            "issuer_share": str(issuer_share),
            "counterparty_share": str(counterparty_share),
        }, pre)
        logger.info("account %s re-vitalized", account_id)
        return True
    
    def sweep_inactivity(self, state: LedgerState, account_id: str, now: int) -> RemovalResult:
        """
        Mark a dormant account inactive and burn one equilibrium unit.
        
        Raises:
            StateConflictError: ACCOUNT_NOT_VERIFIED, ACCOUNT_ALREADY_INACTIVE,
                ACCOUNT_NOT_DORMANT, INSUFFICIENT_BALANCE_FOR_REMOVAL
        """
        require_identifier(account_id, "account_id")
        account = state.accounts.get(account_id)
        if account is None or not account.verified:
            raise StateConflictError(ErrorCode.ACCOUNT_NOT_VERIFIED, f"account {account_id} is not verified")
        if account.inactive:
            raise StateConflictError(ErrorCode.ACCOUNT_ALREADY_INACTIVE, f"account {account_id} is already inactive")
        
        last = account.last_activity_time or 0
        idle = now - last
        if idle < self.config.inactivity_threshold_seconds:
            raise StateConflictError(
                ErrorCode.ACCOUNT_NOT_DORMANT,
                f"account {account_id} active {idle}s ago",
                {"idle_seconds": idle, "threshold_seconds": self.config.inactivity_threshold_seconds}
            )
        
        unit = self.config.equilibrium_unit
        policy = self.config.removal_policy
        if account.balance >= unit:
            burned = unit
        elif policy == RemovalPolicy.CLAMP:
            burned = account.balance
        else:
            raise StateConflictError(
                ErrorCode.INSUFFICIENT_BALANCE_FOR_REMOVAL,
                f"account {account_id} holds {account.balance}, removal burns {unit}",
                {"balance": str(account.balance), "required": str(unit)}
            )
        
        pre = state.supply.aggregates()
        if burned:
            burn_from(state, account_id, burned)
        account.inactive = True
        state.supply.inactive_accounts += 1
        state.supply.removals += 1
        emit(state, EventKind.INACTIVITY_REMOVAL, now, {
            "account_id": account_id,
            "burned": str(burned),
            "policy": policy.value,
            "idle_seconds": idle,
        }, pre)
        
        transitions = self.era_engine.check_transition(state, now)
        logger.info("account %s swept after %ds idle, burned %d", account_id, idle, burned)
        return RemovalResult(account_id=account_id, burned=burned, policy=policy, transitions=transitions)
    
    def get_active_supply_snapshot(self, state: LedgerState) -> ActiveSupplySnapshot:
        supply = state.supply
        active = supply.active_accounts
        denominator = active * self.config.unit_per_citizen
        ratio = supply.circulating * BPS_DENOMINATOR // denominator if denominator else 0
        return ActiveSupplySnapshot(
            circulating=supply.circulating,
            active_accounts=active,
            inactive_accounts=supply.inactive_accounts,
            re_vitalizations=supply.re_vitalizations,
            removals=supply.removals,
            ratio_bps=ratio,
        )

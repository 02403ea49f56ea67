"""
Era Engine

Tracks the issuance era and moves it forward when supply conditions are
met. Eras only ever advance:

    FOUNDATION -> SCARCITY       total_issued >= supply_threshold
    SCARCITY   -> EQUILIBRIUM    circulating within tolerance of the
                                 active-population target, or the burn
                                 condition (circulating > target) has flipped

The burn policy is owned here too because its activation rule is a
function of era and parity.
"""

import logging
from typing import List, Optional, Tuple

from .config import BPS_DENOMINATOR, EraPolicy, LedgerConfig
from .events import EventKind, emit
from .logging_config import audit_log
from .state import Era, EraTransition, LedgerState

logger = logging.getLogger(__name__)

REASON_SUPPLY_THRESHOLD = "supply_threshold_reached"
REASON_PARITY = "parity_within_tolerance"
REASON_BURN_EXHAUSTED = "burn_exhausted"


class EraEngine:
    
    def __init__(self, config: LedgerConfig):
        self.config = config
    
    def current_policy(self, state: LedgerState) -> EraPolicy:
        return self.config.era_policy(state.supply.current_era)
    
    def target_supply(self, state: LedgerState) -> int:
        """Circulating supply that corresponds to the active population."""
        return state.supply.active_accounts * self.config.unit_per_citizen
    
    def parity_gap(self, state: LedgerState) -> Tuple[int, int]:
        """Returns (|circulating - target|, tolerance)."""
        target = self.target_supply(state)
        gap = abs(state.supply.circulating - target)
        tolerance = self.config.tolerance_bps * target // BPS_DENOMINATOR
        return gap, tolerance
    
    def burn_active(self, state: LedgerState) -> bool:
        return (
            state.supply.current_era == Era.SCARCITY
            and state.supply.circulating > self.target_supply(state)
        )
    
    def _next_transition(self, state: LedgerState) -> Optional[Tuple[Era, str]]:
        supply = state.supply
        if supply.current_era == Era.FOUNDATION:
            if supply.total_issued >= self.config.supply_threshold:
                return Era.SCARCITY, REASON_SUPPLY_THRESHOLD
        elif supply.current_era == Era.SCARCITY:
            gap, tolerance = self.parity_gap(state)
            if gap <= tolerance:
                return Era.EQUILIBRIUM, REASON_PARITY
            if supply.circulating <= self.target_supply(state):
                return Era.EQUILIBRIUM, REASON_BURN_EXHAUSTED
        return None
    
    def transition_due(self, state: LedgerState) -> bool:
        return self._next_transition(state) is not None
    
    def check_transition(self, state: LedgerState, now: int) -> List[EraTransition]:
        """
        Apply every transition that is now due.
        
        Returns:
            The transitions applied by this call (possibly empty)
        """
        applied = []
        while True:
            due = self._next_transition(state)
            if due is None:
                return applied
            new_era, reason = due
            applied.append(self._transition(state, new_era, reason, now))
    
    def _transition(self, state: LedgerState, new_era: Era, reason: str, now: int) -> EraTransition:
        old_era = state.supply.current_era
        if new_era.rank <= old_era.rank:
            raise RuntimeError(f"era cannot move from {old_era.value} to {new_era.value}")
        
        pre = state.supply.aggregates()
        state.supply.current_era = new_era
        record = EraTransition(
            old_era=old_era,
            new_era=new_era,
            supply_at_transition=state.supply.circulating,
            reason=reason,
            timestamp=now,
        )
        state.era_history.append(record)
        emit(state, EventKind.ERA_TRANSITION, now, {
            **record.to_dict(),
            "total_issued": str(state.supply.total_issued),
            "target_supply": str(self.target_supply(state)),
        }, pre)
        
        audit_log.era_transition(old_era.value, new_era.value, reason, str(record.supply_at_transition))
        logger.info("era transition %s -> %s (%s)", old_era.value, new_era.value, reason)
        return record

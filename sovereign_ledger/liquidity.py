"""
Liquidity Gate

Caps how much an account can convert into jurisdiction derivatives per
rolling window, as a fraction of its locked collateral. Only an account's
first-ever conversion, made while it holds no locked collateral, passes
ungated; the window it opens marks the account as gated from then on.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import BPS_DENOMINATOR, LedgerConfig
from .errors import ErrorCode, StateConflictError
from .state import DailyLiquidityWindow, LedgerState


@dataclass
class Allowance:
    locked_balance: int
    daily_limit: Optional[int]  # None: next conversion is ungated
    volume_used: int
    remaining: Optional[int]
    window_start: Optional[int]
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "locked_balance": str(self.locked_balance),
            "daily_limit": None if self.daily_limit is None else str(self.daily_limit),
            "volume_used": str(self.volume_used),
            "remaining": None if self.remaining is None else str(self.remaining),
            "window_start": self.window_start,
        }


class LiquidityGate:
    
    def __init__(self, config: LedgerConfig):
        self.config = config
    
    def daily_limit(self, locked_balance: int) -> int:
        return max(0, locked_balance) * self.config.daily_liquidity_bps // BPS_DENOMINATOR
    
    def is_ungated(self, state: LedgerState, account_id: str, locked_balance: int) -> bool:
        """True only for a first-ever conversion with no locked collateral behind it."""
        return account_id not in state.liquidity_windows and locked_balance <= 0
    
    def _current_window(self, state: LedgerState, account_id: str, now: int) -> DailyLiquidityWindow:
        """The account's window as of `now`, reset if it has rolled over. Not stored."""
        window = state.liquidity_windows.get(account_id)
        if window is None or now >= window.window_start + self.config.liquidity_window_seconds:
            return DailyLiquidityWindow(window_start=now, volume_used=0)
        return window
    
    def check_and_record(
        self,
        state: LedgerState,
        account_id: str,
        amount: int,
        locked_balance: int,
        now: int
    ) -> None:
        """
        Raises:
            StateConflictError: DAILY_LIMIT_EXCEEDED
        """
        if self.is_ungated(state, account_id, locked_balance):
            # open the window without counting volume
            state.liquidity_windows[account_id] = DailyLiquidityWindow(window_start=now)
            return
        
        window = self._current_window(state, account_id, now)
        limit = self.daily_limit(locked_balance)
        if window.volume_used + amount > limit:
            raise StateConflictError(
                ErrorCode.DAILY_LIMIT_EXCEEDED,
                f"conversion of {amount} exceeds daily limit {limit}",
                {
                    "daily_limit": str(limit),
                    "volume_used": str(window.volume_used),
                    "requested": str(amount),
                }
            )
        window.volume_used += amount
        state.liquidity_windows[account_id] = window
    
    def remaining_allowance(
        self,
        state: LedgerState,
        account_id: str,
        locked_balance: int,
        now: int
    ) -> Allowance:
        if self.is_ungated(state, account_id, locked_balance):
            return Allowance(locked_balance, None, 0, None, None)
        
        window = self._current_window(state, account_id, now)
        stored = state.liquidity_windows.get(account_id)
        window_start = window.window_start if stored is window else None
        limit = self.daily_limit(locked_balance)
        return Allowance(
            locked_balance=locked_balance,
            daily_limit=limit,
            volume_used=window.volume_used,
            remaining=max(0, limit - window.volume_used),
            window_start=window_start,
        )

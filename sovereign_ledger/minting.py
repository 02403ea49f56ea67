"""
Minting and burning primitives shared by the supply ledger and the
vitality tracker. These are the only functions that change
`total_issued` and `total_burned`.
"""

from typing import Tuple

from .config import EraPolicy, LedgerConfig
from .errors import ErrorCode, StateConflictError
from .state import LedgerState


def check_supply_cap(state: LedgerState, config: LedgerConfig, amount: int) -> None:
    """
    Raises:
        StateConflictError: SUPPLY_CAP_EXCEEDED if minting `amount` would push
            circulating supply above the configured maximum
    """
    new_supply = state.supply.circulating + amount
    if new_supply > config.max_total_supply:
        raise StateConflictError(
            ErrorCode.SUPPLY_CAP_EXCEEDED,
            f"minting {amount} would exceed max total supply {config.max_total_supply}",
            {
                "circulating": str(state.supply.circulating),
                "attempted": str(amount),
                "max_total_supply": str(config.max_total_supply),
            }
        )


def mint_split(
    state: LedgerState,
    config: LedgerConfig,
    recipient: str,
    amount: int,
    policy: EraPolicy
) -> Tuple[int, int]:
    """
    Mint `amount` and split it between `recipient` and the counterparty
    account according to the era policy.
    
    Returns:
        (issuer_share, counterparty_share)
    """
    check_supply_cap(state, config, amount)
    issuer_share, counterparty_share = policy.split(amount)
    state.credit(recipient, issuer_share)
    state.credit(config.counterparty_account, counterparty_share)
    state.supply.total_issued += amount
    return issuer_share, counterparty_share


def burn_from(state: LedgerState, account_id: str, amount: int) -> None:
    """Debit an account and remove the amount from supply."""
    state.debit(account_id, amount)
    state.supply.total_burned += amount

"""
Supply Ledger

Applies presence-gated issuance and transfers with the era's burn/split
policy. All arithmetic is integer basis points over one denominator
(10000); the primary recipient absorbs every rounding remainder so that
the debited amount always equals burn + splits + recipient credit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .attestation import AttestationValidator, PresenceAttestation
from .config import BPS_DENOMINATOR, LedgerConfig
from .era import EraEngine
from .errors import ErrorCode, StateConflictError, require_identifier, require_positive_amount
from .events import EventKind, emit
from .minting import check_supply_cap, mint_split
from .state import Era, EraTransition, LedgerState
from .vitality import VitalityTracker

logger = logging.getLogger(__name__)


@dataclass
class TransferBreakdown:
    amount: int
    burn: int
    splits: List[Tuple[str, int]]
    recipient_credit: int
    
    def total(self) -> int:
        return self.burn + sum(v for _, v in self.splits) + self.recipient_credit
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "burn": str(self.burn),
            "splits": {r: str(v) for r, v in self.splits},
            "recipient_credit": str(self.recipient_credit),
        }


def split_transfer(
    amount: int,
    burn_active: bool,
    burn_rate_bps: int,
    splits: Tuple[Tuple[str, int], ...]
) -> TransferBreakdown:
    """Compute how a transfer amount is divided. Pure function."""
    if not burn_active:
        return TransferBreakdown(amount=amount, burn=0, splits=[], recipient_credit=amount)
    
    burn = amount * burn_rate_bps // BPS_DENOMINATOR
    credits = [(recipient, amount * bps // BPS_DENOMINATOR) for recipient, bps in splits]
    residual = amount - burn - sum(v for _, v in credits)
    return TransferBreakdown(amount=amount, burn=burn, splits=credits, recipient_credit=residual)


@dataclass
class IssuanceResult:
    account_id: str
    era: Era
    issued: int
    issuer_share: int
    counterparty_share: int
    first_verification: bool
    revitalized: bool
    transitions: List[EraTransition] = field(default_factory=list)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "era": self.era.value,
            "issued": str(self.issued),
            "issuer_share": str(self.issuer_share),
            "counterparty_share": str(self.counterparty_share),
            "first_verification": self.first_verification,
            "revitalized": self.revitalized,
            "transitions": [t.to_dict() for t in self.transitions],
        }


@dataclass
class TransferResult:
    sender: str
    recipient: str
    breakdown: TransferBreakdown
    transitions: List[EraTransition] = field(default_factory=list)
    
    def to_dict(self) -> Dict[str, Any]:
        d = {"from": self.sender, "to": self.recipient}
        d.update(self.breakdown.to_dict())
        d["transitions"] = [t.to_dict() for t in self.transitions]
        return d


class SupplyLedger:
    """
    Sole writer of issuance. Receives the ledger state explicitly on every
    call; callers wrap calls in a transaction so a rejection leaves no trace.
    """
    
    def __init__(
        self,
        config: LedgerConfig,
        era_engine: Optional[EraEngine] = None,
        vitality: Optional[VitalityTracker] = None,
        validator: Optional[AttestationValidator] = None
    ):
        self.config = config
        self.era_engine = era_engine or EraEngine(config)
        self.vitality = vitality or VitalityTracker(config, self.era_engine)
        self.validator = validator or AttestationValidator(config)
    
    def issue_on_presence(
        self,
        state: LedgerState,
        account_id: str,
        attestation: PresenceAttestation,
        now: int
    ) -> IssuanceResult:
        """
        Issue the current era's amount for a verified presence event.
        
        Raises:
            ValidationError: INVALID_ATTESTATION, STALE_ATTESTATION,
                REPLAYED_ATTESTATION, LOW_CONFIDENCE, MALFORMED_INPUT
            StateConflictError: SUPPLY_CAP_EXCEEDED
        """
        require_identifier(account_id, "account_id")
        self.validator.validate(state, account_id, attestation, now)
        
        existing = state.accounts.get(account_id)
        first_verification = existing is None or not existing.verified
        revitalizing = existing is not None and existing.inactive
        era = state.supply.current_era
        policy = self.era_engine.current_policy(state)
        
        if era == Era.EQUILIBRIUM and not first_verification:
            # only re-vitalization issues in equilibrium
            amount = 0
        else:
            amount = policy.issuance_amount
        
        pending_mint = amount + (self.config.equilibrium_unit if revitalizing else 0)
        check_supply_cap(state, self.config, pending_mint)
        
        # -- all checks passed; mutate --
        self.validator.consume(state, attestation, now)
        account = state.account(account_id)
        
        if first_verification:
            pre = state.supply.aggregates()
            account.verified = True
            state.supply.total_verified_accounts += 1
            emit(state, EventKind.ACCOUNT_VERIFIED, now, {"account_id": account_id}, pre)
        
        issuer_share = counterparty_share = 0
        if amount:
            pre = state.supply.aggregates()
            issuer_share, counterparty_share = mint_split(state, self.config, account_id, amount, policy)
            emit(state, EventKind.ISSUANCE, now, {
                "account_id": account_id,
                "counterparty": self.config.counterparty_account,
                "issued": str(amount),
                "issuer_share": str(issuer_share),
                "counterparty_share": str(counterparty_share),
                "era": era.value,
                "nonce": attestation.nonce,
                "attestation_hash": attestation.content_hash(),
            }, pre)
        
        revitalized = self.vitality.record_activity(state, account_id, now)
        transitions = self.era_engine.check_transition(state, now)
        
        logger.debug("issued %d to %s in %s", amount, account_id, era.value)
        return IssuanceResult(
            account_id=account_id,
            era=era,
            issued=amount,
            issuer_share=issuer_share,
            counterparty_share=counterparty_share,
            first_verification=first_verification,
            revitalized=revitalized,
            transitions=transitions,
        )
    
    def transfer(
        self,
        state: LedgerState,
        sender: str,
        recipient: str,
        amount: int,
        now: int
    ) -> TransferResult:
        """
        Move `amount` from sender, applying the burn/split policy when active.
        
        Raises:
            ValidationError: MALFORMED_INPUT
            StateConflictError: INSUFFICIENT_BALANCE
        """
        require_identifier(sender, "from")
        require_identifier(recipient, "to")
        require_positive_amount(amount)
        
        balance = state.balance(sender)
        if balance < amount:
            raise StateConflictError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"account {sender} holds {balance}, needs {amount}",
                {"account_id": sender, "balance": str(balance), "required": str(amount)}
            )
        
        breakdown = split_transfer(
            amount,
            self.era_engine.burn_active(state),
            self.config.burn_rate_bps,
            self.config.transfer_splits,
        )
        if breakdown.total() != amount:
            raise RuntimeError("transfer breakdown does not conserve the debited amount")
        
        pre = state.supply.aggregates()
        state.debit(sender, amount)
        for split_recipient, credit in breakdown.splits:
            state.credit(split_recipient, credit)
        state.credit(recipient, breakdown.recipient_credit)
        emit(state, EventKind.TRANSFER, now, {"from": sender, "to": recipient, **breakdown.to_dict()}, pre)
        
        if breakdown.burn:
            pre = state.supply.aggregates()
            state.supply.total_burned += breakdown.burn
            emit(state, EventKind.BURN, now, {
                "source": sender,
                "burned": str(breakdown.burn),
                "reason": "transfer",
            }, pre)
        
        transitions = self.era_engine.check_transition(state, now)
        return TransferResult(sender=sender, recipient=recipient, breakdown=breakdown, transitions=transitions)

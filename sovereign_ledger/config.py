"""
Configuration module for the ledger core.

Centralizes the economic constants with environment variable support
and validation. Defaults follow the production parameter set.
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .state import Era

# ============================================================
# Units and time
# ============================================================

UNIT = 10 ** 18  # base units per whole token
BPS_DENOMINATOR = 10_000
DAY = 24 * 60 * 60

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("SOVEREIGN_ENV", "dev")  # dev|stage|prod
CONFIG_PATH = os.getenv("SOVEREIGN_CONFIG_PATH", "")
VERIFIER_KEY_B64 = os.getenv("SOVEREIGN_VERIFIER_KEY_B64", "")
EVENT_LOG_PATH = os.getenv("SOVEREIGN_EVENT_LOG_PATH", "")
BOOTSTRAP_ADMIN = os.getenv("SOVEREIGN_BOOTSTRAP_ADMIN", "ledger-admin")
LOG_LEVEL = os.getenv("SOVEREIGN_LOG_LEVEL", "INFO")
# JSON file of caller public keys: {"callers": {caller: {kid: verify_key_b64}}}
CALLER_KEYS_PATH = os.getenv("SOVEREIGN_CALLER_KEYS_PATH", "")

# Rate limits for the HTTP service (requests per minute)
WRITE_RPM = int(os.getenv("SOVEREIGN_WRITE_RPM", "120"))
READ_RPM = int(os.getenv("SOVEREIGN_READ_RPM", "600"))


class RemovalPolicy(str, Enum):
    """
    What an inactivity sweep does when the account holds less than one
    equilibrium unit.
    
    REJECT: fail with INSUFFICIENT_BALANCE_FOR_REMOVAL, account stays active
    CLAMP: burn whatever balance is left and mark the account inactive
    """
    REJECT = "REJECT"
    CLAMP = "CLAMP"


@dataclass(frozen=True)
class EraPolicy:
    """Fixed issuance amount and split of one era."""
    issuance_amount: int
    issuer_share_bps: int
    
    def split(self, amount: Optional[int] = None) -> Tuple[int, int]:
        """
        Split an amount into (issuer_share, counterparty_share).
        
        The issuer is the primary recipient and absorbs the rounding remainder.
        """
        total = self.issuance_amount if amount is None else amount
        counterparty = total * (BPS_DENOMINATOR - self.issuer_share_bps) // BPS_DENOMINATOR
        return total - counterparty, counterparty


def _default_era_policies() -> Dict[Era, EraPolicy]:
    return {
        Era.FOUNDATION: EraPolicy(issuance_amount=10 * UNIT, issuer_share_bps=5000),
        Era.SCARCITY: EraPolicy(issuance_amount=2 * UNIT, issuer_share_bps=5000),
        Era.EQUILIBRIUM: EraPolicy(issuance_amount=1 * UNIT, issuer_share_bps=5000),
    }


def _default_transfer_splits() -> Tuple[Tuple[str, int], ...]:
    # Taken from the transferred amount while burn is active.
    return (
        ("community-pool", 450),
        ("national-escrow", 450),
        ("protocol-maintenance", 100),
    )


@dataclass
class LedgerConfig:
    """
    Economic and operational parameters of the ledger.
    
    Amounts are base units, durations are seconds, rates are basis points.
    """
    # Supply / era
    supply_threshold: int = 5_000_000_000 * UNIT
    max_total_supply: int = 10_000_000_000 * UNIT
    unit_per_citizen: int = UNIT
    equilibrium_unit: int = UNIT
    tolerance_bps: int = 10  # 0.1%
    era_policies: Dict[Era, EraPolicy] = field(default_factory=_default_era_policies)
    counterparty_account: str = "national-escrow"
    
    # Burn / split on transfer
    burn_rate_bps: int = 1000
    transfer_splits: Tuple[Tuple[str, int], ...] = field(default_factory=_default_transfer_splits)
    
    # Presence attestation
    verifier_key_b64: str = ""
    attestation_freshness_seconds: int = 60
    max_clock_skew_seconds: int = 5
    nonce_retention_margin_seconds: int = 3600
    min_confidence: Decimal = Decimal("0.95")
    
    # Vitality
    inactivity_threshold_seconds: int = 365 * DAY
    removal_policy: RemovalPolicy = RemovalPolicy.REJECT
    
    # Vault locks
    min_lock_duration_seconds: int = 30 * DAY
    max_lock_duration_seconds: int = 5 * 365 * DAY
    liquidation_recipient: str = "liquidation-reserve"
    
    # Liquidity gate
    liquidity_window_seconds: int = DAY
    daily_liquidity_bps: int = 1000  # 10% of locked collateral
    
    # Escrow death clock
    death_clock_grace_seconds: int = 180 * DAY
    default_pool_account: str = "global-citizen-block"
    
    def era_policy(self, era: Era) -> EraPolicy:
        return self.era_policies[era]
    
    def validate(self) -> "LedgerConfig":
        """
        Validate parameter consistency.
        
        Raises:
            ValueError: describing the first inconsistent parameter
        """
        if self.max_total_supply <= 0:
            raise ValueError("max_total_supply must be positive")
        if self.supply_threshold < 0:
            raise ValueError("supply_threshold cannot be negative")
        if self.supply_threshold > self.max_total_supply:
            raise ValueError("supply_threshold cannot exceed max_total_supply")
        if self.unit_per_citizen <= 0 or self.equilibrium_unit <= 0:
            raise ValueError("unit_per_citizen and equilibrium_unit must be positive")
        
        for name in ("tolerance_bps", "burn_rate_bps", "daily_liquidity_bps"):
            value = getattr(self, name)
            if value < 0 or value > BPS_DENOMINATOR:
                raise ValueError(f"{name} must be between 0 and {BPS_DENOMINATOR}")
        
        for era in Era:
            policy = self.era_policies.get(era)
            if policy is None:
                raise ValueError(f"missing era policy for {era.value}")
            if policy.issuance_amount <= 0:
                raise ValueError(f"issuance amount for {era.value} must be positive")
            if not 0 <= policy.issuer_share_bps <= BPS_DENOMINATOR:
                raise ValueError(f"issuer share for {era.value} must be between 0 and {BPS_DENOMINATOR}")
        
        split_total = self.burn_rate_bps
        for recipient, bps in self.transfer_splits:
            if not recipient:
                raise ValueError("transfer split recipient cannot be empty")
            if bps < 0:
                raise ValueError(f"transfer split for {recipient} cannot be negative")
            split_total += bps
        if split_total > BPS_DENOMINATOR:
            raise ValueError("burn rate plus transfer splits cannot exceed 100%")
        
        if self.min_lock_duration_seconds <= 0:
            raise ValueError("min_lock_duration_seconds must be positive")
        if self.min_lock_duration_seconds > self.max_lock_duration_seconds:
            raise ValueError("min_lock_duration_seconds cannot exceed max_lock_duration_seconds")
        if self.attestation_freshness_seconds <= 0:
            raise ValueError("attestation_freshness_seconds must be positive")
        if not Decimal(0) <= self.min_confidence <= Decimal(1):
            raise ValueError("min_confidence must be between 0 and 1")
        if self.death_clock_grace_seconds <= 0 or self.liquidity_window_seconds <= 0:
            raise ValueError("grace period and liquidity window must be positive")
        if self.inactivity_threshold_seconds <= 0:
            raise ValueError("inactivity_threshold_seconds must be positive")
        return self
    
    # --------------------------------------------------------
    # Loaders
    # --------------------------------------------------------
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerConfig":
        """
        Build a config from a plain dict (e.g. a JSON file).
        
        Unknown keys are rejected. Amounts may be given as integers or
        integer strings; `era_policies` maps era names to
        {"issuance_amount", "issuer_share_bps"}.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key == "era_policies":
                policies = _default_era_policies()
                for era_name, entry in value.items():
                    policies[Era(era_name)] = EraPolicy(
                        issuance_amount=int(entry["issuance_amount"]),
                        issuer_share_bps=int(entry["issuer_share_bps"]),
                    )
                kwargs[key] = policies
            elif key == "transfer_splits":
                kwargs[key] = tuple((str(r), int(b)) for r, b in value)
            elif key == "min_confidence":
                kwargs[key] = _parse_decimal(value, key)
            elif key == "removal_policy":
                kwargs[key] = RemovalPolicy(value)
            elif key in ("verifier_key_b64", "counterparty_account",
                         "liquidation_recipient", "default_pool_account"):
                kwargs[key] = str(value)
            else:
                kwargs[key] = int(value)
        return cls(**kwargs).validate()
    
    @classmethod
    def from_json_file(cls, path: str) -> "LedgerConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
    
    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """
        Load configuration from SOVEREIGN_CONFIG_PATH (if set) and overlay
        the verifier key from SOVEREIGN_VERIFIER_KEY_B64.
        """
        config = cls.from_json_file(CONFIG_PATH) if CONFIG_PATH else cls()
        if VERIFIER_KEY_B64:
            config = replace(config, verifier_key_b64=VERIFIER_KEY_B64)
        return config.validate()


def _parse_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number")


def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"

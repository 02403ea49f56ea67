"""
Sovereign Ledger Core

Version: 1.0.0

An accounting engine for a unit-of-account token whose issuance is gated
by externally verified, signed presence attestations. It governs supply
issuance across three eras, deflationary burn, collateral locks,
cross-jurisdiction settlement and time-boxed escrow default.

Invariants:
- total_issued - total_burned equals everything held (balances, active
  locks, jurisdiction escrows)
- eras only advance: FOUNDATION -> SCARCITY -> EQUILIBRIUM
- an attestation nonce is consumed at most once
- a lock reaches at most one terminal state; an escrow flushes at most once

Usage:
    from sovereign_ledger import (
        LedgerConfig,
        LedgerCore,
        ManualClock,
        create_attestation,
        generate_verifier_keypair,
    )
    
    keypair = generate_verifier_keypair()
    core = LedgerCore(
        LedgerConfig(verifier_key_b64=keypair.verify_key_b64),
        clock=ManualClock(),
    )
    
    attestation = create_attestation(keypair, "alice", "nonce-1", core.clock.now(), "0.99")
    result = core.issue_on_presence("alice", attestation)
    core.transfer("alice", "bob", 4 * UNIT)
    
    # Every committed change is in the hash-chained event log
    assert core.verify_log().valid
"""

__version__ = "1.0.0"

# Configuration
from .config import (
    UNIT,
    BPS_DENOMINATOR,
    DAY,
    EraPolicy,
    LedgerConfig,
    RemovalPolicy,
)

# Errors
from .errors import (
    ErrorCode,
    LedgerError,
    ValidationError,
    StateConflictError,
    AuthorizationError,
    AuthenticationError,
)

# State
from .state import (
    Era,
    EraTransition,
    LockStatus,
    ActivationStatus,
    Account,
    SupplyState,
    LockRecord,
    JurisdictionEscrow,
    LedgerState,
)

# Canonicalization, hashing and signing
from .canonicalization import canonicalize
from .hashing import sha256_hash, payload_hash, chain_entry_hash
from .signing import (
    VerifierKeyPair,
    generate_verifier_keypair,
    sign_payload,
    verify_signature,
)

# Attestations
from .attestation import PresenceAttestation, AttestationValidator, create_attestation

# Events
from .events import (
    EventKind,
    LedgerEvent,
    EventLog,
    InMemoryEventBackend,
    JsonLinesEventBackend,
    ChainVerification,
    verify_chain,
    reconstruct_aggregates,
)

# Components
from .era import EraEngine
from .supply import SupplyLedger, TransferBreakdown, split_transfer
from .vitality import VitalityTracker
from .vault import VaultLockManager
from .liquidity import LiquidityGate
from .bridge import CrossJurisdictionBridge
from .death_clock import EscrowDeathClock, Urgency

# Caller tokens
from .caller_tokens import (
    CallerToken,
    CallerKeyRegistry,
    CallerAuthenticator,
    create_caller_token,
    request_action,
)

# Roles and core
from .roles import Role, RoleRegistry
from .core import LedgerCore, SystemClock, ManualClock


__all__ = [
    "__version__",
    
    # Configuration
    "UNIT",
    "BPS_DENOMINATOR",
    "DAY",
    "EraPolicy",
    "LedgerConfig",
    "RemovalPolicy",
    
    # Errors
    "ErrorCode",
    "LedgerError",
    "ValidationError",
    "StateConflictError",
    "AuthorizationError",
    "AuthenticationError",
    
    # State
    "Era",
    "EraTransition",
    "LockStatus",
    "ActivationStatus",
    "Account",
    "SupplyState",
    "LockRecord",
    "JurisdictionEscrow",
    "LedgerState",
    
    # Canonicalization / hashing / signing
    "canonicalize",
    "sha256_hash",
    "payload_hash",
    "chain_entry_hash",
    "VerifierKeyPair",
    "generate_verifier_keypair",
    "sign_payload",
    "verify_signature",
    
    # Attestations
    "PresenceAttestation",
    "AttestationValidator",
    "create_attestation",
    
    # Events
    "EventKind",
    "LedgerEvent",
    "EventLog",
    "InMemoryEventBackend",
    "JsonLinesEventBackend",
    "ChainVerification",
    "verify_chain",
    "reconstruct_aggregates",
    
    # Components
    "EraEngine",
    "SupplyLedger",
    "TransferBreakdown",
    "split_transfer",
    "VitalityTracker",
    "VaultLockManager",
    "LiquidityGate",
    "CrossJurisdictionBridge",
    "EscrowDeathClock",
    "Urgency",
    
    # Caller tokens
    "CallerToken",
    "CallerKeyRegistry",
    "CallerAuthenticator",
    "create_caller_token",
    "request_action",
    
    # Roles / core
    "Role",
    "RoleRegistry",
    "LedgerCore",
    "SystemClock",
    "ManualClock",
]

"""
Presence Attestation Validation

The ledger never evaluates biometric data. It receives an attestation
already signed by the external presence verifier and checks, in order:

1. the Ed25519 signature against the configured verifier key
2. that the attestation names the account being credited
3. freshness (not older than the freshness window, not from the future
   beyond the allowed clock skew)
4. that the nonce has not been consumed
5. that the liveness confidence meets the configured threshold

All checks run before any mutation; `consume` records the nonce.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from .canonicalization import canonicalize
from .config import LedgerConfig
from .errors import ErrorCode, ValidationError, require_identifier
from .hashing import attestation_hash
from .logging_config import audit_log
from .signing import VerifierKeyPair, sign_payload, verify_signature
from .state import LedgerState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresenceAttestation:
    """A signed, timestamped presence claim for one account."""
    account_id: str
    nonce: str
    timestamp: int
    confidence_score: Decimal
    signature: str
    
    def signing_payload(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
            "confidence_score": str(self.confidence_score),
        }
    
    def signing_bytes(self) -> bytes:
        return canonicalize(self.signing_payload())
    
    def content_hash(self) -> str:
        return attestation_hash(self.signing_payload())
    
    def to_dict(self) -> Dict[str, Any]:
        d = self.signing_payload()
        d["signature"] = self.signature
        return d
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PresenceAttestation":
        """
        Parse an attestation from wire form.
        
        Raises:
            ValidationError: MALFORMED_INPUT for missing or mistyped fields
        """
        try:
            account_id = require_identifier(data["account_id"], "account_id")
            nonce = require_identifier(data["nonce"], "nonce")
            timestamp = data["timestamp"]
            if isinstance(timestamp, bool) or not isinstance(timestamp, int):
                raise ValidationError(ErrorCode.MALFORMED_INPUT, "timestamp must be an integer epoch")
            confidence = Decimal(str(data["confidence_score"]))
            signature = data["signature"]
            if not isinstance(signature, str) or not signature:
                raise ValidationError(ErrorCode.MALFORMED_INPUT, "signature must be a base64 string")
        except KeyError as e:
            raise ValidationError(ErrorCode.MALFORMED_INPUT, f"missing field {e.args[0]}")
        except InvalidOperation:
            raise ValidationError(ErrorCode.MALFORMED_INPUT, "confidence_score must be a decimal")
        
        if not confidence.is_finite():
            raise ValidationError(ErrorCode.MALFORMED_INPUT, "confidence_score must be finite")
        
        return cls(
            account_id=account_id,
            nonce=nonce,
            timestamp=timestamp,
            confidence_score=confidence,
            signature=signature,
        )


def create_attestation(
    keypair: VerifierKeyPair,
    account_id: str,
    nonce: str,
    timestamp: int,
    confidence_score: Any
) -> PresenceAttestation:
    """Sign a presence attestation (verifier side; used by tools and tests)."""
    unsigned = PresenceAttestation(
        account_id=account_id,
        nonce=nonce,
        timestamp=timestamp,
        confidence_score=Decimal(str(confidence_score)),
        signature="",
    )
    signature = sign_payload(unsigned.signing_bytes(), keypair.signing_key)
    return PresenceAttestation(
        account_id=account_id,
        nonce=nonce,
        timestamp=timestamp,
        confidence_score=unsigned.confidence_score,
        signature=signature,
    )


class AttestationValidator:
    """Validates attestations and maintains the consumed-nonce set."""
    
    def __init__(self, config: LedgerConfig):
        self.config = config
    
    def validate(
        self,
        state: LedgerState,
        account_id: str,
        attestation: PresenceAttestation,
        now: int
    ) -> None:
        """
        Raises:
            ValidationError: INVALID_ATTESTATION, STALE_ATTESTATION,
                REPLAYED_ATTESTATION or LOW_CONFIDENCE
        """
        cfg = self.config
        
        if not cfg.verifier_key_b64 or not verify_signature(
            attestation.signing_bytes(), attestation.signature, cfg.verifier_key_b64
        ):
            audit_log.security_event(
                "attestation_signature_invalid",
                severity="high",
                account_id=account_id,
                nonce=attestation.nonce,
            )
            raise ValidationError(ErrorCode.INVALID_ATTESTATION, "signature does not verify")
        
        if attestation.account_id != account_id:
            raise ValidationError(
                ErrorCode.INVALID_ATTESTATION,
                "attestation was issued for a different account",
                {"attested_account": attestation.account_id}
            )
        
        age = now - attestation.timestamp
        if age > cfg.attestation_freshness_seconds or age < -cfg.max_clock_skew_seconds:
            raise ValidationError(
                ErrorCode.STALE_ATTESTATION,
                f"attestation age {age}s outside {cfg.attestation_freshness_seconds}s window",
                {"age_seconds": age}
            )
        
        if attestation.nonce in state.consumed_nonces:
            audit_log.security_event(
                "attestation_replay",
                severity="high",
                account_id=account_id,
                nonce=attestation.nonce,
            )
            raise ValidationError(ErrorCode.REPLAYED_ATTESTATION, f"nonce {attestation.nonce} already consumed")
        
        if attestation.confidence_score < cfg.min_confidence:
            raise ValidationError(
                ErrorCode.LOW_CONFIDENCE,
                f"confidence {attestation.confidence_score} below {cfg.min_confidence}",
            )
    
    def consume(self, state: LedgerState, attestation: PresenceAttestation, now: int) -> None:
        """Record the nonce and prune nonces whose attestations can no longer be fresh."""
        horizon = now - self.config.attestation_freshness_seconds - self.config.nonce_retention_margin_seconds
        pruned = state.prune_nonces(horizon)
        if pruned:
            logger.debug("pruned %d consumed nonces", pruned)
        state.consume_nonce(attestation.nonce, attestation.timestamp)

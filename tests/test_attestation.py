"""
Presence Attestation Tests

Wire parsing, signing payload and consumed-nonce retention.
"""

import unittest
from decimal import Decimal

from sovereign_ledger import (
    AttestationValidator,
    ErrorCode,
    LedgerState,
    PresenceAttestation,
    ValidationError,
    create_attestation,
    generate_verifier_keypair,
    verify_signature,
)

from ledger_fixtures import LedgerHarness


class TestAttestationParsing(unittest.TestCase):
    
    def setUp(self):
        self.keypair = generate_verifier_keypair()
        self.attestation = create_attestation(self.keypair, "alice", "n-1", 1000, "0.97")
    
    def test_round_trip_preserves_signature(self):
        parsed = PresenceAttestation.from_dict(self.attestation.to_dict())
        self.assertEqual(parsed, self.attestation)
        self.assertTrue(verify_signature(parsed.signing_bytes(), parsed.signature, self.keypair.verify_key_b64))
    
    def test_confidence_signed_as_decimal_string(self):
        payload = self.attestation.signing_payload()
        self.assertEqual(payload["confidence_score"], "0.97")
        self.assertEqual(self.attestation.confidence_score, Decimal("0.97"))
    
    def test_missing_field(self):
        data = self.attestation.to_dict()
        del data["signature"]
        with self.assertRaises(ValidationError) as ctx:
            PresenceAttestation.from_dict(data)
        self.assertEqual(ctx.exception.code, ErrorCode.MALFORMED_INPUT)
    
    def test_bad_field_types(self):
        for field, value in (("timestamp", "1000"), ("timestamp", True), ("confidence_score", "high"),
                             ("confidence_score", "NaN"), ("account_id", ""), ("signature", "")):
            data = self.attestation.to_dict()
            data[field] = value
            with self.assertRaises(ValidationError, msg=f"{field}={value!r}") as ctx:
                PresenceAttestation.from_dict(data)
            self.assertEqual(ctx.exception.code, ErrorCode.MALFORMED_INPUT)
    
    def test_garbage_signature_is_invalid_not_malformed(self):
        h = LedgerHarness()
        data = h.attest("alice").to_dict()
        data["signature"] = "not-base64!!"
        with self.assertRaises(ValidationError) as ctx:
            h.core.issue_on_presence("alice", data)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)
    
    def test_missing_verifier_key_rejects_everything(self):
        h = LedgerHarness(verifier_key_b64="")
        with self.assertRaises(ValidationError) as ctx:
            h.present("alice")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)


class TestNonceRetention(unittest.TestCase):
    
    def setUp(self):
        h = LedgerHarness()
        self.keypair = h.keypair
        self.validator = AttestationValidator(h.config)
        self.state = LedgerState()
    
    def test_consumed_nonce_recorded_with_timestamp(self):
        att = create_attestation(self.keypair, "alice", "n-1", 1000, "0.99")
        self.validator.consume(self.state, att, 1000)
        self.assertEqual(self.state.consumed_nonces, {"n-1": 1000})
    
    def test_old_nonces_pruned_after_retention_margin(self):
        old = create_attestation(self.keypair, "alice", "n-old", 1000, "0.99")
        self.validator.consume(self.state, old, 1000)
        
        # still inside freshness (60) plus margin (3600)
        recent = create_attestation(self.keypair, "alice", "n-2", 4660, "0.99")
        self.validator.consume(self.state, recent, 4660)
        self.assertIn("n-old", self.state.consumed_nonces)
        
        later = create_attestation(self.keypair, "alice", "n-3", 4661, "0.99")
        self.validator.consume(self.state, later, 4661)
        self.assertNotIn("n-old", self.state.consumed_nonces)
        self.assertIn("n-2", self.state.consumed_nonces)
    
    def test_pruned_nonce_still_rejected_as_stale(self):
        h = LedgerHarness()
        attestation = h.attest("alice")
        h.core.issue_on_presence("alice", attestation)
        h.clock.advance(2 * 3600)
        h.present("bob")
        self.assertNotIn(attestation.nonce, h.core.state.consumed_nonces)
        
        with self.assertRaises(ValidationError) as ctx:
            h.core.issue_on_presence("alice", attestation)
        self.assertEqual(ctx.exception.code, ErrorCode.STALE_ATTESTATION)


if __name__ == "__main__":
    unittest.main(verbosity=2)

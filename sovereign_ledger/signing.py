"""
Presence Attestation Signing

Uses Ed25519 (RFC 8032) via PyNaCl. The ledger only ever verifies; the
signing half exists for the external presence verifier, the CLI and tests.
"""

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'), validate=True)


@dataclass
class VerifierKeyPair:
    """Ed25519 key pair of a presence verifier."""
    key_id: str
    signing_key: bytes
    verify_key: bytes
    algorithm: str = "Ed25519"
    
    @property
    def verify_key_b64(self) -> str:
        return b64e(self.verify_key)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "kid": self.key_id,
            "algorithm": self.algorithm,
            "private_key_b64": b64e(self.signing_key),
            "public_key_b64": b64e(self.verify_key),
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifierKeyPair":
        signing_key = SigningKey(b64d(data["private_key_b64"]))
        return cls(
            key_id=data["kid"],
            signing_key=bytes(signing_key),
            verify_key=bytes(signing_key.verify_key),
        )
    
    @classmethod
    def from_json_file(cls, path: str) -> "VerifierKeyPair":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def generate_verifier_keypair(key_id: str = "presence-verifier-01") -> VerifierKeyPair:
    """Generate a fresh Ed25519 key pair for a presence verifier."""
    signing_key = SigningKey.generate()
    return VerifierKeyPair(
        key_id=key_id,
        signing_key=bytes(signing_key),
        verify_key=bytes(signing_key.verify_key),
    )


def sign_payload(payload: bytes, signing_key: bytes) -> str:
    """Sign bytes with an Ed25519 signing key; returns base64 signature."""
    key = SigningKey(signing_key)
    return b64e(key.sign(payload).signature)


def verify_signature(payload: bytes, signature_b64: str, verify_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.
    
    Malformed base64, wrong-length keys and bad signatures all yield False.
    """
    try:
        signature = b64d(signature_b64)
        key = VerifyKey(b64d(verify_key_b64))
        key.verify(payload, signature)
        return True
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        return False

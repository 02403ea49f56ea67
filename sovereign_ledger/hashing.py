"""
Ledger Hashing

All hashes use SHA-256 with lowercase hexadecimal output and a
"sha256:" prefix. Event-log entries are chained: each entry hash covers
the previous entry hash and the entry's own payload hash.
"""

import hashlib
from typing import Optional, Union

from .canonicalization import canonicalize


GENESIS_ENTRY_HASH = "sha256:" + "0" * 64


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in ledger format.
    
    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    
    digest = hashlib.sha256(data).hexdigest().lower()
    return f"sha256:{digest}"


def payload_hash(payload: dict) -> str:
    """Hash of the canonical encoding of an event payload."""
    return sha256_hash(canonicalize(payload))


def attestation_hash(payload: dict) -> str:
    """Content hash of a presence-attestation signing payload."""
    return sha256_hash(canonicalize(payload))


def chain_entry_hash(prev_entry_hash: Optional[str], entry_payload_hash: str) -> str:
    """
    Compute the hash-chain entry hash.
    
    Args:
        prev_entry_hash: Hash of the previous entry (None for the first)
        entry_payload_hash: Hash of the current entry's payload
    
    Returns:
        SHA-256 hash of the concatenated hashes
    """
    prev = prev_entry_hash or GENESIS_ENTRY_HASH
    return sha256_hash(prev + entry_payload_hash)

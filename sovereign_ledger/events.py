"""
Ledger Event Log

Append-only, hash-chained audit log. Every committed transaction appends
one or more entries; each entry records the aggregate supply values
before and after it so the supply history can be reconstructed and
checked from the log alone.

Components never write to the log directly. They emit into the state's
outbox, which is rolled back with the rest of the state when a
transaction fails and drained into the log when it commits.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .hashing import chain_entry_hash, payload_hash
from .state import LedgerState


class EventKind(str, Enum):
    ACCOUNT_VERIFIED = "ACCOUNT_VERIFIED"
    ISSUANCE = "ISSUANCE"
    ERA_TRANSITION = "ERA_TRANSITION"
    TRANSFER = "TRANSFER"
    BURN = "BURN"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"
    LIQUIDATE = "LIQUIDATE"
    INACTIVITY_REMOVAL = "INACTIVITY_REMOVAL"
    REVITALIZATION = "REVITALIZATION"
    LOCAL_ISSUE = "LOCAL_ISSUE"
    LOCAL_REDEEM = "LOCAL_REDEEM"
    CROSS_JURISDICTION_TRANSFER = "CROSS_JURISDICTION_TRANSFER"
    DEATH_CLOCK_START = "DEATH_CLOCK_START"
    ESCROW_ACTIVATION = "ESCROW_ACTIVATION"
    DEATH_CLOCK_FLUSH = "DEATH_CLOCK_FLUSH"
    ROLE_GRANTED = "ROLE_GRANTED"
    ROLE_REVOKED = "ROLE_REVOKED"


@dataclass(frozen=True)
class PendingEvent:
    kind: EventKind
    timestamp: int
    payload: Dict[str, Any]
    pre: Dict[str, Any]
    post: Dict[str, Any]


@dataclass(frozen=True)
class LedgerEvent:
    """Immutable committed log entry."""
    seq: int
    kind: EventKind
    timestamp: int
    payload: Dict[str, Any]
    pre: Dict[str, Any]
    post: Dict[str, Any]
    payload_hash: str
    prev_hash: Optional[str]
    entry_hash: str
    
    def body(self) -> Dict[str, Any]:
        """The hashed portion of the entry."""
        return {
            "seq": self.seq,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "pre": self.pre,
            "post": self.post,
        }
    
    def to_dict(self) -> Dict[str, Any]:
        d = self.body()
        d.update({
            "payload_hash": self.payload_hash,
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        })
        return d
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEvent":
        return cls(
            seq=int(data["seq"]),
            kind=EventKind(data["kind"]),
            timestamp=int(data["timestamp"]),
            payload=data["payload"],
            pre=data["pre"],
            post=data["post"],
            payload_hash=data["payload_hash"],
            prev_hash=data.get("prev_hash"),
            entry_hash=data["entry_hash"],
        )


def emit(
    state: LedgerState,
    kind: EventKind,
    timestamp: int,
    payload: Dict[str, Any],
    pre: Dict[str, Any]
) -> None:
    """Queue an event in the state's outbox; `post` is taken from the current supply."""
    state.outbox.append(PendingEvent(
        kind=kind,
        timestamp=timestamp,
        payload=payload,
        pre=pre,
        post=state.supply.aggregates(),
    ))


def drain_outbox(state: LedgerState) -> List[PendingEvent]:
    pending = list(state.outbox)
    state.outbox = []
    return pending


# ============================================================
# Storage backends
# ============================================================

class EventLogBackend(ABC):
    """Where committed entries are persisted."""
    
    @abstractmethod
    def write_batch(self, events: List[LedgerEvent]) -> None:
        """Persist all of `events` or none of them; raise on failure."""
    
    @abstractmethod
    def load(self) -> List[LedgerEvent]:
        pass


class InMemoryEventBackend(EventLogBackend):
    """Keeps nothing beyond the EventLog's own list."""
    
    def write_batch(self, events: List[LedgerEvent]) -> None:
        return None
    
    def load(self) -> List[LedgerEvent]:
        return []


class JsonLinesEventBackend(EventLogBackend):
    """Appends one canonical JSON object per line to a local file."""
    
    def __init__(self, path: str):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
    
    def write_batch(self, events: List[LedgerEvent]) -> None:
        data = "".join(json.dumps(e.to_dict(), sort_keys=True) + "\n" for e in events).encode("utf-8")
        with open(self._path, "ab") as f:
            start = f.tell()
            try:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            except OSError:
                # drop a partially written batch
                f.truncate(start)
                raise
    
    def load(self) -> List[LedgerEvent]:
        if not self._path.exists():
            return []
        entries = []
        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(LedgerEvent.from_dict(json.loads(line)))
        return entries


# ============================================================
# Event log
# ============================================================

class EventLog:
    """
    Append-only hash-chained event log.
    
    Thread-safe; entries are never modified or removed. A batch reaches
    the backend and the in-memory list together or not at all.
    """
    
    def __init__(self, backend: Optional[EventLogBackend] = None):
        self._backend = backend if backend is not None else InMemoryEventBackend()
        self._lock = threading.Lock()
        self._entries: List[LedgerEvent] = list(self._backend.load())
    
    def append_all(self, pending: Iterable[PendingEvent]) -> List[LedgerEvent]:
        """
        Chain and persist `pending` as one batch.
        
        Raises:
            OSError (or whatever the backend raises): nothing was appended
        """
        with self._lock:
            prev = self._entries[-1].entry_hash if self._entries else None
            seq = len(self._entries)
            staged: List[LedgerEvent] = []
            for item in pending:
                seq += 1
                body = {
                    "seq": seq,
                    "kind": item.kind.value,
                    "timestamp": item.timestamp,
                    "payload": item.payload,
                    "pre": item.pre,
                    "post": item.post,
                }
                p_hash = payload_hash(body)
                event = LedgerEvent(
                    seq=seq,
                    kind=item.kind,
                    timestamp=item.timestamp,
                    payload=item.payload,
                    pre=item.pre,
                    post=item.post,
                    payload_hash=p_hash,
                    prev_hash=prev,
                    entry_hash=chain_entry_hash(prev, p_hash),
                )
                staged.append(event)
                prev = event.entry_hash
            
            if staged:
                self._backend.write_batch(staged)
                self._entries.extend(staged)
        return staged
    
    def entries(self) -> List[LedgerEvent]:
        with self._lock:
            return list(self._entries)
    
    def query(
        self,
        kind: Optional[EventKind] = None,
        since_seq: int = 0,
        limit: Optional[int] = None
    ) -> List[LedgerEvent]:
        records = [e for e in self.entries() if e.seq > since_seq]
        if kind:
            records = [e for e in records if e.kind == kind]
        if limit is not None:
            records = records[:limit]
        return records
    
    def latest_entry_hash(self) -> Optional[str]:
        with self._lock:
            return self._entries[-1].entry_hash if self._entries else None
    
    def export(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries()]
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================
# Verification
# ============================================================

@dataclass
class ChainVerification:
    valid: bool
    entries_checked: int
    failed_seq: Optional[int] = None
    reason: Optional[str] = None
    final_aggregates: Dict[str, Any] = field(default_factory=dict)


def verify_chain(entries: List[Dict[str, Any]]) -> ChainVerification:
    """
    Verify an exported log: payload hashes, hash links, sequence numbers
    and pre/post aggregate continuity between consecutive entries.
    """
    prev_hash: Optional[str] = None
    prev_post: Optional[Dict[str, Any]] = None
    
    for index, raw in enumerate(entries, start=1):
        seq = raw.get("seq")
        if seq != index:
            return ChainVerification(False, index - 1, seq, "sequence gap")
        
        body = {k: raw[k] for k in ("seq", "kind", "timestamp", "payload", "pre", "post")}
        if payload_hash(body) != raw.get("payload_hash"):
            return ChainVerification(False, index - 1, seq, "payload hash mismatch")
        if raw.get("prev_hash") != prev_hash:
            return ChainVerification(False, index - 1, seq, "broken link")
        if chain_entry_hash(prev_hash, raw["payload_hash"]) != raw.get("entry_hash"):
            return ChainVerification(False, index - 1, seq, "entry hash mismatch")
        if prev_post is not None and raw["pre"] != prev_post:
            return ChainVerification(False, index - 1, seq, "aggregate discontinuity")
        
        prev_hash = raw["entry_hash"]
        prev_post = raw["post"]
    
    return ChainVerification(True, len(entries), final_aggregates=dict(prev_post or {}))


def reconstruct_aggregates(entries: List[Dict[str, Any]]) -> Tuple[int, int, str]:
    """
    Rebuild (total_issued, total_burned, era) from event payloads alone.
    
    Issuance, burn and era events carry the amounts that moved; summing
    them must reproduce the recorded post aggregates of the last entry.
    """
    issued = 0
    burned = 0
    era = "FOUNDATION"
    for raw in entries:
        kind = raw["kind"]
        payload = raw["payload"]
        if kind in (EventKind.ISSUANCE.value, EventKind.REVITALIZATION.value):
            issued += int(payload["issued"])
        elif kind in (EventKind.BURN.value, EventKind.INACTIVITY_REMOVAL.value):
            burned += int(payload["burned"])
        elif kind == EventKind.ERA_TRANSITION.value:
            era = payload["new_era"]
    return issued, burned, era

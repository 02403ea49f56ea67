"""
Structured logging for the ledger.

Library modules log through `logging.getLogger(__name__)`. Audit records
(commits, rejections, era changes, suspicious attestations) go through the
`audit_log` singleton so they carry a fixed `audit` field set that log
shippers can index on.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import List, Optional

# Set per HTTP request by the service middleware; empty outside a request
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

AUDIT_LOGGER_NAME = "sovereign_ledger.audit"

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record. Audit fields are merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        audit = getattr(record, "audit", None)
        if audit:
            entry.update(audit)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, sort_keys=True)


class LedgerAuditLogger:
    """
    Typed audit records for ledger activity.

    Committed changes are also in the event log; rejections and suspicious
    attestations appear only here.
    """

    def __init__(self, name: str = AUDIT_LOGGER_NAME):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, kind: str, message: str, **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, message, extra={"audit": {"audit_kind": kind, **fields}})

    def transaction_committed(
        self,
        operation: str,
        caller: Optional[str],
        event_kinds: List[str],
        last_seq: Optional[int] = None
    ) -> None:
        self._emit(
            logging.INFO, "COMMIT", f"{operation} committed ({len(event_kinds)} events)",
            operation=operation, caller=caller, event_kinds=event_kinds, last_seq=last_seq,
        )

    def transaction_rejected(
        self,
        operation: str,
        caller: Optional[str],
        code: str,
        category: str,
        detail: str = ""
    ) -> None:
        # authorization failures are worth a louder level than ordinary conflicts
        level = logging.WARNING if category == "AUTHORIZATION" else logging.INFO
        self._emit(
            level, "REJECT", f"{operation} rejected: {code}",
            operation=operation, caller=caller, code=code, category=category, detail=detail,
        )

    def era_transition(self, old_era: str, new_era: str, reason: str, supply: str) -> None:
        self._emit(
            logging.WARNING, "ERA_TRANSITION", f"era {old_era} -> {new_era} ({reason})",
            old_era=old_era, new_era=new_era, reason=reason, circulating=supply,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        """Forged or replayed attestations, and anything else an operator should see."""
        self._emit(
            SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY", f"security: {event}",
            security_event=event, severity=severity, **details,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Install handlers on the root logger, replacing any already present.

    Args:
        level: Log level name
        json_format: JSON lines (production) or a plain text line per record
        log_file: Optional file to receive the same records as stdout
    """
    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)-7s %(name)s: %(message)s')

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if absent."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = LedgerAuditLogger()

import logging
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sovereign_ledger.caller_tokens import CallerAuthenticator, CallerKeyRegistry, request_action
from sovereign_ledger.config import (
    BOOTSTRAP_ADMIN,
    CALLER_KEYS_PATH,
    EVENT_LOG_PATH,
    LOG_LEVEL,
    READ_RPM,
    WRITE_RPM,
    LedgerConfig,
    is_production,
)
from sovereign_ledger.core import LedgerCore
from sovereign_ledger.errors import ErrorCode, LedgerError, ValidationError
from sovereign_ledger.events import EventKind, EventLog, JsonLinesEventBackend
from sovereign_ledger.logging_config import configure_logging, set_request_id
from sovereign_ledger.roles import Role

from .models import (
    BridgeRequest,
    CallerKeyRequest,
    CrossTransferRequest,
    IssueRequest,
    LockRequest,
    RoleRequest,
    SweepRequest,
    TransferRequest,
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

app = FastAPI(title="Sovereign Ledger Core")

STATUS_BY_CATEGORY = {
    "VALIDATION": 400,
    "AUTHENTICATION": 401,
    "AUTHORIZATION": 403,
    "STATE_CONFLICT": 409,
}
NOT_FOUND_CODES = {ErrorCode.LOCK_NOT_FOUND, ErrorCode.JURISDICTION_NOT_FOUND}

write_limiter = RateLimiter(WRITE_RPM)
read_limiter = RateLimiter(READ_RPM)
CORE: Optional[LedgerCore] = None
AUTHENTICATOR: Optional[CallerAuthenticator] = None


def build_core() -> LedgerCore:
    """Build the core from environment configuration."""
    backend = JsonLinesEventBackend(EVENT_LOG_PATH) if EVENT_LOG_PATH else None
    return LedgerCore(
        LedgerConfig.from_env(),
        event_log=EventLog(backend),
        admins=[BOOTSTRAP_ADMIN],
    )


def build_authenticator() -> CallerAuthenticator:
    """Caller keys from SOVEREIGN_CALLER_KEYS_PATH; without it only /callers can add any."""
    registry = CallerKeyRegistry.from_json_file(CALLER_KEYS_PATH) if CALLER_KEYS_PATH else CallerKeyRegistry()
    if not registry.callers():
        logger.warning("no caller keys registered; authenticated endpoints will answer 401")
    return CallerAuthenticator(registry)


def init_core(
    core: Optional[LedgerCore] = None,
    authenticator: Optional[CallerAuthenticator] = None
) -> LedgerCore:
    global CORE, AUTHENTICATOR
    CORE = core if core is not None else build_core()
    AUTHENTICATOR = authenticator if authenticator is not None else build_authenticator()
    write_limiter.reset()
    read_limiter.reset()
    return CORE


@app.on_event("startup")
def _startup():
    configure_logging(LOG_LEVEL, json_format=is_production())
    if CORE is None:
        init_core()


def core() -> LedgerCore:
    if CORE is None or AUTHENTICATOR is None:
        raise HTTPException(503, "LEDGER_NOT_INITIALIZED")
    return CORE


def caller_id(request: Request, token: Optional[str]) -> str:
    """The identity proven by the X-Ledger-Caller-Token header for this request."""
    ledger = core()
    action = request_action(request.method, request.url.path)
    return AUTHENTICATOR.authenticate(token, action, ledger.clock.now())


def _throttle(limiter: RateLimiter, key: str) -> None:
    decision = limiter.hit(key)
    if not decision.allowed:
        logger.warning("rate limit hit for %s", key)
        raise HTTPException(
            429,
            detail={"code": "RATE_LIMITED", "retry_after": decision.retry_after},
            headers={"Retry-After": str(decision.retry_after)},
        )


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def limit_write(caller: str) -> None:
    _throttle(write_limiter, f"write:{caller}")


def limit_anonymous_write(request: Request) -> None:
    _throttle(write_limiter, f"write:client:{_client(request)}")


def limit_read(request: Request) -> None:
    _throttle(read_limiter, f"read:{_client(request)}")


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status = 404 if exc.code in NOT_FOUND_CODES else STATUS_BY_CATEGORY.get(exc.category, 400)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError(ErrorCode.MALFORMED_INPUT, "request body failed validation")
    content = error.to_dict()
    content["details"] = {"errors": [str(e.get("msg")) for e in exc.errors()]}
    return JSONResponse(status_code=400, content={"error": content})


# ============================================================
# Health and reads
# ============================================================

@app.get("/health")
def health():
    return {"status": "ok", "events": len(core().event_log)}


@app.get("/supply")
def supply_snapshot(request: Request):
    limit_read(request)
    return core().supply_snapshot()


@app.get("/supply/status")
def supply_status(request: Request):
    limit_read(request)
    return core().supply_status()


@app.get("/supply/active")
def active_supply(request: Request):
    limit_read(request)
    return core().active_supply_snapshot().to_dict()


@app.get("/eras")
def era_history(request: Request):
    limit_read(request)
    return core().era_history()


@app.get("/accounts/{account_id}")
def get_account(account_id: str, request: Request):
    limit_read(request)
    account = core().account(account_id)
    if account is None:
        raise HTTPException(404, "NOT_FOUND")
    return account


@app.get("/accounts/{account_id}/locks")
def account_locks(account_id: str, request: Request):
    limit_read(request)
    return [r.to_dict() for r in core().locks_of(account_id)]


@app.get("/accounts/{account_id}/liquidity")
def account_liquidity(account_id: str, request: Request):
    limit_read(request)
    return core().remaining_allowance(account_id).to_dict()


@app.get("/escrows")
def escrow_summaries(request: Request):
    limit_read(request)
    return core().death_clock_summaries()


@app.get("/escrows/stats")
def escrow_stats(request: Request):
    limit_read(request)
    stats = core().flush_stats()
    stats["eligible_for_flush"] = core().flush_eligible()
    return stats


@app.get("/escrows/{code}")
def escrow_status(code: str, request: Request):
    limit_read(request)
    return core().escrow_status(code)


@app.get("/events")
def list_events(request: Request, kind: Optional[str] = None, since_seq: int = 0, limit: Optional[int] = None):
    limit_read(request)
    if kind is not None and kind not in EventKind.__members__:
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"unknown event kind {kind}")
    return [e.to_dict() for e in core().events(kind, since_seq, limit)]


@app.get("/events/verify")
def verify_events(request: Request):
    limit_read(request)
    result = core().verify_log()
    return {
        "valid": result.valid,
        "entries_checked": result.entries_checked,
        "failed_seq": result.failed_seq,
        "reason": result.reason,
        "final_aggregates": result.final_aggregates,
    }


# ============================================================
# Supply writes
# ============================================================

@app.post("/presence")
def issue_on_presence(req: IssueRequest):
    limit_write(req.account_id)
    attestation = req.attestation.model_dump()
    attestation["confidence_score"] = str(attestation["confidence_score"])
    return core().issue_on_presence(req.account_id, attestation).to_dict()


@app.post("/transfers")
def transfer(req: TransferRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().transfer(caller, req.to, req.amount).to_dict()


@app.post("/vitality/sweep")
def sweep_inactivity(req: SweepRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().sweep_inactivity(caller, req.account_id).to_dict()


# ============================================================
# Vault
# ============================================================

@app.post("/locks")
def create_lock(req: LockRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().lock(caller, req.amount, req.duration).to_dict()


@app.post("/locks/{lock_id}/unlock")
def unlock(lock_id: str, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().unlock(caller, lock_id).to_dict()


@app.post("/locks/{lock_id}/liquidate")
def liquidate(lock_id: str, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().liquidate(caller, lock_id).to_dict()


# ============================================================
# Bridge
# ============================================================

@app.post("/bridge/issue")
def issue_local(req: BridgeRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().issue_local(caller, req.jurisdiction, req.amount).to_dict()


@app.post("/bridge/redeem")
def redeem_local(req: BridgeRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().redeem_local(caller, req.jurisdiction, req.amount).to_dict()


@app.post("/bridge/cross")
def cross_transfer(req: CrossTransferRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().cross_transfer(
        caller, req.from_jurisdiction, req.to_jurisdiction, req.recipient, req.amount
    ).to_dict()


# ============================================================
# Death clock
# ============================================================

@app.post("/escrows/sweep")
def sweep_expired(request: Request):
    limit_anonymous_write(request)
    return {"flushed": core().sweep_all_expired()}


@app.post("/escrows/{code}/activate")
def activate(code: str, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    return core().activate(caller, code).to_dict()


@app.post("/escrows/{code}/flush")
def flush(code: str, request: Request):
    limit_anonymous_write(request)
    return {"jurisdiction": code, "flushed_amount": str(core().flush(code))}


# ============================================================
# Roles
# ============================================================

def _role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(ErrorCode.MALFORMED_INPUT, f"unknown role {value}")


@app.post("/roles/grant")
def grant_role(req: RoleRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    core().grant_role(caller, req.grantee, _role(req.role))
    return {"granted": True, "grantee": req.grantee, "role": req.role}


@app.post("/roles/revoke")
def revoke_role(req: RoleRequest, request: Request, x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    removed = core().revoke_role(caller, req.grantee, _role(req.role))
    return {"revoked": removed, "grantee": req.grantee, "role": req.role}


# ============================================================
# Caller keys
# ============================================================

@app.post("/callers")
def register_caller_key(req: CallerKeyRequest, request: Request,
                        x_ledger_caller_token: Optional[str] = Header(default=None)):
    caller = caller_id(request, x_ledger_caller_token)
    limit_write(caller)
    core().roles.require(caller, Role.ADMIN)
    AUTHENTICATOR.registry.register(req.caller, req.kid, req.verify_key_b64)
    logger.info("caller key %s registered for %s by %s", req.kid, req.caller, caller)
    return {"registered": True, "caller": req.caller, "kid": req.kid}

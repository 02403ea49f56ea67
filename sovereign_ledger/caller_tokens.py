"""
Caller Tokens

Identity for the service's authenticated calls. A caller signs a short
token with an Ed25519 key registered to its identity; the token names one
request (method and path), carries an expiry and a nonce, and is accepted
once. The role checks in the core then apply to the identity the token
proves, never to a name the client merely claims.

Token wire form: base64url of the canonical JSON of

    {"caller", "kid", "action", "issued_at", "expires_at", "nonce", "sig_b64"}

where the signature covers the canonical JSON of every other field.
"""

import base64
import binascii
import heapq
import json
import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .canonicalization import canonicalize
from .errors import AuthenticationError, ErrorCode, ValidationError, require_identifier
from .logging_config import audit_log
from .signing import VerifierKeyPair, b64d, sign_payload, verify_signature

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 60
MAX_TOKEN_TTL_SECONDS = 300
MAX_CLOCK_SKEW_SECONDS = 5


def request_action(method: str, path: str) -> str:
    return f"{method.upper()} {path}"


@dataclass(frozen=True)
class CallerToken:
    caller: str
    kid: str
    action: str
    issued_at: int
    expires_at: int
    nonce: str
    sig_b64: str = ""
    
    def signing_payload(self) -> Dict[str, Any]:
        return {
            "caller": self.caller,
            "kid": self.kid,
            "action": self.action,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "nonce": self.nonce,
        }
    
    def signing_bytes(self) -> bytes:
        return canonicalize(self.signing_payload())
    
    def to_dict(self) -> Dict[str, Any]:
        d = self.signing_payload()
        d["sig_b64"] = self.sig_b64
        return d
    
    def encode(self) -> str:
        return base64.urlsafe_b64encode(canonicalize(self.to_dict())).decode("ascii")
    
    @classmethod
    def decode(cls, value: str) -> "CallerToken":
        """
        Raises:
            AuthenticationError: INVALID_CALLER_TOKEN when the token is not well formed
        """
        try:
            data = json.loads(base64.urlsafe_b64decode(value.encode("ascii")))
            token = cls(
                caller=require_identifier(data["caller"], "caller"),
                kid=require_identifier(data["kid"], "kid"),
                action=str(data["action"]),
                issued_at=data["issued_at"],
                expires_at=data["expires_at"],
                nonce=require_identifier(data["nonce"], "nonce"),
                sig_b64=str(data["sig_b64"]),
            )
        except (ValueError, KeyError, TypeError, UnicodeError, binascii.Error, ValidationError) as e:
            raise AuthenticationError(ErrorCode.INVALID_CALLER_TOKEN, f"malformed caller token: {e}")
        
        for name in ("issued_at", "expires_at"):
            value = getattr(token, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise AuthenticationError(ErrorCode.INVALID_CALLER_TOKEN, f"{name} must be an integer")
        return token


def create_caller_token(
    keypair: VerifierKeyPair,
    caller: str,
    action: str,
    issued_at: int,
    ttl: int = DEFAULT_TOKEN_TTL_SECONDS,
    nonce: Optional[str] = None
) -> CallerToken:
    """Sign a token for one request. The key pair's `key_id` is the token's kid."""
    unsigned = CallerToken(
        caller=caller,
        kid=keypair.key_id,
        action=action,
        issued_at=issued_at,
        expires_at=issued_at + ttl,
        nonce=nonce or secrets.token_hex(16),
    )
    signature = sign_payload(unsigned.signing_bytes(), keypair.signing_key)
    return CallerToken(**{**unsigned.signing_payload(), "sig_b64": signature})


class CallerKeyRegistry:
    """Public keys registered per caller identity, by key id."""
    
    def __init__(self, keys: Optional[Dict[str, Dict[str, str]]] = None):
        self._keys: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()
        for caller, by_kid in (keys or {}).items():
            for kid, verify_key_b64 in by_kid.items():
                self.register(caller, kid, verify_key_b64)
    
    def register(self, caller: str, kid: str, verify_key_b64: str) -> None:
        """
        Raises:
            ValidationError: MALFORMED_INPUT for an empty identity or a key
                that is not 32 bytes of base64
        """
        require_identifier(caller, "caller")
        require_identifier(kid, "kid")
        try:
            raw = b64d(verify_key_b64)
        except (ValueError, TypeError, UnicodeError, binascii.Error):
            raw = b""
        if len(raw) != 32:
            raise ValidationError(ErrorCode.MALFORMED_INPUT, "verify key must be 32 bytes of base64")
        with self._lock:
            self._keys.setdefault(caller, {})[kid] = verify_key_b64
    
    def key_for(self, caller: str, kid: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(caller, {}).get(kid)
    
    def callers(self) -> List[str]:
        with self._lock:
            return sorted(self._keys)
    
    def to_dict(self) -> Dict[str, Dict[str, str]]:
        with self._lock:
            return {caller: dict(by_kid) for caller, by_kid in self._keys.items()}
    
    @classmethod
    def from_json_file(cls, path: str) -> "CallerKeyRegistry":
        """Load `{"callers": {caller: {kid: verify_key_b64}}}`."""
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f).get("callers", {}))


class CallerAuthenticator:
    """
    Verifies caller tokens and remembers accepted nonces until their
    tokens expire.
    """
    
    def __init__(
        self,
        registry: CallerKeyRegistry,
        max_ttl: int = MAX_TOKEN_TTL_SECONDS,
        max_skew: int = MAX_CLOCK_SKEW_SECONDS
    ):
        self.registry = registry
        self.max_ttl = max_ttl
        self.max_skew = max_skew
        self._seen: Dict[Tuple[str, str], int] = {}
        self._expiry: List[Tuple[int, str, str]] = []
        self._lock = threading.Lock()
    
    def authenticate(self, value: Optional[str], action: str, now: int) -> str:
        """
        Return the caller identity proven by `value` for `action`.
        
        Raises:
            AuthenticationError: CALLER_TOKEN_REQUIRED, INVALID_CALLER_TOKEN,
                EXPIRED_CALLER_TOKEN or REPLAYED_CALLER_TOKEN
        """
        if not value:
            raise AuthenticationError(ErrorCode.CALLER_TOKEN_REQUIRED, "caller token is required")
        
        token = CallerToken.decode(value)
        verify_key = self.registry.key_for(token.caller, token.kid)
        if verify_key is None or not verify_signature(token.signing_bytes(), token.sig_b64, verify_key):
            audit_log.security_event(
                "caller_token_signature_invalid",
                severity="high",
                caller=token.caller,
                kid=token.kid,
            )
            raise AuthenticationError(ErrorCode.INVALID_CALLER_TOKEN, "caller token signature does not verify")
        
        if token.action != action:
            raise AuthenticationError(
                ErrorCode.INVALID_CALLER_TOKEN,
                f"token signed for {token.action!r}, not {action!r}",
            )
        
        if (
            token.issued_at > now + self.max_skew
            or token.expires_at <= now
            or token.expires_at - token.issued_at > self.max_ttl
        ):
            raise AuthenticationError(
                ErrorCode.EXPIRED_CALLER_TOKEN,
                f"token valid {token.issued_at}..{token.expires_at}, now {now}",
            )
        
        key = (token.caller, token.nonce)
        with self._lock:
            self._prune(now)
            if key in self._seen:
                audit_log.security_event("caller_token_replay", severity="high", caller=token.caller)
                raise AuthenticationError(ErrorCode.REPLAYED_CALLER_TOKEN, "caller token already used")
            self._seen[key] = token.expires_at
            heapq.heappush(self._expiry, (token.expires_at, token.caller, token.nonce))
        logger.debug("caller %s authenticated for %s", token.caller, action)
        return token.caller
    
    def _prune(self, now: int) -> None:
        while self._expiry and self._expiry[0][0] <= now:
            _, caller, nonce = heapq.heappop(self._expiry)
            self._seen.pop((caller, nonce), None)

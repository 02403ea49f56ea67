"""Shared builders for ledger tests: a small-threshold config, a manual clock and a verifier key."""

from sovereign_ledger import (
    UNIT,
    CallerKeyRegistry,
    LedgerConfig,
    LedgerCore,
    ManualClock,
    Role,
    create_attestation,
    create_caller_token,
    generate_verifier_keypair,
    request_action,
)

START = 1_700_000_000
ADMIN = "admin"
CALLERS = ("alice", "bob", "carol", "dave", "mallory", "ops", ADMIN)
TOKEN_HEADER = "X-Ledger-Caller-Token"


class LedgerHarness:
    """
    A LedgerCore wired to a ManualClock, with a test verifier key.
    
    Defaults: FOUNDATION issues 10 UNIT, the era threshold is 40 UNIT
    (four accounts), the supply cap 1000 UNIT.
    
    Every name in CALLERS has a caller key registered in `caller_registry`.
    """
    
    def __init__(self, **overrides):
        self.keypair = generate_verifier_keypair("test-verifier")
        self.clock = ManualClock(START)
        params = {
            "verifier_key_b64": self.keypair.verify_key_b64,
            "supply_threshold": 40 * UNIT,
            "max_total_supply": 1000 * UNIT,
        }
        params.update(overrides)
        self.config = LedgerConfig(**params)
        self.core = LedgerCore(self.config, clock=self.clock, admins=[ADMIN])
        self._nonce = 0
        self.caller_keys = {name: generate_verifier_keypair(f"{name}-k1") for name in CALLERS}
        self.caller_registry = CallerKeyRegistry(
            {name: {kp.key_id: kp.verify_key_b64} for name, kp in self.caller_keys.items()}
        )
    
    def next_nonce(self) -> str:
        self._nonce += 1
        return f"nonce-{self._nonce:06d}"
    
    def attest(self, account_id, confidence="0.99", timestamp=None, nonce=None, keypair=None):
        return create_attestation(
            keypair or self.keypair,
            account_id,
            nonce or self.next_nonce(),
            self.clock.now() if timestamp is None else timestamp,
            confidence,
        )
    
    def present(self, account_id, **kwargs):
        return self.core.issue_on_presence(account_id, self.attest(account_id, **kwargs))
    
    def grant(self, grantee, role: Role):
        self.core.grant_role(ADMIN, grantee, role)
    
    def reach_scarcity(self, accounts=("alice", "bob", "carol", "dave")):
        for name in accounts:
            self.present(name)
    
    def caller_token(self, caller, method, path, keypair=None, issued_at=None, ttl=60, nonce=None):
        return create_caller_token(
            keypair or self.caller_keys[caller],
            caller,
            request_action(method, path),
            self.clock.now() if issued_at is None else issued_at,
            ttl=ttl,
            nonce=nonce,
        )
    
    def auth(self, caller, method, path, **kwargs):
        """Headers for one authenticated request as `caller`."""
        return {TOKEN_HEADER: self.caller_token(caller, method, path, **kwargs).encode()}

"""HTTP service tests (FastAPI TestClient)."""

import base64
import dataclasses
import json

from sovereign_ledger import DAY, UNIT, CallerToken, Role, generate_verifier_keypair

from ledger_fixtures import ADMIN, TOKEN_HEADER


def attestation_body(harness, account_id, **kwargs):
    return {"account_id": account_id, "attestation": harness.attest(account_id, **kwargs).to_dict()}


def post_as(client, harness, caller, path, body=None, **token_kwargs):
    return client.post(path, json=body, headers=harness.auth(caller, "POST", path, **token_kwargs))


def open_lock(client, harness, account_id="alice"):
    client.post("/presence", json=attestation_body(harness, account_id))
    lock = post_as(client, harness, account_id, "/locks", {"amount": UNIT, "duration": 30 * DAY})
    assert lock.status_code == 200
    return lock.json()["lock_id"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_presence_issues_and_replay_is_rejected(client, harness):
    body = attestation_body(harness, "alice")
    r = client.post("/presence", json=body)
    assert r.status_code == 200
    assert r.json()["issued"] == str(10 * UNIT)
    
    r = client.post("/presence", json=body)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "REPLAYED_ATTESTATION"
    assert r.json()["error"]["category"] == "VALIDATION"


def test_transfer_debits_the_token_caller(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    r = post_as(client, harness, "alice", "/transfers", {"to": "bob", "amount": 4 * UNIT})
    assert r.status_code == 200
    assert r.json()["recipient_credit"] == str(4 * UNIT)
    assert client.get("/accounts/bob").json()["balance"] == str(4 * UNIT)


def test_invalid_body_maps_to_400(client, harness):
    r = post_as(client, harness, "alice", "/transfers", {"to": "bob", "amount": 0})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "MALFORMED_INPUT"


def test_state_conflict_maps_to_409(client, harness):
    r = post_as(client, harness, "alice", "/transfers", {"to": "bob", "amount": UNIT})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_BALANCE"


def test_privileged_calls_require_role(client, harness):
    lock_id = open_lock(client, harness)
    
    r = post_as(client, harness, "alice", f"/locks/{lock_id}/liquidate")
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "UNAUTHORIZED"
    
    r = post_as(client, harness, ADMIN, f"/locks/{lock_id}/liquidate")
    assert r.status_code == 200
    assert r.json()["status"] == "LIQUIDATED"
    assert [l["status"] for l in client.get("/accounts/alice/locks").json()] == ["LIQUIDATED"]


# ============================================================
# Caller authentication
# ============================================================

def test_missing_token_is_401(client, harness):
    lock_id = open_lock(client, harness)
    
    r = client.post(f"/locks/{lock_id}/liquidate")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "CALLER_TOKEN_REQUIRED"
    assert r.json()["error"]["category"] == "AUTHENTICATION"
    
    # the old self-declared header carries no identity
    r = client.post(f"/locks/{lock_id}/liquidate", headers={"X-Ledger-Caller": ADMIN})
    assert r.status_code == 401
    assert [l["status"] for l in client.get("/accounts/alice/locks").json()] == ["ACTIVE"]


def test_token_signed_with_another_callers_key_is_401(client, harness):
    lock_id = open_lock(client, harness)
    path = f"/locks/{lock_id}/liquidate"
    mallory = harness.caller_keys["mallory"]
    
    # mallory's key under mallory's kid, claiming to be admin
    r = post_as(client, harness, ADMIN, path, keypair=mallory)
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CALLER_TOKEN"
    
    # mallory's key presented under admin's kid
    impostor = dataclasses.replace(mallory, key_id=harness.caller_keys[ADMIN].key_id)
    r = post_as(client, harness, ADMIN, path, keypair=impostor)
    assert r.status_code == 401
    assert [l["status"] for l in client.get("/accounts/alice/locks").json()] == ["ACTIVE"]


def test_token_with_edited_caller_is_401(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    token = harness.caller_token("mallory", "POST", "/transfers").to_dict()
    token["caller"] = "alice"
    forged = base64.urlsafe_b64encode(json.dumps(token).encode()).decode()
    
    r = client.post("/transfers", json={"to": "mallory", "amount": 2 * UNIT}, headers={TOKEN_HEADER: forged})
    assert r.status_code == 401
    assert client.get("/accounts/alice").json()["balance"] == str(5 * UNIT)
    assert client.get("/accounts/mallory").status_code == 404


def test_garbage_token_is_401(client):
    r = client.post("/transfers", json={"to": "bob", "amount": 1}, headers={TOKEN_HEADER: "not-a-token"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CALLER_TOKEN"


def test_token_is_single_use(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    headers = harness.auth("alice", "POST", "/transfers")
    
    r = client.post("/transfers", json={"to": "bob", "amount": UNIT}, headers=headers)
    assert r.status_code == 200
    r = client.post("/transfers", json={"to": "bob", "amount": UNIT}, headers=headers)
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "REPLAYED_CALLER_TOKEN"
    assert client.get("/accounts/bob").json()["balance"] == str(UNIT)


def test_expired_token_is_401(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    headers = harness.auth("alice", "POST", "/transfers", ttl=60)
    harness.clock.advance(61)
    
    r = client.post("/transfers", json={"to": "bob", "amount": UNIT}, headers=headers)
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "EXPIRED_CALLER_TOKEN"


def test_token_bound_to_its_path(client, harness):
    lock_id = open_lock(client, harness)
    headers = harness.auth(ADMIN, "POST", f"/locks/{lock_id}/unlock")
    
    r = client.post(f"/locks/{lock_id}/liquidate", headers=headers)
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CALLER_TOKEN"


def test_admin_registers_caller_key(client, harness):
    erin = generate_verifier_keypair("erin-k1")
    body = {"caller": "erin", "kid": erin.key_id, "verify_key_b64": erin.verify_key_b64}
    
    r = post_as(client, harness, "mallory", "/callers", body)
    assert r.status_code == 403
    r = post_as(client, harness, "erin", "/transfers", {"to": "bob", "amount": 1}, keypair=erin)
    assert r.status_code == 401
    
    r = post_as(client, harness, ADMIN, "/callers", body)
    assert r.status_code == 200
    r = post_as(client, harness, "erin", "/transfers", {"to": "bob", "amount": 1}, keypair=erin)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_BALANCE"


def test_caller_token_encoding(harness):
    token = harness.caller_token("alice", "POST", "/transfers")
    assert CallerToken.decode(token.encode()) == token


# ============================================================
# Resources, flows and reads
# ============================================================

def test_unknown_lock_and_escrow_map_to_404(client, harness):
    r = post_as(client, harness, ADMIN, "/locks/lock-00000042/unlock")
    assert r.status_code == 404
    assert client.get("/escrows/KE").status_code == 404
    assert client.get("/accounts/nobody").status_code == 404


def test_role_grant_endpoint(client, harness):
    r = post_as(client, harness, ADMIN, "/roles/grant", {"grantee": "ops", "role": "VAULT_OPERATOR"})
    assert r.status_code == 200
    assert harness.core.roles.has_role("ops", Role.VAULT_OPERATOR)
    
    r = post_as(client, harness, ADMIN, "/roles/grant", {"grantee": "ops", "role": "WIZARD"})
    assert r.status_code == 400


def test_bridge_and_death_clock_flow(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    r = post_as(client, harness, "alice", "/bridge/issue", {"jurisdiction": "KE", "amount": UNIT})
    assert r.status_code == 200
    
    status = client.get("/escrows/KE").json()
    assert status["death_clock"]["urgency"] == "NORMAL"
    
    harness.clock.advance(180 * DAY)
    assert client.get("/escrows/stats").json()["eligible_for_flush"] == ["KE"]
    assert client.post("/escrows/sweep").json() == {"flushed": 1}
    assert client.get("/escrows/KE").json()["activation_status"] == "FLUSHED"
    
    r = post_as(client, harness, "alice", "/bridge/redeem", {"jurisdiction": "KE", "amount": UNIT})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "JURISDICTION_FLUSHED"


def test_events_and_verification(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    events = client.get("/events", params={"kind": "ISSUANCE"}).json()
    assert len(events) == 1
    assert events[0]["payload"]["account_id"] == "alice"
    assert client.get("/events", params={"kind": "NOPE"}).status_code == 400
    
    verification = client.get("/events/verify").json()
    assert verification["valid"] is True
    assert verification["entries_checked"] == 2


def test_supply_reads(client, harness):
    client.post("/presence", json=attestation_body(harness, "alice"))
    snapshot = client.get("/supply").json()
    assert snapshot["era"] == "FOUNDATION"
    assert snapshot["circulating"] == str(10 * UNIT)
    status = client.get("/supply/status").json()
    assert status["threshold_progress_bps"] == 2500
    assert status["burn_active"] is False
    assert client.get("/supply/active").json()["active_accounts"] == 1


# ============================================================
# Throttling
# ============================================================

def test_write_rate_limit(client, harness, monkeypatch):
    from ledger_service import main
    from ledger_service.rate_limit import RateLimiter
    
    monkeypatch.setattr(main, "write_limiter", RateLimiter(2))
    responses = [post_as(client, harness, "alice", "/transfers", {"to": "bob", "amount": 1})
                 for _ in range(3)]
    assert [r.status_code for r in responses] == [409, 409, 429]
    assert int(responses[2].headers["Retry-After"]) >= 1
    assert responses[2].json()["detail"]["code"] == "RATE_LIMITED"
    
    # other callers have their own window
    r = post_as(client, harness, "carol", "/transfers", {"to": "bob", "amount": 1})
    assert r.status_code == 409


def test_escrow_sweeps_are_throttled_by_client(client, harness, monkeypatch):
    from ledger_service import main
    from ledger_service.rate_limit import RateLimiter
    
    monkeypatch.setattr(main, "write_limiter", RateLimiter(2))
    assert client.post("/escrows/sweep").status_code == 200
    assert client.post("/escrows/KE/flush").status_code == 404
    
    r = client.post("/escrows/sweep")
    assert r.status_code == 429
    assert r.json()["detail"]["code"] == "RATE_LIMITED"
    assert client.post("/escrows/KE/flush").status_code == 429


def test_request_id_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


def test_rate_limiter_window_slides():
    from ledger_service.rate_limit import RateLimiter
    
    now = [100.0]
    limiter = RateLimiter(2, window_seconds=10, clock=lambda: now[0])
    assert limiter.hit("k").remaining == 1
    assert limiter.hit("k").remaining == 0
    blocked = limiter.hit("k")
    assert not blocked.allowed and blocked.retry_after == 10
    
    now[0] = 110.0
    assert limiter.allow("k")
    limiter.reset("k")
    assert limiter.hit("k").remaining == 1

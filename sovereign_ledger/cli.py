#!/usr/bin/env python3
"""
Sovereign Ledger Command Line Interface

Usage:
    sovereign-ledger keygen [--output <file>] [--key-id <id>]
    sovereign-ledger attest --key <file> --account <id> [--nonce <n>] [--confidence <c>]
    sovereign-ledger caller-token --key <file> --caller <id> --path <path> [--method POST]
    sovereign-ledger demo
    sovereign-ledger verify-log --log <file>
"""

import argparse
import json
import secrets
import sys
import time
from typing import List, Optional


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def load_log(path: str) -> List[dict]:
    """Load an exported event log: a JSON array or one JSON object per line."""
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read().strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def cmd_keygen(args):
    """Generate a presence verifier key pair."""
    from sovereign_ledger import generate_verifier_keypair
    
    keypair = generate_verifier_keypair(args.key_id or "presence-verifier-01")
    
    if args.output:
        save_json(keypair.to_dict(), args.output)
        print(f"Key pair saved to: {args.output}")
    else:
        print(json.dumps(keypair.to_dict(), indent=2))
    
    print(f"\nVerifier public key (SOVEREIGN_VERIFIER_KEY_B64): {keypair.verify_key_b64}", file=sys.stderr)
    return 0


def cmd_attest(args):
    """Sign a presence attestation with a verifier key file."""
    from sovereign_ledger import VerifierKeyPair, create_attestation
    
    keypair = VerifierKeyPair.from_json_file(args.key)
    attestation = create_attestation(
        keypair,
        account_id=args.account,
        nonce=args.nonce or secrets.token_hex(16),
        timestamp=args.timestamp if args.timestamp is not None else int(time.time()),
        confidence_score=args.confidence,
    )
    
    if args.output:
        save_json(attestation.to_dict(), args.output)
        print(f"Attestation saved to: {args.output}")
    else:
        print(json.dumps(attestation.to_dict(), indent=2))
    return 0


def cmd_caller_token(args):
    """Sign a caller token for one service request (X-Ledger-Caller-Token)."""
    from sovereign_ledger import VerifierKeyPair, create_caller_token, request_action
    
    keypair = VerifierKeyPair.from_json_file(args.key)
    token = create_caller_token(
        keypair,
        caller=args.caller,
        action=request_action(args.method, args.path),
        issued_at=args.timestamp if args.timestamp is not None else int(time.time()),
        ttl=args.ttl,
    )
    print(token.encode())
    print(f"\nX-Ledger-Caller-Token for {token.action} as {token.caller}, "
          f"expires {token.expires_at}", file=sys.stderr)
    return 0


def cmd_verify_log(args):
    """Verify an exported event log's hash chain and aggregate history."""
    from sovereign_ledger import reconstruct_aggregates, verify_chain
    
    entries = load_log(args.log)
    result = verify_chain(entries)
    
    if not result.valid:
        print(f"✗ INVALID at seq {result.failed_seq}: {result.reason}")
        return 1
    
    issued, burned, era = reconstruct_aggregates(entries)
    final = result.final_aggregates
    if final and (str(issued) != final.get("total_issued") or str(burned) != final.get("total_burned")
                  or era != final.get("era")):
        print("✗ INVALID: payload amounts do not reproduce the recorded aggregates")
        return 1
    
    print(f"✓ VALID ({result.entries_checked} entries)")
    print(f"  total_issued: {issued}")
    print(f"  total_burned: {burned}")
    print(f"  era: {era}")
    return 0


def cmd_demo(args):
    """Run a demonstration of the ledger with a scaled-down threshold."""
    from sovereign_ledger import (
        UNIT,
        LedgerConfig,
        LedgerCore,
        LedgerError,
        ManualClock,
        create_attestation,
        generate_verifier_keypair,
    )
    
    print("=" * 60)
    print("Sovereign Ledger Demonstration")
    print("=" * 60)
    
    keypair = generate_verifier_keypair()
    clock = ManualClock()
    config = LedgerConfig(
        verifier_key_b64=keypair.verify_key_b64,
        supply_threshold=40 * UNIT,
        max_total_supply=1_000 * UNIT,
    )
    core = LedgerCore(config, clock=clock)
    
    def attest(account: str, nonce: str):
        return create_attestation(keypair, account, nonce, clock.now(), "0.99")
    
    print("\n" + "-" * 60)
    print("Scenario 1: First presence events (FOUNDATION)")
    print("-" * 60)
    for i, name in enumerate(["alice", "bob", "carol", "dave"]):
        result = core.issue_on_presence(name, attest(name, f"demo-{i}"))
        print(f"  {name}: issued {result.issued // UNIT} (share {result.issuer_share // UNIT})")
        for t in result.transitions:
            print(f"  Era: {t.old_era.value} -> {t.new_era.value} ({t.reason})")
    
    print("\n" + "-" * 60)
    print("Scenario 2: Replayed attestation")
    print("-" * 60)
    clock.advance(5)
    try:
        core.issue_on_presence("alice", attest("alice", "demo-0"))
    except LedgerError as e:
        print(f"  Rejected: {e.code.value}")
    
    print("\n" + "-" * 60)
    print("Scenario 3: Transfer in SCARCITY (burn active)")
    print("-" * 60)
    transfer = core.transfer("alice", "bob", 2 * UNIT)
    b = transfer.breakdown
    print(f"  amount {b.amount}  burn {b.burn}  recipient {b.recipient_credit}")
    for recipient, credit in b.splits:
        print(f"    split {recipient}: {credit}")
    
    print("\n" + "-" * 60)
    print("Scenario 4: Bridge conversion and death clock")
    print("-" * 60)
    core.issue_local("bob", "KE", UNIT)
    status = core.escrow_status("KE")
    print(f"  KE locked {status['locked_balance']}, urgency {status['death_clock']['urgency']}")
    clock.advance(config.death_clock_grace_seconds)
    print(f"  Flushed escrows after grace period: {core.sweep_all_expired()}")
    print(f"  Flush stats: {core.flush_stats()}")
    
    verification = core.verify_log()
    print("\n" + "=" * 60)
    print(f"Supply: {core.supply_snapshot()}")
    print(f"Event log: {len(core.event_log)} entries, chain valid={verification.valid}")
    print(f"Closed system holds: {core.check_invariants()}")
    print("=" * 60)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Sovereign Ledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sovereign-ledger demo                     Run demonstration
  sovereign-ledger keygen -o verifier.json
  sovereign-ledger attest -k verifier.json -a alice
  sovereign-ledger caller-token -k alice.json -c alice -p /transfers
  sovereign-ledger verify-log -l events.jsonl
        """
    )
    
    subparsers = parser.add_subparsers(dest="command", help="Commands")
    
    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate presence verifier key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for key pair")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")
    
    # attest
    attest_parser = subparsers.add_parser("attest", help="Sign a presence attestation")
    attest_parser.add_argument("-k", "--key", required=True, help="Verifier key pair JSON file")
    attest_parser.add_argument("-a", "--account", required=True, help="Account id")
    attest_parser.add_argument("-n", "--nonce", help="Nonce (random if omitted)")
    attest_parser.add_argument("-t", "--timestamp", type=int, help="Epoch seconds (now if omitted)")
    attest_parser.add_argument("-c", "--confidence", default="0.99", help="Liveness confidence score")
    attest_parser.add_argument("-o", "--output", help="Output file for attestation")
    
    # caller-token
    token_parser = subparsers.add_parser("caller-token", help="Sign a caller token for one request")
    token_parser.add_argument("-k", "--key", required=True, help="Caller key pair JSON file (keygen output)")
    token_parser.add_argument("-c", "--caller", required=True, help="Caller identity the key is registered to")
    token_parser.add_argument("-p", "--path", required=True, help="Request path, e.g. /transfers")
    token_parser.add_argument("-m", "--method", default="POST", help="HTTP method")
    token_parser.add_argument("-t", "--timestamp", type=int, help="Epoch seconds (now if omitted)")
    token_parser.add_argument("--ttl", type=int, default=60, help="Seconds until the token expires")
    
    # verify-log
    verify_parser = subparsers.add_parser("verify-log", help="Verify an exported event log")
    verify_parser.add_argument("-l", "--log", required=True, help="Event log (JSON array or JSON lines)")
    
    # demo
    subparsers.add_parser("demo", help="Run demonstration")
    
    args = parser.parse_args(argv)
    
    if args.command == "keygen":
        return cmd_keygen(args)
    elif args.command == "attest":
        return cmd_attest(args)
    elif args.command == "caller-token":
        return cmd_caller_token(args)
    elif args.command == "verify-log":
        return cmd_verify_log(args)
    elif args.command == "demo":
        return cmd_demo(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())

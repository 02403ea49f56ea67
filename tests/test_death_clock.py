"""
Escrow Death Clock Tests

Activation before expiry, exactly-once flush at expiry, and the
urgency summaries.
"""

import unittest

from sovereign_ledger import (
    DAY,
    UNIT,
    ActivationStatus,
    AuthorizationError,
    ErrorCode,
    EventKind,
    Role,
    StateConflictError,
    Urgency,
)
from sovereign_ledger.death_clock import urgency_for

from ledger_fixtures import LedgerHarness

GRACE = 180 * DAY


class TestDeathClockLifecycle(unittest.TestCase):
    
    def setUp(self):
        self.h = LedgerHarness()
        self.core = self.h.core
        self.h.grant("signer", Role.JURISDICTION_SIGNER)
        self.h.present("alice")
        self.core.issue_local("alice", "KE", 2 * UNIT)
    
    def test_start_clock_requires_escrow(self):
        with self.assertRaises(StateConflictError) as ctx:
            self.core.start_clock("UG")
        self.assertEqual(ctx.exception.code, ErrorCode.JURISDICTION_NOT_FOUND)
    
    def test_start_clock_only_once(self):
        with self.assertRaises(StateConflictError) as ctx:
            self.core.start_clock("KE")
        self.assertEqual(ctx.exception.code, ErrorCode.CLOCK_ALREADY_STARTED)
    
    def test_activate_before_expiry(self):
        self.h.clock.advance(GRACE - 1)
        escrow = self.core.activate("signer", "KE")
        self.assertEqual(escrow.activation_status, ActivationStatus.ACTIVE)
        self.assertEqual(len(self.core.events(EventKind.ESCROW_ACTIVATION)), 1)
    
    def test_activate_is_terminal(self):
        self.core.activate("signer", "KE")
        with self.assertRaises(StateConflictError) as ctx:
            self.core.activate("signer", "KE")
        self.assertEqual(ctx.exception.code, ErrorCode.ESCROW_NOT_INACTIVE)
        
        self.h.clock.advance(GRACE)
        with self.assertRaises(StateConflictError) as ctx:
            self.core.flush("KE")
        self.assertEqual(ctx.exception.code, ErrorCode.ESCROW_NOT_INACTIVE)
        self.assertEqual(self.core.sweep_all_expired(), 0)
        self.assertEqual(self.core.state.escrows["KE"].locked_balance, 2 * UNIT)
    
    def test_activate_after_expiry(self):
        self.h.clock.advance(GRACE)
        with self.assertRaises(StateConflictError) as ctx:
            self.core.activate("signer", "KE")
        self.assertEqual(ctx.exception.code, ErrorCode.CLOCK_EXPIRED)
    
    def test_signer_role_required(self):
        with self.assertRaises(AuthorizationError):
            self.core.activate("alice", "KE")
        self.assertEqual(self.core.state.escrows["KE"].activation_status, ActivationStatus.INACTIVE)
    
    def test_flush_before_expiry(self):
        self.h.clock.advance(GRACE - 1)
        with self.assertRaises(StateConflictError) as ctx:
            self.core.flush("KE")
        self.assertEqual(ctx.exception.code, ErrorCode.CLOCK_NOT_EXPIRED)
    
    def test_flush_exactly_once(self):
        self.h.clock.advance(GRACE)
        flushed = self.core.flush("KE")
        
        self.assertEqual(flushed, 2 * UNIT)
        escrow = self.core.state.escrows["KE"]
        self.assertEqual(escrow.activation_status, ActivationStatus.FLUSHED)
        self.assertEqual(escrow.locked_balance, 0)
        self.assertEqual(escrow.flushed_amount, 2 * UNIT)
        self.assertEqual(self.core.balance("global-citizen-block"), 2 * UNIT)
        
        with self.assertRaises(StateConflictError):
            self.core.flush("KE")
        self.assertEqual(self.core.sweep_all_expired(), 0)
        self.assertEqual(self.core.balance("global-citizen-block"), 2 * UNIT)
        self.assertEqual(len(self.core.events(EventKind.DEATH_CLOCK_FLUSH)), 1)
        self.assertTrue(self.core.check_invariants())
    
    def test_sweep_flushes_all_expired(self):
        self.h.clock.advance(DAY)
        self.core.issue_local("alice", "UG", UNIT // 10)
        self.h.clock.advance(GRACE - DAY)
        
        self.assertEqual(self.core.flush_eligible(), ["KE"])
        self.assertEqual(self.core.sweep_all_expired(), 1)
        self.h.clock.advance(DAY)
        self.assertEqual(self.core.sweep_all_expired(), 1)
        
        stats = self.core.flush_stats()
        self.assertEqual(stats["nations_total"], 2)
        self.assertEqual(stats["nations_flushed"], 2)
        self.assertEqual(stats["total_flushed"], str(2 * UNIT + UNIT // 10))


class TestDeathClockSummaries(unittest.TestCase):
    
    def setUp(self):
        self.h = LedgerHarness()
        self.h.present("alice")
        self.h.core.issue_local("alice", "KE", UNIT)
    
    def urgency(self):
        return self.h.core.escrow_status("KE")["death_clock"]["urgency"]
    
    def test_urgency_progression(self):
        self.assertEqual(self.urgency(), "NORMAL")
        self.h.clock.advance(150 * DAY)
        self.assertEqual(self.urgency(), "WARNING")
        self.h.clock.advance(23 * DAY)
        self.assertEqual(self.urgency(), "CRITICAL")
        self.h.clock.advance(7 * DAY)
        self.assertEqual(self.urgency(), "EXPIRED")
        summary = self.h.core.escrow_status("KE")["death_clock"]
        self.assertTrue(summary["eligible_for_flush"])
        self.assertEqual(summary["days_remaining"], 0)
    
    def test_days_remaining(self):
        self.h.clock.advance(10 * DAY)
        summary = self.h.core.death_clock_summaries()[0]
        self.assertEqual(summary["code"], "KE")
        self.assertEqual(summary["days_remaining"], 170)
    
    def test_urgency_thresholds(self):
        self.assertEqual(urgency_for(0), Urgency.EXPIRED)
        self.assertEqual(urgency_for(1), Urgency.CRITICAL)
        self.assertEqual(urgency_for(7 * DAY), Urgency.CRITICAL)
        self.assertEqual(urgency_for(7 * DAY + 1), Urgency.WARNING)
        self.assertEqual(urgency_for(30 * DAY), Urgency.WARNING)
        self.assertEqual(urgency_for(30 * DAY + 1), Urgency.NORMAL)
    
    def test_unknown_escrow_status(self):
        with self.assertRaises(StateConflictError) as ctx:
            self.h.core.escrow_status("UG")
        self.assertEqual(ctx.exception.code, ErrorCode.JURISDICTION_NOT_FOUND)


if __name__ == "__main__":
    unittest.main(verbosity=2)

"""
Era Engine Tests

Monotonic FOUNDATION -> SCARCITY -> EQUILIBRIUM transitions and the
issuance rules of each era.
"""

import unittest

from sovereign_ledger import UNIT, Era, EraEngine, EventKind, LedgerState
from sovereign_ledger.era import REASON_BURN_EXHAUSTED, REASON_PARITY, REASON_SUPPLY_THRESHOLD

from ledger_fixtures import LedgerHarness


class TestFoundationToScarcity(unittest.TestCase):
    
    def test_threshold_moves_to_scarcity(self):
        h = LedgerHarness()
        for name in ("alice", "bob", "carol"):
            h.present(name)
        self.assertEqual(h.core.state.supply.current_era, Era.FOUNDATION)
        
        result = h.present("dave")
        
        self.assertEqual(h.core.state.supply.current_era, Era.SCARCITY)
        self.assertEqual(len(result.transitions), 1)
        transition = h.core.state.era_history[0]
        self.assertEqual(transition.old_era, Era.FOUNDATION)
        self.assertEqual(transition.new_era, Era.SCARCITY)
        self.assertEqual(transition.reason, REASON_SUPPLY_THRESHOLD)
        self.assertEqual(transition.supply_at_transition, 40 * UNIT)
    
    def test_scarcity_issues_two_units(self):
        h = LedgerHarness()
        h.reach_scarcity()
        result = h.present("erin")
        self.assertEqual(result.era, Era.SCARCITY)
        self.assertEqual(result.issued, 2 * UNIT)
        self.assertEqual(h.core.balance("erin"), 1 * UNIT)
    
    def test_transition_is_logged(self):
        h = LedgerHarness()
        h.reach_scarcity()
        events = h.core.events(EventKind.ERA_TRANSITION)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].payload["new_era"], "SCARCITY")
        self.assertEqual(events[0].post["era"], "SCARCITY")
        self.assertEqual(events[0].pre["era"], "FOUNDATION")


class TestScarcityToEquilibrium(unittest.TestCase):
    
    def test_parity_reached_in_same_call(self):
        # target = 2 accounts x 10 UNIT = circulating at the threshold
        h = LedgerHarness(supply_threshold=20 * UNIT, unit_per_citizen=10 * UNIT)
        h.present("alice")
        result = h.present("bob")
        
        self.assertEqual(h.core.state.supply.current_era, Era.EQUILIBRIUM)
        self.assertEqual([t.new_era for t in result.transitions], [Era.SCARCITY, Era.EQUILIBRIUM])
        self.assertEqual(result.transitions[1].reason, REASON_PARITY)
    
    def test_burn_exhausted_moves_to_equilibrium(self):
        # target 19.8 UNIT; circulating 20 UNIT is outside the 0.1% tolerance
        h = LedgerHarness(supply_threshold=20 * UNIT, unit_per_citizen=99 * UNIT // 10)
        h.present("alice")
        h.present("bob")
        self.assertEqual(h.core.state.supply.current_era, Era.SCARCITY)
        self.assertTrue(h.core.supply_snapshot()["burn_active"])
        
        result = h.core.transfer("alice", "bob", 5 * UNIT)
        
        self.assertEqual(result.breakdown.burn, UNIT // 2)
        self.assertEqual(h.core.state.supply.current_era, Era.EQUILIBRIUM)
        self.assertEqual(result.transitions[0].reason, REASON_BURN_EXHAUSTED)
    
    def test_burn_stops_after_equilibrium(self):
        h = LedgerHarness(supply_threshold=20 * UNIT, unit_per_citizen=10 * UNIT)
        h.present("alice")
        h.present("bob")
        result = h.core.transfer("alice", "bob", 2 * UNIT)
        self.assertEqual(result.breakdown.burn, 0)
        self.assertEqual(result.breakdown.recipient_credit, 2 * UNIT)


class TestEquilibriumIssuance(unittest.TestCase):
    
    def setUp(self):
        self.h = LedgerHarness(supply_threshold=20 * UNIT, unit_per_citizen=10 * UNIT)
        self.h.present("alice")
        self.h.present("bob")
    
    def test_new_account_issues_one_unit(self):
        result = self.h.present("carol")
        self.assertEqual(result.issued, UNIT)
        self.assertEqual(result.issuer_share, UNIT // 2)
        self.assertEqual(result.counterparty_share, UNIT // 2)
    
    def test_repeat_presence_issues_nothing(self):
        issued_before = self.h.core.state.supply.total_issued
        result = self.h.present("alice")
        self.assertEqual(result.issued, 0)
        self.assertEqual(self.h.core.state.supply.total_issued, issued_before)
        self.assertEqual(self.h.core.events(EventKind.ISSUANCE)[-1].payload["account_id"], "bob")


class TestMonotonicity(unittest.TestCase):
    
    def test_engine_refuses_backward_transition(self):
        h = LedgerHarness()
        engine = EraEngine(h.config)
        state = LedgerState()
        state.supply.current_era = Era.SCARCITY
        with self.assertRaises(RuntimeError):
            engine._transition(state, Era.FOUNDATION, "manual", 0)
    
    def test_era_never_regresses_after_supply_drops(self):
        h = LedgerHarness()
        h.reach_scarcity()
        ranks = [h.core.state.supply.current_era.rank]
        for _ in range(5):
            h.core.transfer("national-escrow", "alice", UNIT)
            ranks.append(h.core.state.supply.current_era.rank)
        self.assertEqual(ranks, sorted(ranks))
    
    def test_no_transition_without_trigger(self):
        engine = EraEngine(LedgerHarness().config)
        state = LedgerState()
        self.assertEqual(engine.check_transition(state, 0), [])
        self.assertEqual(state.supply.current_era, Era.FOUNDATION)


if __name__ == "__main__":
    unittest.main(verbosity=2)

"""Transaction journal and nonce expiry on LedgerState."""

import unittest

from sovereign_ledger import UNIT, Era, EraTransition, JurisdictionEscrow, LedgerState, StateConflictError

from ledger_fixtures import LedgerHarness


class TestTransactionJournal(unittest.TestCase):
    
    def setUp(self):
        self.state = LedgerState()
        self.state.credit("alice", 5)
        self.state.supply.total_issued = 5
        self.state.escrows["KE"] = JurisdictionEscrow(code="KE")
    
    def test_rollback_restores_records_in_place(self):
        s = self.state
        alice, supply = s.accounts["alice"], s.supply
        
        s.begin()
        s.debit("alice", 3)
        s.credit("bob", 3)
        s.account("alice").lock_ids.append("lock-00000001")
        s.supply.total_burned = 1
        s.next_lock_seq = 7
        s.era_history.append(EraTransition(Era.FOUNDATION, Era.SCARCITY, 5, "threshold", 1))
        s.outbox.append("pending")
        s.rollback()
        
        self.assertFalse(s.in_transaction)
        self.assertIs(s.accounts["alice"], alice)
        self.assertIs(s.supply, supply)
        self.assertEqual((alice.balance, alice.lock_ids), (5, []))
        self.assertNotIn("bob", s.accounts)
        self.assertEqual(supply.total_burned, 0)
        self.assertEqual(s.next_lock_seq, 1)
        self.assertEqual(s.era_history, [])
        self.assertEqual(s.outbox, [])
    
    def test_nested_records_and_deletes_restored(self):
        s = self.state
        s.begin()
        escrow = s.escrows["KE"]
        escrow.holdings["alice"] = 4
        escrow.locked_balance = 4
        del s.accounts["alice"]
        s.rollback()
        
        self.assertIs(s.escrows["KE"], escrow)
        self.assertEqual(escrow.holdings, {})
        self.assertEqual(escrow.locked_balance, 0)
        self.assertEqual(s.balance("alice"), 5)
    
    def test_commit_keeps_changes(self):
        s = self.state
        s.begin()
        s.credit("bob", 2)
        s.commit()
        s.begin()
        s.rollback()
        self.assertEqual(s.balance("bob"), 2)
    
    def test_journal_covers_only_touched_records(self):
        s = self.state
        for i in range(500):
            s.credit(f"holder-{i}", 1)
        
        s.begin()
        s.debit("alice", 1)
        self.assertEqual(len(s._journal), 1)
        s.rollback()
        self.assertEqual(s.balance("alice"), 5)
    
    def test_external_undo_runs_on_rollback(self):
        undone = []
        self.state.on_rollback(lambda: undone.append("outside"))
        self.state.begin()
        self.state.on_rollback(lambda: undone.append("inside"))
        self.state.rollback()
        self.assertEqual(undone, ["inside"])
    
    def test_begin_twice_refused(self):
        self.state.begin()
        with self.assertRaises(RuntimeError):
            self.state.begin()


class TestNonceExpiry(unittest.TestCase):
    
    def setUp(self):
        self.state = LedgerState()
        for nonce, ts in (("n-3", 300), ("n-1", 100), ("n-2", 200)):
            self.state.consume_nonce(nonce, ts)
    
    def test_prune_follows_timestamp_order(self):
        self.assertEqual(self.state.prune_nonces(250), 2)
        self.assertEqual(self.state.consumed_nonces, {"n-3": 300})
        self.assertEqual(self.state.nonce_expiry, [(300, "n-3")])
        self.assertEqual(self.state.prune_nonces(250), 0)
    
    def test_rolled_back_prune_restores_nonces(self):
        s = self.state
        s.begin()
        s.prune_nonces(1000)
        s.rollback()
        
        self.assertEqual(s.consumed_nonces, {"n-1": 100, "n-2": 200, "n-3": 300})
        self.assertEqual(s.prune_nonces(250), 2)
    
    def test_rolled_back_consume_leaves_harmless_heap_entry(self):
        s = self.state
        s.begin()
        s.consume_nonce("n-0", 50)
        s.rollback()
        
        self.assertNotIn("n-0", s.consumed_nonces)
        self.assertEqual(s.prune_nonces(100), 0)
        self.assertEqual(len(s.nonce_expiry), 3)
        self.assertEqual(len(s.consumed_nonces), 3)


class TestCoreRollback(unittest.TestCase):
    
    def test_rejected_call_keeps_record_identity(self):
        h = LedgerHarness()
        h.present("alice")
        alice = h.core.state.accounts["alice"]
        
        with self.assertRaises(StateConflictError):
            h.core.transfer("alice", "bob", 100 * UNIT)
        
        self.assertIs(h.core.state.accounts["alice"], alice)
        self.assertEqual(alice.balance, 5 * UNIT)
        self.assertNotIn("bob", h.core.state.accounts)
        self.assertFalse(h.core.state.in_transaction)


if __name__ == "__main__":
    unittest.main(verbosity=2)

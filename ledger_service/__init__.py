"""HTTP service exposing the sovereign ledger core."""

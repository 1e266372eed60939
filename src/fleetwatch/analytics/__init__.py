"""Recompute-on-read cost and token analytics over the activity ledger."""

"""Pure domain helpers for the ledger kernel (clock, money)."""

"""Ledger/AMM collaborator contracts and the graduation step implementations."""

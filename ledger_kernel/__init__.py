"""
Ledger Kernel

Double-entry journal, chart of accounts and order aggregate for the
cross-border purchasing platform:
- Posted financial transactions with explicit reversal links
- Sequenced human-readable document numbers
- Structured JSON logging and typed errors
- Injectable clock for deterministic tests
"""

__version__ = "0.1.0"

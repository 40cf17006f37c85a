"""
Stock Kernel - retail stock ledger consistency engine.

A multi-tenant sale pipeline with:
- Pack/loose unit arithmetic
- Row-locked stock deduction and revert
- Gapless per-scope invoice numbering
- All-or-nothing sale transactions
"""

__version__ = "0.1.0"

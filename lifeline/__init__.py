"""
Lifeline - Source Package

A personal cash-flow forecaster. It keeps a ledger of accounts,
transactions and recurring rules, and projects the balance forward
to answer one question: how much can I spend per day until payday?

DESIGN PRINCIPLES:
1. Money is Decimal, never float
2. Derived values are recomputed, never patched in place
3. A failed write leaves the previous state untouched
4. Every change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Lifeline Team"

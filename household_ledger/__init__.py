"""
Household Ledger - Source Package

Recurring-transaction occurrence engine and financial aggregation core
for a personal household-finance tracker.

DESIGN PRINCIPLES:
1. Storage is a set of whole tables behind a narrow, swappable port
2. Conflicts are detected, never merged or retried silently
3. Aggregates are rebuilt wholesale, never patched
4. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"

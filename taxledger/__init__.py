"""
Tax Ledger - Recurring Obligation Scheduler

The background core of a personal finance and tax tracker. It keeps
recurring obligations (rent, subscriptions, salary) materialized as real
transactions and keeps the user informed about what is due.

DESIGN PRINCIPLES:
1. Every due occurrence becomes exactly one transaction
2. A notification is sent once per logical event, never twice
3. Background work is best-effort: failures are recorded, never fatal
4. Every step must be auditable
5. Storage and delivery are swappable
"""

__version__ = "1.0.0"
__author__ = "Tax Ledger Team"

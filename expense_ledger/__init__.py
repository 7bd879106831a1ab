"""
Expense Ledger - Source Package

Personal and shared expense tracking: settling up between friends and
keeping recurring charges on schedule.

DESIGN PRINCIPLES:
1. Engines are pure functions over snapshots
2. Fail early, fail visibly
3. No silent corrections (rounding residue under a cent is not an error)
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"

"""
GULL Ledger - Source Package

The transaction ledger and consistency engine behind GULL project
accounting: Akra (00-99) and Ring (000-999) number entries, per-number
aggregates, filter-driven deductions, a per-user spendable balance and
linear undo/redo.

DESIGN PRINCIPLES:
1. Every entry mutation is paired with its balance effect
2. Fail early, fail visibly
3. No silent corrections (numbers are never padded or truncated)
4. Every mutation is reversible through one history
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "GULL Accounting Team"

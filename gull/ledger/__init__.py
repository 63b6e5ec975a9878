"""
Ledger Core Package

- TransactionStore: entries of one project, persisted on every mutation
- aggregation: per-number summaries and extremes (pure)
- filters: threshold/cap rules that produce deduction entries (pure)
- BalanceLedger: per-user balances, privileged users unlimited
- ActionHistory: linear undo/redo over recorded commands
- bulk / patterns: text entry and number search helpers
"""

from gull.ledger.aggregation import (
    all_possible_numbers,
    extremes,
    filtered_totals,
    project_statistics,
    sort_entries,
    summarize,
    summary_for,
)
from gull.ledger.balance import BalanceLedger
from gull.ledger.bulk import parse_bulk_text, split_numbers
from gull.ledger.filters import (
    build_deductions,
    compare,
    evaluate,
    format_adjustments,
    parse_operator,
)
from gull.ledger.history import ActionHistory
from gull.ledger.patterns import (
    SearchPattern,
    filter_numbers,
    matches_pattern,
    parse_search_pattern,
    pattern_suggestions,
    validate_pattern,
)
from gull.ledger.store import BatchRemoval, TransactionStore

__all__ = [
    # Store
    "BatchRemoval",
    "TransactionStore",
    # Aggregation
    "all_possible_numbers",
    "extremes",
    "filtered_totals",
    "project_statistics",
    "sort_entries",
    "summarize",
    "summary_for",
    # Filters
    "build_deductions",
    "compare",
    "evaluate",
    "format_adjustments",
    "parse_operator",
    # Balance
    "BalanceLedger",
    # History
    "ActionHistory",
    # Text entry and search
    "SearchPattern",
    "filter_numbers",
    "matches_pattern",
    "parse_bulk_text",
    "parse_search_pattern",
    "pattern_suggestions",
    "split_numbers",
    "validate_pattern",
]

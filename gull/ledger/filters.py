"""
Filter & Deduction Engine

Reads per-number summaries, applies a comparison rule to the FIRST and
SECOND totals independently, and computes how much of each total exceeds
its cap. The excess becomes a deduction: a new negative entry flagged
is_deduction, written through the normal action path so it is audited,
reversible and visible in later summaries.

Evaluation is pure. Nothing is written until the caller applies the
results, so evaluating twice without applying gives identical output.
"""

from decimal import Decimal
from typing import Iterable, Optional, Union

from gull.models.entry import (
    DeductionResult,
    EntryDraft,
    EntryKind,
    FilterCriterion,
    FilterOperator,
    NumberSummary,
)

_ZERO = Decimal("0")

_OPERATOR_ALIASES = {"=": FilterOperator.EQ}


def parse_operator(text: Union[str, FilterOperator]) -> FilterOperator:
    """Accept one of >=, >, <=, <, == (or = as an alias for ==)."""
    if isinstance(text, FilterOperator):
        return text
    symbol = text.strip()
    if symbol in _OPERATOR_ALIASES:
        return _OPERATOR_ALIASES[symbol]
    try:
        return FilterOperator(symbol)
    except ValueError:
        raise ValueError(f"Unknown filter operator: {text!r}") from None


def compare(value: Decimal, criterion: FilterCriterion) -> bool:
    """Check a total against a criterion's operator and threshold."""
    threshold = criterion.threshold
    op = criterion.operator
    if op == FilterOperator.GTE:
        return value >= threshold
    if op == FilterOperator.GT:
        return value > threshold
    if op == FilterOperator.LTE:
        return value <= threshold
    if op == FilterOperator.LT:
        return value < threshold
    return value == threshold


def _adjustment(total: Decimal, passes: bool, criterion: Optional[FilterCriterion]) -> Decimal:
    if not passes or criterion is None:
        return _ZERO
    cap = criterion.effective_cap
    if cap <= 0:
        return _ZERO
    return max(_ZERO, total - cap)


def evaluate(
    summaries: Union[dict[str, NumberSummary], Iterable[NumberSummary]],
    first_criterion: Optional[FilterCriterion] = None,
    second_criterion: Optional[FilterCriterion] = None,
) -> list[DeductionResult]:
    """
    Compute deductions for every summary that meets a criterion.

    A side with no criterion never passes. A side that passes only
    produces an adjustment when its cap is positive. Numbers whose
    adjustments are both zero are left out. Results are sorted by number.
    """
    if isinstance(summaries, dict):
        summaries = summaries.values()

    results = []
    for summary in summaries:
        passes_first = (
            compare(summary.first_total, first_criterion)
            if first_criterion is not None else False
        )
        passes_second = (
            compare(summary.second_total, second_criterion)
            if second_criterion is not None else False
        )
        if not (passes_first or passes_second):
            continue

        first_adjustment = _adjustment(summary.first_total, passes_first, first_criterion)
        second_adjustment = _adjustment(summary.second_total, passes_second, second_criterion)
        if first_adjustment > 0 or second_adjustment > 0:
            results.append(DeductionResult(
                number=summary.number,
                first_total=summary.first_total,
                second_total=summary.second_total,
                first_adjustment=first_adjustment,
                second_adjustment=second_adjustment,
            ))

    results.sort(key=lambda r: r.number)
    return results


def _describe(
    result: DeductionResult,
    first_criterion: Optional[FilterCriterion],
    second_criterion: Optional[FilterCriterion],
) -> str:
    parts = []
    if result.first_adjustment > 0 and first_criterion is not None:
        parts.append(f"FIRST cap {first_criterion.effective_cap}")
    if result.second_adjustment > 0 and second_criterion is not None:
        parts.append(f"SECOND cap {second_criterion.effective_cap}")
    if not parts:
        return "Filter deduction"
    return "Filter deduction (" + ", ".join(parts) + ")"


def build_deductions(
    results: Iterable[DeductionResult],
    kind: EntryKind,
    first_criterion: Optional[FilterCriterion] = None,
    second_criterion: Optional[FilterCriterion] = None,
) -> list[EntryDraft]:
    """One negative deduction draft per non-zero result."""
    drafts = []
    for result in results:
        if result.is_noop:
            continue
        drafts.append(EntryDraft(
            number=result.number,
            entry_kind=kind,
            first=-result.first_adjustment,
            second=-result.second_adjustment,
            notes=_describe(result, first_criterion, second_criterion),
            is_deduction=True,
        ))
    return drafts


def format_adjustments(results: Iterable[DeductionResult], side: str) -> str:
    """
    Tab-separated "number<TAB>amount" lines for one side.

    Only non-zero adjustments are included; ready to paste into a
    spreadsheet.
    """
    if side not in ("first", "second"):
        raise ValueError(f"side must be 'first' or 'second', got {side!r}")
    lines = []
    for result in results:
        amount = getattr(result, f"{side}_adjustment")
        if amount > 0:
            lines.append(f"{result.number}\t{amount}")
    return "\n".join(lines)

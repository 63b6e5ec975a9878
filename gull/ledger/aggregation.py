"""
Aggregation Engine

Pure functions that turn a project's entries into per-number summaries.
Summaries are derived views: they are recomputed on demand from the
current entries and never stored.
"""

from decimal import Decimal
from typing import Iterable, Literal

from gull.models.entry import (
    Entry,
    EntryKind,
    Extremes,
    NumberSummary,
    ProjectStatistics,
)

SortKey = Literal["date", "number", "first", "second"]

_ZERO = Decimal("0")


def summarize(entries: Iterable[Entry], kind: EntryKind) -> dict[str, NumberSummary]:
    """
    Group entries of one kind by number.

    Single pass with running sums. The result is ordered by the first
    appearance of each number in `entries`.
    """
    grouped: dict[str, NumberSummary] = {}
    for entry in entries:
        if entry.entry_kind != kind:
            continue
        summary = grouped.get(entry.number)
        if summary is None:
            summary = grouped[entry.number] = NumberSummary(number=entry.number)
        summary.first_total += entry.first
        summary.second_total += entry.second
        summary.entry_count += 1
        summary.entries.append(entry)
    return grouped


def summary_for(entries: Iterable[Entry], number: str, kind: EntryKind) -> NumberSummary:
    """Summary of a single number; empty when it has no entries."""
    matching = [e for e in entries if e.number == number and e.entry_kind == kind]
    return NumberSummary(
        number=number,
        first_total=sum((e.first for e in matching), _ZERO),
        second_total=sum((e.second for e in matching), _ZERO),
        entry_count=len(matching),
        entries=matching,
    )


def extremes(summaries: dict[str, NumberSummary]) -> Extremes:
    """
    Numbers with the greatest and smallest positive combined totals.

    Summaries whose combined total is zero or negative are ignored.
    On ties the first-encountered number wins.
    """
    highest = lowest = None
    highest_total = lowest_total = None

    for number, summary in summaries.items():
        total = summary.combined_total
        if total <= 0:
            continue
        if highest_total is None or total > highest_total:
            highest, highest_total = number, total
        if lowest_total is None or total < lowest_total:
            lowest, lowest_total = number, total

    return Extremes(highest=highest, lowest=lowest)


def all_possible_numbers(kind: EntryKind) -> list[str]:
    """Every valid number of a kind, zero padded, in ascending order."""
    return [str(i).zfill(kind.width) for i in range(kind.max_value + 1)]


def filtered_totals(summaries: Iterable[NumberSummary]) -> tuple[Decimal, Decimal]:
    """FIRST and SECOND totals over a selection of summaries."""
    first_total = second_total = _ZERO
    for summary in summaries:
        first_total += summary.first_total
        second_total += summary.second_total
    return first_total, second_total


def project_statistics(entries: Iterable[Entry]) -> ProjectStatistics:
    """Headline figures across both entry kinds."""
    stats = ProjectStatistics()
    numbers = set()
    for entry in entries:
        stats.total_entries += 1
        if entry.entry_kind == EntryKind.AKRA:
            stats.akra_entries += 1
        else:
            stats.ring_entries += 1
        stats.first_total += entry.first
        stats.second_total += entry.second
        numbers.add((entry.entry_kind, entry.number))
    stats.unique_numbers = len(numbers)
    return stats


def sort_entries(
    entries: Iterable[Entry],
    by: SortKey = "date",
    descending: bool = True,
) -> list[Entry]:
    """Return a sorted copy of `entries`. The sort is stable."""
    keys = {
        "date": lambda e: e.created_at,
        "number": lambda e: e.number,
        "first": lambda e: e.first,
        "second": lambda e: e.second,
    }
    if by not in keys:
        raise ValueError(f"Unknown sort key: {by!r}")
    return sorted(entries, key=keys[by], reverse=descending)

"""
Tests for the aggregation engine.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from gull.ledger.aggregation import (
    all_possible_numbers,
    extremes,
    filtered_totals,
    project_statistics,
    sort_entries,
    summarize,
    summary_for,
)
from gull.models.entry import Entry, EntryKind, NumberSummary


def make(number, first=0, second=0, kind=EntryKind.AKRA, minutes=0):
    return Entry(
        project_id="p",
        number=number,
        entry_kind=kind,
        first=Decimal(first),
        second=Decimal(second),
        created_at=datetime(2024, 1, 1) + timedelta(minutes=minutes),
    )


class TestSummarize:
    """Tests for per-number summaries."""

    def test_scenario_totals_for_07(self):
        """Test that (07,100,50) and (07,200,0) give 300 / 50 / 2 entries."""
        entries = [make("07", 100, 50), make("07", 200, 0)]

        summaries = summarize(entries, EntryKind.AKRA)

        summary = summaries["07"]
        assert summary.first_total == Decimal("300")
        assert summary.second_total == Decimal("50")
        assert summary.entry_count == 2
        assert summary.entries == entries

    def test_filters_by_kind(self):
        """Test that Ring entries don't leak into Akra summaries."""
        entries = [make("07", 100), make("007", 100, kind=EntryKind.RING)]
        assert list(summarize(entries, EntryKind.AKRA)) == ["07"]
        assert list(summarize(entries, EntryKind.RING)) == ["007"]

    def test_totals_equal_sum_of_entries(self):
        """Test totals against the backing entries for every number."""
        entries = [
            make("01", 10, 1), make("02", 20, 2), make("01", -5, 3),
            make("03", 0, 7), make("02", 1, -2),
        ]
        for summary in summarize(entries, EntryKind.AKRA).values():
            assert summary.first_total == sum(e.first for e in summary.entries)
            assert summary.second_total == sum(e.second for e in summary.entries)
            assert summary.entry_count == len(summary.entries)

    def test_first_appearance_order(self):
        """Test that summaries keep first-appearance order."""
        entries = [make("09", 1), make("01", 1), make("09", 1)]
        assert list(summarize(entries, EntryKind.AKRA)) == ["09", "01"]

    def test_summary_for_missing_number(self):
        """Test empty summary for a number without entries."""
        summary = summary_for([make("01", 5)], "02", EntryKind.AKRA)
        assert summary.entry_count == 0
        assert summary.combined_total == Decimal("0")


class TestExtremes:
    """Tests for highest/lowest detection."""

    def test_highest_and_lowest(self):
        """Test extremes among positive totals."""
        summaries = summarize(
            [make("01", 100), make("02", 300), make("03", 50, 10)],
            EntryKind.AKRA,
        )
        result = extremes(summaries)
        assert result.highest == "02"
        assert result.lowest == "03"

    def test_ignores_non_positive_totals(self):
        """Test that zero and negative totals are skipped."""
        summaries = summarize(
            [make("01", 100, -100), make("02", -5), make("03", 40)],
            EntryKind.AKRA,
        )
        result = extremes(summaries)
        assert result.highest == "03"
        assert result.lowest == "03"

    def test_none_when_nothing_positive(self):
        """Test null extremes."""
        assert extremes({}).highest is None
        result = extremes(summarize([make("01", -1)], EntryKind.AKRA))
        assert result.highest is None
        assert result.lowest is None

    def test_ties_keep_first_encountered(self):
        """Test tie breaking by iteration order."""
        summaries = {
            "05": NumberSummary(number="05", first_total=Decimal("10")),
            "02": NumberSummary(number="02", first_total=Decimal("10")),
        }
        result = extremes(summaries)
        assert result.highest == "05"
        assert result.lowest == "05"


class TestHelpers:
    """Tests for the supplementary helpers."""

    def test_all_possible_numbers(self):
        """Test the full number grids."""
        akra = all_possible_numbers(EntryKind.AKRA)
        ring = all_possible_numbers(EntryKind.RING)
        assert len(akra) == 100
        assert akra[0] == "00" and akra[-1] == "99"
        assert len(ring) == 1000
        assert ring[7] == "007"

    def test_filtered_totals(self):
        """Test totals across a selection of summaries."""
        summaries = summarize([make("01", 10, 1), make("02", 20, 2)], EntryKind.AKRA)
        assert filtered_totals(summaries.values()) == (Decimal("30"), Decimal("3"))

    def test_project_statistics(self):
        """Test headline statistics."""
        stats = project_statistics([
            make("01", 10), make("01", 5, 5), make("001", 1, kind=EntryKind.RING),
        ])
        assert stats.total_entries == 3
        assert stats.akra_entries == 2
        assert stats.ring_entries == 1
        assert stats.first_total == Decimal("16")
        assert stats.second_total == Decimal("5")
        assert stats.unique_numbers == 2

    def test_sort_entries(self):
        """Test sorting by date, number and amounts."""
        a = make("05", 10, minutes=1)
        b = make("01", 30, minutes=2)
        c = make("09", 20, minutes=0)

        assert sort_entries([a, b, c]) == [b, a, c]
        assert sort_entries([a, b, c], by="number", descending=False) == [b, a, c]
        assert sort_entries([a, b, c], by="first") == [b, c, a]
        with pytest.raises(ValueError):
            sort_entries([a], by="colour")

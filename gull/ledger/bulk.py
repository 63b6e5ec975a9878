"""
Bulk Text Entry

Turns free-form text into a preview of entries. Each non-blank line holds
one number and its two amounts in any of these shapes:

    01 100 200
    01:100:200
    01-100-200
    01 F:100 S:200
    01 first:100 second:200

Labels are case-insensitive. Line numbers in issues count non-blank lines
from 1, matching what the operator sees in the preview.

CRITICAL: Parsing never writes anything. The preview goes back to the
operator, who commits it explicitly.
"""

import re
from decimal import Decimal, InvalidOperation

from gull.exceptions import InvalidNumberFormat
from gull.models.entry import BulkPreview, EntryKind, ParsedLine, ParseIssue, parse_entry_number


_AMOUNT = r"\d+(?:\.\d+)?"

_SEPARATED = re.compile(rf"^(\d{{2,3}})[\s:-]+({_AMOUNT})[\s:-]+({_AMOUNT})$")
_LABELLED = re.compile(
    rf"^(\d{{2,3}})\s+(?:f|first):?({_AMOUNT})\s+(?:s|second):?({_AMOUNT})$",
    re.IGNORECASE,
)
_NUMBER_TOKEN = re.compile(r"^\d{2,3}$")
_WHITESPACE = re.compile(r"\s+")
_NUMBER_LIST_SEPARATOR = re.compile(r"[\s,]+")


def split_numbers(text: str) -> list[str]:
    """Split a "01, 02 03" style list into number strings."""
    return [token for token in _NUMBER_LIST_SEPARATOR.split(text) if token]


def _plain(normalized: str):
    """Three space separated tokens; amounts may carry a sign."""
    parts = normalized.split(" ")
    if len(parts) != 3 or not _NUMBER_TOKEN.match(parts[0]):
        return None
    try:
        first, second = Decimal(parts[1]), Decimal(parts[2])
    except InvalidOperation:
        return None
    if not (first.is_finite() and second.is_finite()):
        return None
    return parts[0], first, second


def _match_line(normalized: str):
    # Plain first, so "01 -100 200" keeps its sign instead of the "-" being
    # read as a separator.
    plain = _plain(normalized)
    if plain is not None:
        return plain
    for pattern in (_SEPARATED, _LABELLED):
        match = pattern.match(normalized)
        if match:
            number, first, second = match.groups()
            return number, Decimal(first), Decimal(second)
    return None


def parse_bulk_text(text: str, kind: EntryKind) -> BulkPreview:
    """
    Parse bulk text into a preview.

    Lines that match no pattern, carry a number that is invalid for `kind`
    or have two zero amounts become ParseIssues. Valid lines become
    ParsedLines. Nothing is committed.
    """
    preview = BulkPreview(entry_kind=kind)
    lines = [line for line in text.splitlines() if line.strip()]

    for line_number, line in enumerate(lines, start=1):
        normalized = _WHITESPACE.sub(" ", line.strip())
        matched = _match_line(normalized)
        if matched is None:
            preview.issues.append(ParseIssue(
                line_number=line_number,
                raw=line,
                message=f"Line {line_number}: Could not parse {line.strip()!r}",
            ))
            continue

        number, first, second = matched
        try:
            parse_entry_number(number, kind)
        except InvalidNumberFormat:
            preview.issues.append(ParseIssue(
                line_number=line_number,
                raw=line,
                message=f"Line {line_number}: Invalid number {number!r} for {kind.value} type",
            ))
            continue

        if first == 0 and second == 0:
            preview.issues.append(ParseIssue(
                line_number=line_number,
                raw=line,
                message=f"Line {line_number}: Enter at least one amount for {number}",
            ))
            continue

        preview.entries.append(ParsedLine(
            line_number=line_number,
            number=number,
            first=first,
            second=second,
        ))

    return preview

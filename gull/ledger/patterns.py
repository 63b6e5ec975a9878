"""
Number Pattern Search

Query language for picking numbers out of a grid:

- exact:     "3"          numbers containing "3"
- wildcard:  "1*", "?5"   shell-style, matched against the whole number
- command:   "starts:1", "between:10-20", "even:", "sum:5", ...

Queries are case-insensitive and trimmed.
"""

from fnmatch import fnmatchcase
from typing import Iterable, Literal, Optional

from pydantic import BaseModel


class SearchPattern(BaseModel):
    type: Literal["exact", "wildcard", "command"]
    pattern: str
    command: Optional[str] = None
    value: str = ""


_COMMAND_ALIASES = {
    "starts": "starts", "start": "starts", "begins": "starts", "begin": "starts",
    "ends": "ends", "end": "ends",
    "middle": "middle", "mid": "middle",
    "contains": "contains",
    "equals": "equals", "equal": "equals", "is": "equals",
    "length": "length", "len": "length",
    "greater": "greater", "gt": "greater",
    "less": "less", "lt": "less",
    "between": "between",
    "even": "even",
    "odd": "odd",
    "sum": "sum",
}

_VALUELESS = {"even", "odd"}


def parse_search_pattern(query: str) -> SearchPattern:
    trimmed = query.strip().lower()

    if ":" in trimmed:
        command, _, value = trimmed.partition(":")
        return SearchPattern(
            type="command",
            pattern=trimmed,
            command=command.strip(),
            value=value.split(":")[0].strip(),
        )
    if "*" in trimmed or "?" in trimmed:
        return SearchPattern(type="wildcard", pattern=trimmed)
    return SearchPattern(type="exact", pattern=trimmed)


def _to_int(text: str) -> Optional[int]:
    try:
        return int(text)
    except ValueError:
        return None


def _matches_command(number: str, command: str, value: str) -> bool:
    canonical = _COMMAND_ALIASES.get(command)
    as_int = _to_int(number)

    if canonical == "starts":
        return number.startswith(value)
    if canonical == "ends":
        return number.endswith(value)
    if canonical == "middle":
        # Strictly inside: not touching either end.
        idx = number.find(value)
        return 0 < idx < len(number) - len(value)
    if canonical == "contains":
        return value in number
    if canonical == "equals":
        return number == value
    if canonical == "length":
        return len(number) == _to_int(value)
    if canonical in ("greater", "less"):
        target = _to_int(value)
        if as_int is None or target is None:
            return False
        return as_int > target if canonical == "greater" else as_int < target
    if canonical == "between":
        low, sep, high = value.partition("-")
        low_int, high_int = _to_int(low), _to_int(high)
        if not sep or as_int is None or low_int is None or high_int is None:
            return False
        return low_int <= as_int <= high_int
    if canonical in ("even", "odd"):
        if as_int is None:
            return False
        return (as_int % 2 == 0) == (canonical == "even")
    if canonical == "sum":
        if not number.isdigit():
            return False
        return sum(int(d) for d in number) == _to_int(value)
    return False


def matches_pattern(number: str, pattern: SearchPattern) -> bool:
    """Check one number against a parsed pattern."""
    candidate = number.lower()
    if pattern.type == "exact":
        return pattern.pattern in candidate
    if pattern.type == "wildcard":
        return fnmatchcase(candidate, pattern.pattern)
    return _matches_command(candidate, pattern.command or "", pattern.value)


def filter_numbers(numbers: Iterable[str], query: str) -> list[str]:
    """Numbers matching `query`; a blank query matches everything."""
    numbers = list(numbers)
    if not query.strip():
        return numbers
    pattern = parse_search_pattern(query)
    return [n for n in numbers if matches_pattern(n, pattern)]


def validate_pattern(query: str) -> tuple[bool, Optional[str]]:
    """
    Check a query before running it.

    Returns: (is_valid, error_message)
    """
    if not query.strip():
        return False, "Pattern cannot be empty"

    pattern = parse_search_pattern(query)
    if pattern.type == "command":
        if pattern.command not in _COMMAND_ALIASES:
            return False, f"Unknown command: {pattern.command}"
        canonical = _COMMAND_ALIASES[pattern.command]
        if canonical not in _VALUELESS and not pattern.value:
            return False, f"Command '{pattern.command}' requires a value"
    return True, None


def pattern_suggestions() -> list[str]:
    return [
        "* - All numbers",
        "1* - Starts with 1",
        "*5 - Ends with 5",
        "*3* - Contains 3",
        "starts:1 - Starts with 1",
        "ends:5 - Ends with 5",
        "middle:3 - Has 3 in middle",
        "contains:2 - Contains 2",
        "equals:23 - Equals 23",
        "between:10-20 - Between 10 and 20",
        "even: - Even numbers",
        "odd: - Odd numbers",
        "sum:5 - Digit sum equals 5",
        "length:2 - Length is 2",
        "greater:50 - Greater than 50",
        "less:50 - Less than 50",
    ]

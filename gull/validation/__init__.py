"""Entry validation package."""

from gull.validation.validator import EntryValidator

__all__ = ["EntryValidator"]

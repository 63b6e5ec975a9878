"""
Two-Stage Entry Validation

STAGE 1 - SCHEMA VALIDATION:
- Number width/range for the entry kind
- Finite amounts
- At least one non-zero amount on user-authored entries
- Sign rules (deductions are never positive; manual negatives only when
  corrections are allowed)
Any failure here is an error and blocks the entry.

STAGE 2 - SEMANTIC VALIDATION:
- Unusually large amounts
- Manual negative corrections
- Entries whose amounts cancel out (zero net, no balance effect)
These are warnings: shown to the operator, never blocking.

IMPORTANT: Validation NEVER silently fixes issues.
"5" is not padded to "05"; it is reported.
"""

from decimal import Decimal
from typing import Optional

from gull.config import LedgerSettings, get_settings
from gull.exceptions import (
    EmptyEntry,
    InvalidAmount,
    InvalidNumberFormat,
    LedgerValidationError,
)
from gull.models.entry import (
    EntryDraft,
    ValidationIssue,
    ValidationResult,
    parse_entry_number,
)


class EntryValidator:
    """
    Validates entry drafts through a two-stage pipeline.

    Stage 1 errors map onto the ledger's exception types through
    ensure_valid(), which the transaction store calls before any write.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_schema(
        self,
        draft: EntryDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        try:
            parse_entry_number(draft.number, draft.entry_kind)
        except InvalidNumberFormat as e:
            issues.append(ValidationIssue(
                field="number",
                issue_type="invalid_number_format",
                message=str(e),
                severity="error",
                suggested_fix=(
                    f"Use exactly {draft.entry_kind.width} digits, "
                    "including leading zeros"
                ),
            ))

        for field in ("first", "second"):
            amount: Decimal = getattr(draft, field)
            if not amount.is_finite():
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_amount",
                    message=f"{field.upper()} must be a valid number",
                    severity="error",
                ))
                continue

            if draft.is_deduction and amount > 0:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_amount",
                    message=f"Deduction {field.upper()} cannot be positive",
                    severity="error",
                ))
            elif (
                not draft.is_deduction
                and amount < 0
                and not self._settings.allow_negative_corrections
            ):
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_amount",
                    message=f"{field.upper()} cannot be negative",
                    severity="error",
                    suggested_fix="Negative corrections are disabled for this ledger",
                ))

        if not draft.is_deduction and draft.first == 0 and draft.second == 0:
            issues.append(ValidationIssue(
                field="first",
                issue_type="empty_entry",
                message="Enter at least one amount (FIRST or SECOND)",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: EntryDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        limit = self._settings.large_amount_warning

        for field in ("first", "second"):
            amount: Decimal = getattr(draft, field)
            if abs(amount) > limit:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="suspicious_value",
                    message=f"{field.upper()} (PKR {amount:,}) seems unusually high",
                    severity="warning",
                    suggested_fix="Please verify this amount is correct",
                ))

        if not draft.is_deduction and (draft.first < 0 or draft.second < 0):
            issues.append(ValidationIssue(
                field="first" if draft.first < 0 else "second",
                issue_type="negative_correction",
                message="Negative amount will be recorded as a manual correction",
                severity="warning",
            ))

        if draft.net == 0 and (draft.first != 0 or draft.second != 0):
            issues.append(ValidationIssue(
                field="first",
                issue_type="zero_net",
                message="FIRST and SECOND cancel out; the balance will not change",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, draft: EntryDraft) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Stage 2 only runs when stage 1 passes.
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            number=str(draft.number),
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    def ensure_valid(self, draft: EntryDraft) -> ValidationResult:
        """
        Validate and raise the typed error of the first blocking issue.

        Raises:
            InvalidNumberFormat, EmptyEntry, InvalidAmount
        """
        result = self.validate(draft)
        for issue in result.issues:
            if issue.severity != "error":
                continue
            raise self._to_exception(draft, issue)
        return result

    @staticmethod
    def _to_exception(draft: EntryDraft, issue: ValidationIssue) -> LedgerValidationError:
        if issue.issue_type == "invalid_number_format":
            return InvalidNumberFormat(str(draft.number), draft.entry_kind.value, issue.message)
        if issue.issue_type == "empty_entry":
            return EmptyEntry(str(draft.number))
        return InvalidAmount(issue.message)

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """Generate a short summary of validation results for the operator."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if not result.schema_valid:
            lines.append(f"Entry for {result.number!r} cannot be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)

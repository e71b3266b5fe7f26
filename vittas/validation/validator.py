"""
Two-Stage Split Validation

DESIGN DECISION: A split request is validated in two distinct stages:

STAGE 1 - SHAPE VALIDATION:
- Total amount is positive with at most two decimal places
- Member list has no duplicates and does not contain the payer
- Percentage / amount maps name exactly the selected members
- Individual percentages and amounts are within range

STAGE 2 - BOUND VALIDATION:
- Percentages sum to at most 100
- Custom amounts sum to at most the total
- These are the checks that would otherwise push the payer's share negative

Stage 2 only runs when stage 1 passes, since sums over a malformed map
are meaningless.

IMPORTANT: Validation NEVER silently fixes issues.
Nothing is written to the store until a request passes both stages.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from vittas.config import get_settings
from vittas.models.ledger import (
    CENT,
    HUNDRED,
    MAX_AMOUNT,
    CustomSplit,
    PercentageSplit,
    SplitRequest,
    ValidationIssue,
    ValidationResult,
)


def _is_money(value: Decimal) -> bool:
    """True for a finite amount with no more than two decimal places."""
    if not value.is_finite():
        return False
    try:
        return value == value.quantize(CENT)
    except InvalidOperation:
        # Too many digits to hold at cent precision
        return False


class SplitRequestValidator:
    """
    Validates a split request through a two-stage pipeline.

    Stage 1: Shape validation
    Stage 2: Bound validation
    """

    def __init__(self, currency_code: Optional[str] = None):
        """
        Args:
            currency_code: Currency shown in messages. Defaults to the
                          configured ledger currency.
        """
        self._currency = currency_code or get_settings().ledger.currency_code

    def _money(self, amount: Decimal) -> str:
        return f"{self._currency} {amount:,.2f}"

    def _validate_shape(
        self,
        request: SplitRequest,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Shape validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        total = request.total_amount

        if not total.is_finite() or total <= 0:
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_value",
                message="Total amount must be greater than zero",
                severity="error",
                suggested_fix="Enter the amount that was actually paid",
            ))
        elif total > MAX_AMOUNT:
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_value",
                message=f"Total amount cannot exceed {self._money(MAX_AMOUNT)}",
                severity="error",
            ))
        elif not _is_money(total):
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_precision",
                message=f"Total amount ({total}) has more than two decimal places",
                severity="error",
                suggested_fix="Round the amount to the nearest paisa",
            ))

        if request.payer_id in request.members:
            issues.append(ValidationIssue(
                field="members",
                issue_type="payer_in_members",
                message="The payer is always included and cannot be selected as a member",
                severity="error",
                suggested_fix="Remove yourself from the member list",
            ))

        if len(set(request.members)) != len(request.members):
            issues.append(ValidationIssue(
                field="members",
                issue_type="duplicate",
                message="A member was selected more than once",
                severity="error",
                suggested_fix="Select each member only once",
            ))

        if not request.members:
            issues.append(ValidationIssue(
                field="members",
                issue_type="empty",
                message="No members selected, the payer will owe the entire amount",
                severity="warning",
            ))

        strategy = request.strategy
        if isinstance(strategy, PercentageSplit):
            issues.extend(self._check_keys("percentages", strategy.percentages, request))
            for user_id, pct in strategy.percentages.items():
                if not pct.is_finite() or pct < 0 or pct > HUNDRED:
                    issues.append(ValidationIssue(
                        field=f"percentages.{user_id}",
                        issue_type="out_of_range",
                        message=f"Percentage ({pct}) must be between 0 and 100",
                        severity="error",
                    ))
        elif isinstance(strategy, CustomSplit):
            issues.extend(self._check_keys("amounts", strategy.amounts, request))
            for user_id, amount in strategy.amounts.items():
                if not amount.is_finite() or amount < 0:
                    issues.append(ValidationIssue(
                        field=f"amounts.{user_id}",
                        issue_type="invalid_value",
                        message=f"Amount ({amount}) cannot be negative",
                        severity="error",
                    ))
                elif amount > MAX_AMOUNT:
                    issues.append(ValidationIssue(
                        field=f"amounts.{user_id}",
                        issue_type="invalid_value",
                        message=f"Amount cannot exceed {self._money(MAX_AMOUNT)}",
                        severity="error",
                    ))
                elif not _is_money(amount):
                    issues.append(ValidationIssue(
                        field=f"amounts.{user_id}",
                        issue_type="invalid_precision",
                        message=f"Amount ({amount}) has more than two decimal places",
                        severity="error",
                        suggested_fix="Round the amount to the nearest paisa",
                    ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    @staticmethod
    def _check_keys(
        field: str,
        mapping: dict,
        request: SplitRequest,
    ) -> list[ValidationIssue]:
        issues = []
        selected = set(request.members)
        given = set(mapping)

        missing = selected - given
        if missing:
            issues.append(ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"No {field[:-1]} given for {len(missing)} selected member(s)",
                severity="error",
                suggested_fix=f"Enter a {field[:-1]} for every selected member",
            ))

        unknown = given - selected
        if unknown:
            issues.append(ValidationIssue(
                field=field,
                issue_type="unknown_member",
                message=f"{len(unknown)} {field} entry(ies) belong to users who were not selected",
                severity="error",
                suggested_fix="Only enter values for the selected members",
            ))

        return issues

    def _validate_bounds(
        self,
        request: SplitRequest,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Bound validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        strategy = request.strategy

        if isinstance(strategy, PercentageSplit):
            pct_sum = sum(strategy.percentages.values(), Decimal("0"))
            if pct_sum > HUNDRED:
                issues.append(ValidationIssue(
                    field="percentages",
                    issue_type="exceeds_total",
                    message=f"Percentages add up to {pct_sum}%, which is more than 100%",
                    severity="error",
                    suggested_fix="Lower the percentages so they total 100% or less",
                ))
            elif pct_sum == HUNDRED and request.members:
                issues.append(ValidationIssue(
                    field="percentages",
                    issue_type="payer_owes_nothing",
                    message="Members cover 100%, the payer will owe nothing",
                    severity="info",
                ))
        elif isinstance(strategy, CustomSplit):
            amount_sum = sum(strategy.amounts.values(), Decimal("0"))
            if amount_sum > request.total_amount:
                issues.append(ValidationIssue(
                    field="amounts",
                    issue_type="exceeds_total",
                    message=(
                        f"Amounts add up to {self._money(amount_sum)}, "
                        f"which is more than the total {self._money(request.total_amount)}"
                    ),
                    severity="error",
                    suggested_fix="Lower the amounts so they total the expense or less",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def validate(
        self,
        request: Union[SplitRequest, dict],
    ) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Args:
            request: The split request, or a dict in its shape

        Returns:
            ValidationResult with all issues found
        """
        if isinstance(request, dict):
            request = SplitRequest.model_validate(request)

        all_issues = []

        # Stage 1: Shape validation
        shape_valid, shape_issues = self._validate_shape(request)
        all_issues.extend(shape_issues)

        # Only run stage 2 if stage 1 passes
        bounds_valid = False
        if shape_valid:
            bounds_valid, bound_issues = self._validate_bounds(request)
            all_issues.extend(bound_issues)

        warnings = [
            issue.message for issue in all_issues if issue.severity == "warning"
        ]

        return ValidationResult(
            split_type=request.strategy.split_type,
            shape_valid=shape_valid,
            bounds_valid=bounds_valid,
            is_valid=shape_valid and bounds_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what the expense form shows next to the split.
        """
        if result.is_valid and not result.warnings:
            return "✅ The split adds up. Ready to save."

        lines = []

        if result.has_errors:
            lines.append("❌ This split can't be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please double-check:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.is_valid:
            lines.append("You can still save this split.")
        else:
            lines.append("Please fix the issues above before saving.")

        return "\n".join(lines)

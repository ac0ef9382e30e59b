"""
Input validation rules for deals.

Rates and percents are decimal fractions and must sit in [0, 1].
Out-of-range values fail fast; they are never clamped.
"""

from dataclasses import dataclass
from typing import Any, Optional

from .deal import Deal, DealStatus, DealType


class InvalidRate(ValueError):
    """Raised when a rate, split or percent falls outside [0, 1]."""

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"{field}: {value!r} must be a decimal fraction between 0 and 1")


class ValidationError(Exception):
    """A single validation problem on a deal field."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


@dataclass
class ValidationResult:
    """Result of validation operation."""

    is_valid: bool
    errors: list[ValidationError]
    warnings: list[str]

    def __bool__(self) -> bool:
        return self.is_valid


def check_rate(field: str, value: Optional[float]) -> float:
    """
    Ensure a rate is a decimal fraction in [0, 1].

    Raises:
        InvalidRate: If the value is missing, not numeric or out of range
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRate(field, value)
    if value != value or value < 0 or value > 1:  # NaN compares unequal to itself
        raise InvalidRate(field, value)
    return float(value)


def _rate_error(errors: list[ValidationError], field: str, value: Optional[float]) -> None:
    try:
        check_rate(field, value)
    except InvalidRate as e:
        errors.append(ValidationError(field, "Must be between 0 and 1 (e.g. 0.03 for 3%)", e.value))


def validate_deal(deal: Deal) -> ValidationResult:
    """
    Validate a deal for correctness and completeness.

    Returns ValidationResult with any errors found.
    """
    errors: list[ValidationError] = []
    warnings: list[str] = []

    # Required fields
    if not deal.id:
        errors.append(ValidationError("id", "Deal ID is required"))
    if not deal.broker_id:
        errors.append(ValidationError("broker_id", "Owning broker is required"))
    if not deal.deal_name or not deal.deal_name.strip():
        errors.append(ValidationError("deal_name", "Deal name is required"))
    elif len(deal.deal_name) > 256:
        errors.append(ValidationError(
            "deal_name",
            "Deal name must be 256 characters or less",
            deal.deal_name
        ))

    if not isinstance(deal.status, DealStatus):
        errors.append(ValidationError("status", f"Invalid status: {deal.status}"))
    if not isinstance(deal.deal_type, DealType):
        errors.append(ValidationError("deal_type", f"Invalid deal type: {deal.deal_type}"))

    # Commercial terms
    if deal.price is not None and deal.price < 0:
        errors.append(ValidationError("price", "Price cannot be negative", deal.price))

    _rate_error(errors, "commission_rate", deal.commission_rate)
    _rate_error(errors, "broker_split", deal.broker_split)

    for i, split in enumerate(deal.additional_splits):
        _rate_error(errors, f"additional_splits[{i}].percent", split.percent)
        if not split.label:
            warnings.append(f"Additional split #{i + 1} has no label")

    total_additional = sum(
        s.percent for s in deal.additional_splits if isinstance(s.percent, (int, float))
    )
    if total_additional > 1:
        warnings.append(
            f"Additional splits total {total_additional:.0%} of the post-house amount"
        )

    # Participants
    explicit = []
    for i, member in enumerate(deal.deal_members):
        if not member.broker_id:
            errors.append(ValidationError(f"deal_members[{i}].broker_id", "Broker is required"))
        if member.split_percent is not None:
            _rate_error(errors, f"deal_members[{i}].split_percent", member.split_percent)
            explicit.append(member.split_percent)

    broker_ids = [m.broker_id for m in deal.deal_members]
    if len(set(broker_ids)) != len(broker_ids):
        errors.append(ValidationError("deal_members", "A broker can only be listed once"))

    if explicit and len(explicit) == len(deal.deal_members):
        if abs(sum(explicit) - 1.0) > 1e-9:
            warnings.append(f"Member splits total {sum(explicit):.0%}, not 100%")

    # Scheduling
    for name in ("feasibility_days", "inside_close_days", "outside_close_days"):
        value = getattr(deal, name)
        if value is not None and value < 0:
            errors.append(ValidationError(name, "Day counts cannot be negative", value))

    if deal.has_dynamic_dates and deal.has_legacy_schedule:
        warnings.append("Deal has both dated milestones and legacy day counts; dated milestones are used")

    for i, dd in enumerate(deal.deal_dates):
        if dd.date is None:
            warnings.append(f"Milestone '{dd.label or i}' has no date and will be skipped")

    # Terminal fields
    if deal.status == DealStatus.CLOSED and deal.actual_close_date is None:
        warnings.append("Closed deal has no actual close date")

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )

from stockledger.core.errors import ValidationError, ValidationIssue
from stockledger.services.stock_store import MovementContext

VARIANT_ID_MAX_LENGTH = 64
LOCATION_ID_MAX_LENGTH = 36
REFERENCE_MAX_LENGTH = 120
NOTES_MAX_LENGTH = 500
ACTOR_ID_MAX_LENGTH = 64


def identifier_issues(
    field: str,
    value: object,
    *,
    required: bool = True,
    max_length: int = LOCATION_ID_MAX_LENGTH,
) -> list[ValidationIssue]:
    if value is None:
        if required:
            return [ValidationIssue(field, "Field required", "missing")]
        return []
    if not isinstance(value, str) or not value.strip():
        return [ValidationIssue(field, "Must be a non-empty identifier", "string_type")]
    if len(value) > max_length:
        return [ValidationIssue(field, f"Must be at most {max_length} characters", "string_too_long")]
    return []


def integer_issues(field: str, value: object, *, minimum: int) -> list[ValidationIssue]:
    # bool is an int subclass; True is not a quantity.
    if value is None:
        return [ValidationIssue(field, "Field required", "missing")]
    if isinstance(value, bool) or not isinstance(value, int):
        return [ValidationIssue(field, "Must be an integer", "int_type")]
    if value < minimum:
        if minimum == 1:
            return [ValidationIssue(field, "Must be greater than 0", "greater_than")]
        return [ValidationIssue(field, f"Must be greater than or equal to {minimum}", "greater_than_equal")]
    return []


def context_issues(context: MovementContext) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    limits = (
        ("reference", context.reference, REFERENCE_MAX_LENGTH),
        ("notes", context.notes, NOTES_MAX_LENGTH),
        ("created_by", context.created_by, ACTOR_ID_MAX_LENGTH),
    )
    for field, value, max_length in limits:
        if value is None:
            continue
        if not isinstance(value, str):
            issues.append(ValidationIssue(field, "Must be a string", "string_type"))
        elif len(value) > max_length:
            issues.append(ValidationIssue(field, f"Must be at most {max_length} characters", "string_too_long"))
    return issues


def raise_for_issues(issues: list[ValidationIssue]) -> None:
    if issues:
        raise ValidationError(issues)


def validate_movement(
    *,
    variant_id: object,
    quantity: object,
    context: MovementContext,
    locations: dict[str, object],
    optional_locations: dict[str, object] | None = None,
) -> None:
    issues = identifier_issues("variant_id", variant_id, max_length=VARIANT_ID_MAX_LENGTH)
    issues += integer_issues("quantity", quantity, minimum=1)
    for field, value in locations.items():
        issues += identifier_issues(field, value)
    for field, value in (optional_locations or {}).items():
        issues += identifier_issues(field, value, required=False)
    issues += context_issues(context)
    raise_for_issues(issues)


def validate_transfer(
    *,
    variant_id: object,
    quantity: object,
    from_location_id: object,
    to_location_id: object,
    context: MovementContext,
) -> None:
    issues = identifier_issues("variant_id", variant_id, max_length=VARIANT_ID_MAX_LENGTH)
    issues += integer_issues("quantity", quantity, minimum=1)
    issues += identifier_issues("from_location_id", from_location_id)
    issues += identifier_issues("to_location_id", to_location_id)
    if from_location_id is not None and from_location_id == to_location_id:
        issues.append(
            ValidationIssue("to_location_id", "Source and destination locations must be different", "value_error")
        )
    issues += context_issues(context)
    raise_for_issues(issues)


def validate_adjustment(
    *,
    variant_id: object,
    location_id: object,
    new_quantity: object,
    context: MovementContext,
) -> None:
    issues = identifier_issues("variant_id", variant_id, max_length=VARIANT_ID_MAX_LENGTH)
    issues += identifier_issues("location_id", location_id)
    issues += integer_issues("new_quantity", new_quantity, minimum=0)
    issues += context_issues(context)
    raise_for_issues(issues)


def validate_minimum_stock(*, variant_id: object, location_id: object, minimum: object) -> None:
    issues = identifier_issues("variant_id", variant_id, max_length=VARIANT_ID_MAX_LENGTH)
    issues += identifier_issues("location_id", location_id)
    issues += integer_issues("minimum", minimum, minimum=0)
    raise_for_issues(issues)

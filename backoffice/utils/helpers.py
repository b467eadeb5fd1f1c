"""Shared request-parsing helpers for blueprints and services.

parse_date_input:  strict YYYY-MM-DD parsing, raises ValidationError
parse_id_list:     integer id list parsing with de-duplication
"""
from datetime import date, datetime

from backoffice.core.exceptions import ValidationError


def parse_date_input(value, field: str = "date"):
    """Parse a ``YYYY-MM-DD`` string, raising ValidationError on bad input.

    Returns None for empty input; date objects pass through unchanged.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD.", details={field: str(value)}
        ) from exc


def parse_id_list(values, field: str = "ids") -> list[int]:
    """Coerce a list of ids to unique positive integers, keeping first-seen order.

    Non-list input, non-integer values and non-positive values raise
    ValidationError. The empty list is returned as-is; callers decide
    whether empty is acceptable.
    """
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list", details={field: "not a list"})

    seen: set[int] = set()
    ids: list[int] = []
    for raw in values:
        if isinstance(raw, bool):
            raise ValidationError(f"{field} must contain integers", details={field: repr(raw)})
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"{field} must contain integers", details={field: repr(raw)}
            ) from exc
        if isinstance(raw, float) and raw != value:
            raise ValidationError(f"{field} must contain integers", details={field: repr(raw)})
        if value <= 0:
            raise ValidationError(f"{field} must be positive", details={field: value})
        if value not in seen:
            seen.add(value)
            ids.append(value)
    return ids

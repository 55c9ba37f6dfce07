from __future__ import annotations

import math
from datetime import date, datetime

from nsm.domain.errors import ValidationError


def _number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{label} must be a number.")
    return number


def require_positive(value: object, label: str) -> float:
    number = _number(value, label)
    if number <= 0:
        raise ValidationError(f"{label} must be > 0.")
    return number


def require_non_negative(value: object, label: str) -> float:
    number = _number(value, label)
    if number < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return number


def require_text(value: object, label: str) -> str:
    text = (str(value) if value is not None else "").strip()
    if not text:
        raise ValidationError(f"{label} is required.")
    return text


def require_reference(value: object, message: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


def require_date(value: object) -> str:
    """Normalizes a date input to ISO YYYY-MM-DD."""
    if value is None or value == "":
        raise ValidationError("Date is required.")
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        if len(text) <= 10:
            return date.fromisoformat(text).isoformat()
        # Timestamps are accepted; any other trailing text is not.
        if text[10] not in "T ":
            raise ValueError(text)
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}. Expected YYYY-MM-DD.") from e


def optional_date(value: object) -> str | None:
    if value is None or value == "":
        return None
    return require_date(value)

from __future__ import annotations

import math

from nsm.domain.errors import ValidationError


def validate_conversion_factor(factor: object) -> float:
    try:
        value = float(factor)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Conversion factor must be a number. Received: {factor!r}") from e
    if math.isnan(value) or value <= 0:
        raise ValidationError("Conversion factor must be > 0.")
    return value


def to_base_units(qty: float, factor: float) -> float:
    """Purchase units -> base units. No rounding is applied."""
    return float(qty) * validate_conversion_factor(factor)


def line_consumption(default_quantity: float, use_unit_system: bool, factor: float) -> float:
    """Base units one bill-of-materials line consumes per execution.

    With `use_unit_system` the line quantity is expressed in purchase units
    and is converted; otherwise it is already in base units.
    """
    factor = validate_conversion_factor(factor)
    if use_unit_system:
        return float(default_quantity) * factor
    return float(default_quantity)

import math

import pytest

from nsm.domain.errors import ValidationError
from nsm.domain.models import BillOfMaterialLine
from nsm.domain.units import line_consumption, to_base_units, validate_conversion_factor


def test_to_base_units_multiplies_without_rounding():
    assert to_base_units(2, 5) == 10
    assert to_base_units(0.3, 3) == pytest.approx(0.9)
    assert to_base_units(1, 0.001) == 0.001


@pytest.mark.parametrize("factor", [0, -1, "abc", None, math.nan])
def test_invalid_conversion_factor_is_rejected(factor):
    with pytest.raises(ValidationError):
        validate_conversion_factor(factor)


def test_line_consumption_applies_factor_only_with_unit_system():
    assert line_consumption(2, False, 5) == 2
    assert line_consumption(2, True, 5) == 10


def test_line_consumption_still_validates_factor():
    with pytest.raises(ValidationError):
        line_consumption(2, False, 0)


def test_bill_of_materials_line_deduced_quantity():
    line = BillOfMaterialLine(product_id=1, default_quantity=0.5, use_unit_system=True, conversion_factor=4)
    assert line.deduced_quantity == 2

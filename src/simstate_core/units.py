# src/simstate_core/units.py
import logging
from typing import Optional

import pint

logger = logging.getLogger(__name__)
ureg = pint.UnitRegistry()
Quantity = ureg.Quantity
logger.info("Pint Unit Registry initialized.")


def parse_variable_units(units_str: Optional[str]) -> pint.Unit:
    """
    Parses the declared units of a field variable.

    An empty or missing declaration means the field is dimensionless.

    Raises:
        pint.UndefinedUnitError: If the string names an unknown unit.
    """
    if not units_str:
        return ureg.dimensionless
    return ureg.parse_units(units_str)

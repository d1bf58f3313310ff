# src/simstate_core/variables/registry.py
"""
The ordered registry of field variables declared on a System.

Variables are appended before the System is initialized and are never removed:
the variable set is fixed for the lifetime of a discretization.
"""
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Union

import pint

from ..units import parse_variable_units
from .exceptions import DuplicateVariableError, InvalidVariableUnitsError, VariableNotFoundError

logger = logging.getLogger(__name__)


class FEFamily(IntEnum):
    """
    Approximation families. The integer value is the code persisted in file headers
    and must never be renumbered.
    """
    LAGRANGE = 0
    MONOMIAL = 1

    @property
    def is_continuous(self) -> bool:
        """True for families whose DOFs are shared between neighbouring elements."""
        return self is FEFamily.LAGRANGE

    @classmethod
    def from_string(cls, name: str) -> "FEFamily":
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown FE family '{name}'. Known families: {[f.name for f in cls]}.") from None


@dataclass(frozen=True)
class FEType:
    """The approximation-family descriptor of a variable: family plus polynomial order."""
    family: FEFamily
    order: int

    def __post_init__(self):
        min_order = 1 if self.family is FEFamily.LAGRANGE else 0
        if self.order < min_order:
            raise ValueError(f"{self.family.name} requires order >= {min_order}, got {self.order}.")

    def __str__(self):
        return f"{self.family.name}({self.order})"


@dataclass(frozen=True)
class Variable:
    """A named scalar field declared on a System. Immutable once created."""
    name: str
    number: int
    fe_type: FEType
    # An empty set means "active on every subdomain".
    subdomains: FrozenSet[int] = field(default_factory=frozenset)
    units: Optional[str] = None

    def active_on_subdomain(self, subdomain_id: int) -> bool:
        return not self.subdomains or subdomain_id in self.subdomains


class VariableRegistry:
    """Ordered, append-only collection of the variables of one System."""

    def __init__(self, system_name: str):
        self._system_name = system_name
        self._variables: List[Variable] = []
        self._numbers: Dict[str, int] = {}

    def add_variable(
        self,
        name: str,
        fe_type: FEType,
        subdomains: Optional[Iterable[int]] = None,
        units: Optional[str] = None
    ) -> int:
        """
        Appends a variable and returns its ordinal.

        Raises:
            DuplicateVariableError: If `name` is already registered. The registry
                                    is left unchanged.
            InvalidVariableUnitsError: If `units` cannot be parsed. The registry
                                       is left unchanged.
        """
        if name in self._numbers:
            raise DuplicateVariableError(system_name=self._system_name, variable_name=name)
        if units:
            try:
                parse_variable_units(units)
            except (pint.errors.UndefinedUnitError, pint.errors.DefinitionSyntaxError, ValueError) as e:
                raise InvalidVariableUnitsError(
                    system_name=self._system_name, variable_name=name, units=units, details=str(e)
                ) from e

        number = len(self._variables)
        variable = Variable(
            name=name,
            number=number,
            fe_type=fe_type,
            subdomains=frozenset(subdomains) if subdomains else frozenset(),
            units=units,
        )
        self._variables.append(variable)
        self._numbers[name] = number
        logger.debug(f"[{self._system_name}] Added variable #{number} '{name}' of type {fe_type}.")
        return number

    def variable(self, key: Union[int, str]) -> Variable:
        """Returns a variable by ordinal or by name."""
        if isinstance(key, str):
            return self._variables[self.variable_number(key)]
        if not 0 <= key < len(self._variables):
            raise VariableNotFoundError(
                system_name=self._system_name, variable_name=f"#{key}", available=self.names()
            )
        return self._variables[key]

    def variable_number(self, name: str) -> int:
        try:
            return self._numbers[name]
        except KeyError:
            raise VariableNotFoundError(
                system_name=self._system_name, variable_name=name, available=self.names()
            ) from None

    def has_variable(self, name: str) -> bool:
        return name in self._numbers

    def active_on_subdomain(self, number: int, subdomain_id: int) -> bool:
        return self.variable(number).active_on_subdomain(subdomain_id)

    def names(self) -> List[str]:
        return [v.name for v in self._variables]

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[Variable]:
        return iter(self._variables)

    def __getitem__(self, number: int) -> Variable:
        return self.variable(number)

# src/simstate_core/solve/strategy.py
import inspect
import logging
from typing import Dict, Optional, Type

from .capabilities import SolveCapability, TCapability

logger = logging.getLogger(__name__)


class SolveStrategy:
    """
    Base class for solve strategies. A strategy provides nothing by default;
    subclasses declare what they support with nested `@provides` classes:

        class MyStrategy(SolveStrategy):
            @provides(ISolver)
            class Solver:
                def solve(self, system, context): ...
    """

    def __init__(self):
        self._capability_cache: Dict[Type[SolveCapability], SolveCapability] = {}

    @classmethod
    def declare_capabilities(cls) -> Dict[Type[SolveCapability], Type]:
        """
        Maps each capability Protocol to the nested class implementing it. The MRO
        is walked from the most derived class, so a subclass overrides a capability
        declared by its parents.
        """
        discovered = {}
        for base_class in cls.__mro__:
            for _, member_obj in inspect.getmembers(base_class, inspect.isclass):
                protocol = getattr(member_obj, '_implements_capability', None)
                if protocol is not None and protocol not in discovered:
                    discovered[protocol] = member_obj
        return discovered

    def get_capability(self, capability_type: Type[TCapability]) -> Optional[TCapability]:
        """An instance of the implementation of `capability_type`, or None if unsupported."""
        if capability_type in self._capability_cache:
            return self._capability_cache[capability_type]

        impl_class = type(self).declare_capabilities().get(capability_type)
        if impl_class:
            instance = impl_class()
            self._capability_cache[capability_type] = instance
            return instance
        return None

    def has_capability(self, capability_type: Type[SolveCapability]) -> bool:
        return capability_type in type(self).declare_capabilities()

    def __repr__(self):
        names = sorted(p.__name__ for p in type(self).declare_capabilities())
        return f"{type(self).__name__}(capabilities={names})"

# src/simstate_core/discretization/__init__.py
from .capabilities import IElement, IMesh, IDofMap, IFEEvaluator
from .fe import ReferenceFE, gauss_legendre
from .interval_mesh import Element, Node, IntervalMesh, RefinementForest
from .dof_map import DofMap, NODE, ELEM, DOF_OBJECT_KINDS

__all__ = [
    # Collaborator contracts
    "IElement",
    "IMesh",
    "IDofMap",
    "IFEEvaluator",
    # Reference implementations
    "ReferenceFE",
    "gauss_legendre",
    "Element",
    "Node",
    "IntervalMesh",
    "RefinementForest",
    "DofMap",
    "NODE",
    "ELEM",
    "DOF_OBJECT_KINDS",
]

"""Constraint layer - expressions, evaluation contexts and Plonkish systems.

Gates are Expression trees over advice, fixed, challenge and relaxation
queries. A ConstraintSystem holds the gates of one circuit together with its
lookups, copy constraints and public cells; CircuitBuilder produces such a
system from the standard 4-wire gate, optionally extended with custom gates
such as the curve gates of EccChip.
"""

from .base import ConstraintContext, FoldContext, FoldPoly, RowContext
from .builder import CircuitBuilder, CustomGate, Layout, Var, standard_gate
from .ecc import EccChip, EcPoint, ecc_builder, ecc_gates
from .expression import Advice, Challenge, Constant, Expression, Fixed, Relaxation
from .graph_evaluator import GraphEvaluator
from .lookup import Lookup
from .system import Cell, ConstraintSystem, Gate

__all__ = [
    # Expressions
    "Expression",
    "Advice",
    "Fixed",
    "Challenge",
    "Relaxation",
    "Constant",
    "GraphEvaluator",
    # Contexts
    "ConstraintContext",
    "RowContext",
    "FoldContext",
    "FoldPoly",
    # Systems
    "Cell",
    "Gate",
    "Lookup",
    "ConstraintSystem",
    "CircuitBuilder",
    "Layout",
    "Var",
    "standard_gate",
    "CustomGate",
    # Curve gadgets
    "EccChip",
    "EcPoint",
    "ecc_builder",
    "ecc_gates",
]

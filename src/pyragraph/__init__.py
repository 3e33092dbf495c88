"""pyragraph: computational graphs with temporal dependencies and sliding-window kernels."""

__version__ = "0.1.0"

# core has to be imported before the operation kernels
from pyragraph.core import (
    BinaryFunction, BinaryFunctionType, Matrix, MatrixException, UnaryFunction, UnaryFunctionType,
)
from pyragraph.config import Settings, get_settings, set_settings
from pyragraph.core.graph import ProcedureGraph
from pyragraph.procedure import (
    ForwardProcedure, FunctionalForwardProcedure, Procedure, ProcedureFactory, ProcedureState,
)

__all__ = [
    "Matrix", "MatrixException",
    "UnaryFunction", "UnaryFunctionType", "BinaryFunction", "BinaryFunctionType",
    "Settings", "get_settings", "set_settings",
    "ProcedureGraph",
    "Procedure", "ProcedureFactory", "ProcedureState",
    "ForwardProcedure", "FunctionalForwardProcedure",
]

from pyragraph.core.exceptions import (
    ArgumentsNotDefinedException, DimensionMismatchException, ExpressionLockException,
    InvalidGeometryException, MatrixException, ResultGradientNotDefinedException,
)
from pyragraph.core.functions import BinaryFunction, BinaryFunctionType, UnaryFunction, UnaryFunctionType
from pyragraph.core.matrix import Matrix

__all__ = [
    "Matrix",
    "MatrixException", "DimensionMismatchException", "InvalidGeometryException",
    "ArgumentsNotDefinedException", "ResultGradientNotDefinedException", "ExpressionLockException",
    "UnaryFunction", "UnaryFunctionType", "BinaryFunction", "BinaryFunctionType",
]

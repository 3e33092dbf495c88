from pyragraph.procedure.expression.arithmetic import (
    AddExpression, DivideExpression, DotExpression, MultiplyExpression, SubtractExpression,
)
from pyragraph.procedure.expression.base import BinaryExpression, Expression, UnaryExpression
from pyragraph.procedure.expression.convolution import (
    ConvolveExpression, CrosscorrelateExpression, WinogradConvolveExpression,
)
from pyragraph.procedure.expression.function import (
    BinaryFunctionExpression, FlattenExpression, UnaryFunctionExpression,
)
from pyragraph.procedure.expression.pooling import (
    AveragePoolExpression, CyclicPoolExpression, MaxPoolExpression, RandomPoolExpression,
)
from pyragraph.procedure.expression.reduction import (
    MeanExpression, NormExpression, StandardDeviationExpression, SumExpression, VarianceExpression,
)

__all__ = [
    "Expression", "UnaryExpression", "BinaryExpression",
    "AddExpression", "SubtractExpression", "MultiplyExpression", "DivideExpression", "DotExpression",
    "ConvolveExpression", "CrosscorrelateExpression", "WinogradConvolveExpression",
    "MaxPoolExpression", "RandomPoolExpression", "CyclicPoolExpression", "AveragePoolExpression",
    "SumExpression", "MeanExpression", "VarianceExpression", "StandardDeviationExpression", "NormExpression",
    "UnaryFunctionExpression", "BinaryFunctionExpression", "FlattenExpression",
]

"""Elementwise function tables used by the unary and binary function expressions.

Every derivative is expressed in terms of the function input, so a backward
step only needs the argument value that the forward step consumed.
"""
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np

from pyragraph.core.exceptions import MatrixException

ArrayFunction = Callable[[np.ndarray], np.ndarray]
ArrayBiFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]

_GELU_SCALE = np.sqrt(2.0 / np.pi)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


class UnaryFunctionType(Enum):
    ABS = "abs"
    COS = "cos"
    COSH = "cosh"
    EXP = "exp"
    LOG = "log"
    LOG10 = "log10"
    SGN = "sgn"
    SIN = "sin"
    SINH = "sinh"
    SQRT = "sqrt"
    CBRT = "cbrt"
    MULINV = "mulinv"
    TAN = "tan"
    TANH = "tanh"
    LINEAR = "linear"
    SIGMOID = "sigmoid"
    SWISH = "swish"
    HARDSIGMOID = "hardsigmoid"
    BIPOLARSIGMOID = "bipolarsigmoid"
    TANHSIG = "tanhsig"
    TANHAPPR = "tanhappr"
    HARDTANH = "hardtanh"
    SOFTPLUS = "softplus"
    SOFTSIGN = "softsign"
    RELU = "relu"
    ELU = "elu"
    SELU = "selu"
    GELU = "gelu"
    SOFTMAX = "softmax"
    GAUSSIAN = "gaussian"
    SINACT = "sinact"
    CUSTOM = "custom"


class BinaryFunctionType(Enum):
    POW = "pow"
    CUSTOM = "custom"


def _unary_table(params: Dict[str, float]) -> Dict[UnaryFunctionType, tuple]:
    alpha = params.get("alpha")
    beta = params.get("beta", 1.0)
    selu_lambda = params.get("lambda", 1.0507)
    selu_alpha = params.get("alpha", 1.6733)
    relu_alpha = params.get("alpha", 0.0)
    elu_alpha = alpha if alpha is not None else 1.0

    def tanhsig(x):
        return 1.7159 * np.tanh(2.0 / 3.0 * x)

    def gelu_inner(x):
        return np.tanh(_GELU_SCALE * (x + 0.044715 * x ** 3))

    return {
        UnaryFunctionType.ABS: (np.abs, np.sign),
        UnaryFunctionType.COS: (np.cos, lambda x: -np.sin(x)),
        UnaryFunctionType.COSH: (np.cosh, np.sinh),
        UnaryFunctionType.EXP: (np.exp, np.exp),
        UnaryFunctionType.LOG: (np.log, lambda x: 1.0 / x),
        UnaryFunctionType.LOG10: (np.log10, lambda x: 1.0 / (x * np.log(10.0))),
        UnaryFunctionType.SGN: (np.sign, np.zeros_like),
        UnaryFunctionType.SIN: (np.sin, np.cos),
        UnaryFunctionType.SINH: (np.sinh, np.cosh),
        UnaryFunctionType.SQRT: (np.sqrt, lambda x: 0.5 / np.sqrt(x)),
        UnaryFunctionType.CBRT: (np.cbrt, lambda x: 1.0 / (3.0 * np.cbrt(x) ** 2)),
        UnaryFunctionType.MULINV: (lambda x: 1.0 / x, lambda x: -1.0 / x ** 2),
        UnaryFunctionType.TAN: (np.tan, lambda x: 1.0 / np.cos(x) ** 2),
        UnaryFunctionType.TANH: (np.tanh, lambda x: 1.0 - np.tanh(x) ** 2),
        UnaryFunctionType.LINEAR: (lambda x: x.copy(), np.ones_like),
        UnaryFunctionType.SIGMOID: (_sigmoid, lambda x: _sigmoid(x) * (1.0 - _sigmoid(x))),
        UnaryFunctionType.SWISH: (
            lambda x: x * _sigmoid(beta * x),
            lambda x: _sigmoid(beta * x) + beta * x * _sigmoid(beta * x) * (1.0 - _sigmoid(beta * x)),
        ),
        UnaryFunctionType.HARDSIGMOID: (
            lambda x: np.clip(0.2 * x + 0.5, 0.0, 1.0),
            lambda x: np.where(np.abs(x) < 2.5, 0.2, 0.0),
        ),
        UnaryFunctionType.BIPOLARSIGMOID: (
            lambda x: np.tanh(0.5 * x),
            lambda x: 0.5 * (1.0 - np.tanh(0.5 * x) ** 2),
        ),
        UnaryFunctionType.TANHSIG: (
            tanhsig,
            lambda x: 1.7159 * 2.0 / 3.0 * (1.0 - np.tanh(2.0 / 3.0 * x) ** 2),
        ),
        UnaryFunctionType.TANHAPPR: (
            lambda x: 2.0 / (1.0 + np.exp(-2.0 * x)) - 1.0,
            lambda x: 1.0 - (2.0 / (1.0 + np.exp(-2.0 * x)) - 1.0) ** 2,
        ),
        UnaryFunctionType.HARDTANH: (
            lambda x: np.clip(x, -1.0, 1.0),
            lambda x: np.where(np.abs(x) < 1.0, 1.0, 0.0),
        ),
        UnaryFunctionType.SOFTPLUS: (lambda x: np.logaddexp(0.0, x), _sigmoid),
        UnaryFunctionType.SOFTSIGN: (lambda x: x / (1.0 + np.abs(x)), lambda x: 1.0 / (1.0 + np.abs(x)) ** 2),
        UnaryFunctionType.RELU: (
            lambda x: np.where(x > 0.0, x, relu_alpha * x),
            lambda x: np.where(x > 0.0, 1.0, relu_alpha),
        ),
        UnaryFunctionType.ELU: (
            lambda x: np.where(x > 0.0, x, elu_alpha * (np.exp(np.minimum(x, 0.0)) - 1.0)),
            lambda x: np.where(x > 0.0, 1.0, elu_alpha * np.exp(np.minimum(x, 0.0))),
        ),
        UnaryFunctionType.SELU: (
            lambda x: selu_lambda * np.where(x > 0.0, x, selu_alpha * (np.exp(np.minimum(x, 0.0)) - 1.0)),
            lambda x: selu_lambda * np.where(x > 0.0, 1.0, selu_alpha * np.exp(np.minimum(x, 0.0))),
        ),
        UnaryFunctionType.GELU: (
            lambda x: 0.5 * x * (1.0 + gelu_inner(x)),
            lambda x: 0.5 * (1.0 + gelu_inner(x))
            + 0.5 * x * (1.0 - gelu_inner(x) ** 2) * _GELU_SCALE * (1.0 + 3.0 * 0.044715 * x ** 2),
        ),
        UnaryFunctionType.GAUSSIAN: (lambda x: np.exp(-x ** 2), lambda x: -2.0 * x * np.exp(-x ** 2)),
        UnaryFunctionType.SINACT: (np.sin, np.cos),
    }


class UnaryFunction:
    """Elementwise function with its derivative.

    ``SOFTMAX`` is evaluated per depth over a column vector and has no
    elementwise derivative; use :meth:`softmax_gradient` instead.
    """

    def __init__(self, function_type: UnaryFunctionType, function: Optional[ArrayFunction] = None,
                 derivative: Optional[ArrayFunction] = None, **params: float):
        self.function_type = function_type
        self.params = params
        if function_type == UnaryFunctionType.CUSTOM:
            if function is None or derivative is None:
                raise ValueError("Custom unary function requires both function and derivative")
            self._function, self._derivative = function, derivative
        elif function_type == UnaryFunctionType.SOFTMAX:
            self._function, self._derivative = self._softmax, None
        else:
            self._function, self._derivative = _unary_table(params)[function_type]

    @property
    def is_softmax(self) -> bool:
        return self.function_type == UnaryFunctionType.SOFTMAX

    def function(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(self._function(values), dtype=np.float64)

    def derivative(self, values: np.ndarray) -> np.ndarray:
        if self._derivative is None:
            raise MatrixException(f"{self.function_type.name} has no elementwise derivative")
        return np.broadcast_to(np.asarray(self._derivative(values), dtype=np.float64), values.shape)

    @staticmethod
    def _softmax(values: np.ndarray) -> np.ndarray:
        shifted = np.exp(values - values.max(axis=1, keepdims=True))
        return shifted / shifted.sum(axis=1, keepdims=True)

    @staticmethod
    def softmax_gradient(output: np.ndarray, gradient: np.ndarray) -> np.ndarray:
        # J = diag(s) - s s^T is symmetric, so J^T g = s * (g - s.g)
        inner = (output * gradient).sum(axis=1, keepdims=True)
        return output * (gradient - inner)

    def __repr__(self) -> str:
        return f"UnaryFunction({self.function_type.name})"


class BinaryFunction:
    """Elementwise function of two tensors, differentiated with respect to the first."""

    def __init__(self, function_type: BinaryFunctionType, function: Optional[ArrayBiFunction] = None,
                 derivative: Optional[ArrayBiFunction] = None):
        self.function_type = function_type
        if function_type == BinaryFunctionType.CUSTOM:
            if function is None or derivative is None:
                raise ValueError("Custom binary function requires both function and derivative")
            self._function, self._derivative = function, derivative
        else:
            self._function = np.power
            self._derivative = lambda x, y: y * np.power(x, y - 1.0)

    def function(self, first: np.ndarray, second: np.ndarray) -> np.ndarray:
        return np.asarray(self._function(first, second), dtype=np.float64)

    def derivative(self, first: np.ndarray, second: np.ndarray) -> np.ndarray:
        return np.asarray(self._derivative(first, second), dtype=np.float64)

    def __repr__(self) -> str:
        return f"BinaryFunction({self.function_type.name})"

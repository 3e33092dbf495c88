import numpy as np
import pytest

from pyragraph import Matrix
from pyragraph.core import (
    BinaryFunction, BinaryFunctionType, InvalidGeometryException, MatrixException, UnaryFunction,
    UnaryFunctionType,
)

ELEMENTWISE_TYPES = [function_type for function_type in UnaryFunctionType
                     if function_type not in (UnaryFunctionType.SOFTMAX, UnaryFunctionType.CUSTOM)]


@pytest.mark.parametrize("function_type", ELEMENTWISE_TYPES, ids=lambda function_type: function_type.value)
def test_derivative_matches_central_difference(function_type):
    function = UnaryFunction(function_type)
    # positive and away from the kinks of abs, relu and the hard functions
    values = np.array([[[0.3, 0.45], [0.7, 0.9]]])
    epsilon = 1e-6
    numerical = (function.function(values + epsilon) - function.function(values - epsilon)) / (2.0 * epsilon)
    np.testing.assert_allclose(function.derivative(values), numerical, atol=1e-5)


def test_softmax_is_a_distribution_per_column():
    values = Matrix(np.array([[[1.0], [2.0], [3.0]], [[0.0], [0.0], [0.0]]]))
    result = values.apply(UnaryFunction(UnaryFunctionType.SOFTMAX))
    np.testing.assert_allclose(result.data.sum(axis=1), 1.0)
    np.testing.assert_allclose(result.data[1, :, 0], 1.0 / 3.0)
    assert result.data[0, 2, 0] > result.data[0, 1, 0] > result.data[0, 0, 0]


def test_softmax_needs_column_vector():
    with pytest.raises(InvalidGeometryException):
        Matrix.ones(2, 2).apply(UnaryFunctionType.SOFTMAX)


def test_softmax_has_no_elementwise_derivative():
    with pytest.raises(MatrixException, match="SOFTMAX has no elementwise derivative"):
        UnaryFunction(UnaryFunctionType.SOFTMAX).derivative(np.ones((1, 3, 1)))


def test_parametrized_relu():
    function = UnaryFunction(UnaryFunctionType.RELU, alpha=0.1)
    np.testing.assert_allclose(function.function(np.array([-2.0, 3.0])), [-0.2, 3.0])
    np.testing.assert_allclose(function.derivative(np.array([-2.0, 3.0])), [0.1, 1.0])


def test_custom_unary_function():
    function = UnaryFunction(UnaryFunctionType.CUSTOM, function=lambda x: x ** 3, derivative=lambda x: 3 * x ** 2)
    assert Matrix.scalar(2.0).apply(function).get_value(0, 0) == 8.0
    with pytest.raises(ValueError):
        UnaryFunction(UnaryFunctionType.CUSTOM, function=np.sin)


def test_pow_and_its_derivative():
    function = BinaryFunction(BinaryFunctionType.POW)
    result = Matrix([[2.0, 3.0]]).apply_bi(Matrix.scalar(2.0), function)
    np.testing.assert_allclose(result.data[0], [[4.0, 9.0]])
    np.testing.assert_allclose(function.derivative(np.array([2.0, 3.0]), np.array(2.0)), [4.0, 6.0])

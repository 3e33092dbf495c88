import numpy as np
import pytest

from pyragraph import Matrix, set_settings
from pyragraph.config import Settings
from pyragraph.procedure import FunctionalForwardProcedure, ProcedureFactory


@pytest.fixture(autouse=True)
def seeded_settings():
    settings = set_settings(Settings(random_seed=7))
    yield settings
    set_settings(Settings())


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def random_matrix(rng):
    def make(rows, columns, depth=1):
        return Matrix(rng.standard_normal((depth, rows, columns)))
    return make


@pytest.fixture
def factory():
    return ProcedureFactory()


@pytest.fixture
def build_procedure(factory):
    """Build a procedure whose inputs are fresh zero matrices of the given shapes."""
    def build(forward, input_shapes, parameters=(), **kwargs):
        inputs = {}

        def input_matrices(reset_previous_input):
            inputs.clear()
            for index, shape in enumerate(input_shapes):
                inputs[index] = Matrix.zeros(*shape)
            return dict(inputs)

        forward_procedure = FunctionalForwardProcedure(input_matrices, lambda: forward(*inputs.values()))
        return factory.get_procedure(forward_procedure, parameter_matrices=parameters, **kwargs)
    return build


@pytest.fixture
def numerical_gradient():
    """Central difference of ``loss()`` with respect to every value of a matrix, perturbed in place."""
    def gradient_of(loss, matrix, epsilon=1e-6):
        gradient = np.zeros_like(matrix.data)
        for position in np.ndindex(*matrix.data.shape):
            original = matrix.data[position]
            matrix.data[position] = original + epsilon
            upper = loss()
            matrix.data[position] = original - epsilon
            lower = loss()
            matrix.data[position] = original
            gradient[position] = (upper - lower) / (2.0 * epsilon)
        return gradient
    return gradient_of

import numpy as np
import pytest

from pyragraph import Matrix
from pyragraph.core import DimensionMismatchException, MatrixException
from pyragraph.procedure import MultiNode, NodeRegister, SingleNode


def test_nodes_are_interned_by_identity():
    register = NodeRegister()
    register.begin_session(1)
    first = Matrix.zeros(2, 2)
    twin = Matrix.zeros(2, 2)
    node = register.define_node(first)
    assert register.define_node(first) is node
    assert register.define_node(twin) is not node
    assert [registered.node_id for registered in register.nodes] == [0, 1]
    assert first in register and len(register) == 2


def test_single_and_multi_nodes():
    register = NodeRegister()
    register.begin_session(1)
    assert isinstance(register.define_node(Matrix.zeros(1, 1), single=True), SingleNode)
    assert isinstance(register.define_node(Matrix.zeros(1, 1)), MultiNode)


def test_changed_shape_is_rejected():
    register = NodeRegister()
    register.begin_session(1)
    matrix = Matrix.zeros(2, 2)
    register.define_node(matrix)
    matrix.data = np.zeros((1, 3, 3))
    with pytest.raises(DimensionMismatchException):
        register.define_node(matrix)


def test_producers_survive_sessions():
    register = NodeRegister()
    register.begin_session(1)
    result = Matrix.zeros(2, 2)
    register.define_result(result, 4)
    register.begin_session(2)
    assert len(register) == 0
    node = register.define_node(result)
    assert node.expression_id == 4
    assert register.producer_of(result) == (1, 4)
    register.reset()
    assert register.producer_of(result) is None


def test_result_cannot_be_registered_twice():
    register = NodeRegister()
    register.begin_session(1)
    matrix = Matrix.zeros(2, 2)
    register.define_node(matrix)
    with pytest.raises(MatrixException):
        register.define_result(matrix, 0)


def test_scalar_node_sums_full_gradient():
    register = NodeRegister()
    register.begin_session(1)
    node = register.define_node(Matrix.scalar(0.0))
    node.cumulate_gradient(0, np.ones((1, 2, 3)))
    node.cumulate_gradient(0, Matrix.scalar(1.0))
    assert node.get_gradient(0).get_value(0, 0) == 7.0


def test_stop_gradient_node_ignores_gradients():
    register = NodeRegister()
    register.begin_session(1)
    node = register.define_node(Matrix.zeros(2, 2))
    node.set_stop_gradient()
    node.cumulate_gradient(0, np.ones((1, 2, 2)))
    assert node.get_gradient(0) is None


def test_gradient_shape_is_checked():
    register = NodeRegister()
    register.begin_session(1)
    node = register.define_node(Matrix.zeros(2, 2))
    with pytest.raises(DimensionMismatchException):
        node.cumulate_gradient(0, np.ones((1, 3, 3)))


def test_constant_multi_node_answers_every_index():
    register = NodeRegister()
    register.begin_session(1)
    matrix = Matrix.ones(2, 2)
    node = register.define_node(matrix)
    node.is_constant = True
    assert node.get_matrix(0) is matrix
    assert node.get_matrix(17) is matrix

import numpy as np
import pytest

from pyragraph import Matrix, ProcedureFactory, ProcedureState
from pyragraph.core import ArgumentsNotDefinedException, MatrixException, UnaryFunctionType

from test_factory import RecurrentForward


def run_recurrence(forward, sequence, initial_state=None):
    state = np.zeros((forward.state_size, 1)) if initial_state is None else initial_state
    states = []
    for inputs in sequence:
        state = np.tanh(forward.weight.data[0] @ inputs + forward.recurrent_weight.data[0] @ state)
        states.append(state)
    return states


@pytest.fixture
def recurrent():
    forward = RecurrentForward(seed=3)
    procedure = ProcedureFactory().get_procedure(forward, parameter_matrices=forward.parameters)
    return forward, procedure


@pytest.fixture
def sequence(rng):
    return [rng.standard_normal((3, 1)) for _ in range(4)]


def as_inputs(sequence, offset=0):
    return {0: {offset + index: Matrix(values) for index, values in enumerate(sequence)}}


def test_forward_follows_the_recurrence(recurrent, sequence):
    forward, procedure = recurrent
    outputs = procedure.calculate_expression(as_inputs(sequence))
    assert procedure.state is ProcedureState.FORWARD_COMPLETE
    for index, expected in enumerate(run_recurrence(forward, sequence)):
        np.testing.assert_allclose(outputs[0][index].data[0], expected, atol=1e-12)


def test_backward_through_time_matches_central_difference(recurrent, sequence, numerical_gradient):
    forward, procedure = recurrent
    procedure.calculate_expression(as_inputs(sequence))
    ones = {0: {index: Matrix.ones(2, 1) for index in range(len(sequence))}}
    input_gradients = procedure.calculate_gradient(ones)
    assert procedure.state is ProcedureState.BACKWARD_COMPLETE

    def loss():
        return sum(state.sum() for state in run_recurrence(forward, sequence))

    for parameter in forward.parameters:
        np.testing.assert_allclose(procedure.get_gradient(parameter).data, numerical_gradient(loss, parameter),
                                   atol=1e-5)

    first_input = Matrix(sequence[0])
    sequence_with_matrix = [first_input.data[0]] + sequence[1:]

    def loss_of_first_input():
        return sum(state.sum() for state in run_recurrence(forward, sequence_with_matrix))

    np.testing.assert_allclose(input_gradients[0][0].data, numerical_gradient(loss_of_first_input, first_input),
                               atol=1e-5)


def test_truncated_backward_stops_after_last_steps(recurrent, sequence):
    forward, procedure = recurrent
    procedure.calculate_expression(as_inputs(sequence))
    procedure.calculate_gradient({0: {3: Matrix.ones(2, 1)}}, truncate_steps=1)
    assert procedure.state is ProcedureState.BACKWARD_COMPLETE

    states = run_recurrence(forward, sequence)
    local = 1.0 - states[3] ** 2
    np.testing.assert_allclose(procedure.get_gradient(forward.weight).data[0], local @ sequence[3].T, atol=1e-12)
    np.testing.assert_allclose(procedure.get_gradient(forward.recurrent_weight).data[0], local @ states[2].T,
                               atol=1e-12)


def test_reversed_input_runs_from_the_last_index(sequence):
    forward = RecurrentForward(seed=3)
    procedure = ProcedureFactory().get_procedure(forward, parameter_matrices=forward.parameters,
                                                 reversed_input=True)
    outputs = procedure.calculate_expression(as_inputs(sequence))
    expected = run_recurrence(forward, list(reversed(sequence)))
    np.testing.assert_allclose(outputs[0][0].data[0], expected[-1], atol=1e-12)
    np.testing.assert_allclose(outputs[0][3].data[0], expected[0], atol=1e-12)


def test_dependencies_carry_over_between_passes(recurrent, sequence):
    forward, procedure = recurrent
    procedure.calculate_expression(as_inputs(sequence[:2]))
    stored = procedure.store_dependencies()
    assert len(stored) == 1

    outputs = procedure.calculate_expression(as_inputs(sequence[2:], offset=2))
    expected = run_recurrence(forward, sequence)
    np.testing.assert_allclose(outputs[0][3].data[0], expected[3], atol=1e-12)

    procedure.reset_dependencies()
    outputs = procedure.calculate_expression(as_inputs(sequence[2:], offset=2))
    np.testing.assert_allclose(outputs[0][3].data[0], run_recurrence(forward, sequence[2:])[1], atol=1e-12)

    procedure.restore_dependencies(stored)
    outputs = procedure.calculate_expression(as_inputs(sequence[2:], offset=2))
    np.testing.assert_allclose(outputs[0][3].data[0], expected[3], atol=1e-12)

    with pytest.raises(MatrixException):
        procedure.restore_dependencies({-1: Matrix.zeros(2, 1)})


def test_gradient_requires_completed_forward(recurrent):
    _, procedure = recurrent
    assert procedure.state is ProcedureState.IDLE
    with pytest.raises(MatrixException, match="forward pass"):
        procedure.calculate_gradient({0: {0: Matrix.ones(2, 1)}})


def test_reset_returns_to_idle(recurrent, sequence):
    _, procedure = recurrent
    procedure.calculate_expression(as_inputs(sequence))
    procedure.reset()
    assert procedure.state is ProcedureState.IDLE
    assert procedure.output_nodes[0].get_matrix(0) is None


def test_static_procedure_runs_over_all_indices(build_procedure, random_matrix):
    weight = random_matrix(2, 3)
    procedure = build_procedure(lambda x: (weight @ x).apply(UnaryFunctionType.SIGMOID), [(3, 1)],
                                parameters=[weight])
    samples = [random_matrix(3, 1) for _ in range(3)]
    outputs = procedure.calculate_expression({0: dict(enumerate(samples))})
    for index, sample in enumerate(samples):
        expected = 1.0 / (1.0 + np.exp(-(weight.data[0] @ sample.data[0])))
        np.testing.assert_allclose(outputs[0][index].data[0], expected)

    procedure.calculate_gradient({0: {index: Matrix.ones(2, 1) for index in range(3)}})
    expected = np.zeros((2, 3))
    for sample, output in zip(samples, outputs[0].values()):
        expected += (output.data[0] * (1.0 - output.data[0])) @ sample.data[0].T
    np.testing.assert_allclose(procedure.get_parameter_gradients()[weight].data[0], expected, atol=1e-12)


def test_single_step_reductions_span_all_indices(build_procedure):
    procedure = build_procedure(lambda x: x.mean_over_samples(), [(2, 2)])
    samples = {index: Matrix(np.full((2, 2), float(index))) for index in range(3)}
    outputs = procedure.calculate_expression({0: samples})
    np.testing.assert_allclose(outputs[0][0].data, 1.0)
    assert outputs[0][2] is outputs[0][0]

    input_gradients = procedure.calculate_gradient({0: {2: Matrix.ones(2, 2)}})
    for index in range(3):
        np.testing.assert_allclose(input_gradients[0][index].data, 1.0 / 3.0)


@pytest.mark.parametrize("reduction,expected", [("sum_over_samples", 9.0),
                                                ("variance_over_samples", 4.0),
                                                ("standard_deviation_over_samples", 2.0)])
def test_other_single_step_reductions(build_procedure, reduction, expected):
    procedure = build_procedure(lambda x: getattr(x, reduction)(), [(1, 2)])
    samples = {index: Matrix(np.full((1, 2), float(value))) for index, value in enumerate([1.0, 3.0, 5.0])}
    outputs = procedure.calculate_expression({0: samples})
    np.testing.assert_allclose(outputs[0][1].data, expected)


def test_missing_input_is_reported(build_procedure):
    procedure = build_procedure(lambda x, y: x + y, [(2, 2), (2, 2)])
    with pytest.raises(ArgumentsNotDefinedException, match="ADD: Arguments for operation not defined"):
        procedure.calculate_expression({0: {0: Matrix.ones(2, 2)}})


def test_unknown_input_is_rejected(build_procedure):
    procedure = build_procedure(lambda x: x * 2.0, [(2, 2)])
    with pytest.raises(MatrixException):
        procedure.calculate_expression({5: {0: Matrix.ones(2, 2)}})


def test_regularization_error_is_collected_once_per_node(build_procedure):
    class L2:
        def __init__(self, weight):
            self.weight = weight

        def forward(self, node):
            pass

        def backward(self, node):
            node.cumulate_gradient(None, 2.0 * self.weight * node.reference_matrix.data)

        def error(self, node):
            return self.weight * float(np.sum(node.reference_matrix.data ** 2))

    weight = Matrix.ones(2, 2)
    procedure = build_procedure(lambda x: weight @ x + weight @ x, [(2, 1)], parameters=[weight])
    procedure.get_node(weight).regularizers.append(L2(0.5))
    assert procedure.cumulate_regularization_error() == pytest.approx(2.0)


def test_chain_descriptions_and_graph(recurrent):
    _, procedure = recurrent
    description = procedure.describe_expression_chain()
    assert description.splitlines()[0].startswith("Expression 0: DOT(")
    assert "TANH" in description
    assert len(procedure.describe_gradient_chain().splitlines()) == 4

    graph = procedure.to_graph()
    assert graph.is_acyclic()
    order = graph.topological_order()
    output_id = procedure.output_nodes[0].node_id
    assert order.index(output_id) == len(order) - 1
    assert graph.dependency_edges == [(output_id, next(iter(procedure.dependencies)))]


@pytest.mark.parametrize("reduction", ["norm_as_matrix", "standard_deviation_as_matrix"])
def test_zero_valued_reduction_passes_zero_gradient(build_procedure, random_matrix, reduction):
    weight = random_matrix(2, 3)
    procedure = build_procedure(lambda x: getattr(weight @ x, reduction)(), [(3, 1)], parameters=[weight])
    outputs = procedure.calculate_expression({0: {0: Matrix.zeros(3, 1)}})
    np.testing.assert_allclose(outputs[0][0].data, 0.0)

    input_gradients = procedure.calculate_gradient({0: {0: Matrix.scalar(1.0)}})
    assert procedure.state is ProcedureState.BACKWARD_COMPLETE
    np.testing.assert_allclose(procedure.get_gradient(weight).data, 0.0)
    np.testing.assert_allclose(input_gradients[0][0].data, 0.0)


def test_random_pool_routes_gradient_to_selected_cells(build_procedure, random_matrix):
    procedure = build_procedure(lambda x: x.random_pool(2, stride=2), [(4, 4, 2)])
    inputs = random_matrix(4, 4, 2)
    outputs = procedure.calculate_expression({0: {0: inputs}})
    pooled = outputs[0][0].data

    output_gradient = random_matrix(2, 2, 2)
    input_gradient = procedure.calculate_gradient({0: {0: output_gradient}})[0][0].data

    expected = np.zeros_like(inputs.data)
    for depth, row, column in np.ndindex(*pooled.shape):
        window = inputs.data[depth, 2 * row:2 * row + 2, 2 * column:2 * column + 2]
        (selected_row,), (selected_column,) = np.nonzero(window == pooled[depth, row, column])
        expected[depth, 2 * row + selected_row, 2 * column + selected_column] = output_gradient.data[depth, row, column]
    np.testing.assert_array_equal(input_gradient, expected)


class RecordingNormalizer:
    def __init__(self):
        self.calls = []

    def forward(self, node, index):
        self.calls.append(("forward", index))

    def forward_finalize(self, node):
        self.calls.append(("forward_finalize", None))

    def backward(self, node, index):
        self.calls.append(("backward", index))

    def backward_finalize(self, node):
        self.calls.append(("backward_finalize", None))


def test_normalizer_hooks_run_per_index_then_finalize(build_procedure):
    procedure = build_procedure(lambda x: x.apply(UnaryFunctionType.TANH), [(2, 1)])
    normalizer = RecordingNormalizer()
    procedure.input_nodes[0].normalizers.append(normalizer)

    samples = {index: Matrix.ones(2, 1) for index in range(3)}
    procedure.calculate_expression({0: samples})
    assert normalizer.calls == [("forward", 0), ("forward", 1), ("forward", 2), ("forward_finalize", None)]

    normalizer.calls.clear()
    procedure.calculate_gradient({0: {index: Matrix.ones(2, 1) for index in range(3)}})
    assert normalizer.calls == [("backward", 2), ("backward", 1), ("backward", 0), ("backward_finalize", None)]

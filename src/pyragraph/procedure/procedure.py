import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pyragraph.core.exceptions import ArgumentsNotDefinedException, MatrixException
from pyragraph.core.graph import ProcedureGraph
from pyragraph.core.matrix import Matrix
from pyragraph.procedure.expression import Expression
from pyragraph.procedure.node import Node

logger = logging.getLogger(__name__)

Indices = Union[int, Sequence[int]]
SampleMatrices = Mapping[int, Mapping[int, Matrix]]


class ProcedureState(Enum):
    IDLE = "idle"
    FORWARD_IN_PROGRESS = "forward_in_progress"
    FORWARD_COMPLETE = "forward_complete"
    BACKWARD_IN_PROGRESS = "backward_in_progress"
    BACKWARD_COMPLETE = "backward_complete"


class Procedure:
    """Executable graph built by :class:`~pyragraph.procedure.factory.ProcedureFactory`.

    Without dependent nodes, the forward and backward passes run expression by
    expression over all indices. With dependent nodes they run index by index:
    a dependent argument takes the value of its linked result at the previous
    index, and passes its gradient back to that result.
    """

    def __init__(self, procedure_id: int, input_nodes: Dict[int, Node], output_nodes: Dict[int, Node],
                 nodes: List[Node], expressions: List[Expression], gradient_expressions: List[Expression],
                 dependencies: Optional[Dict[int, int]] = None, parameter_matrices: Iterable[Matrix] = (),
                 constant_matrices: Iterable[Matrix] = (), stop_gradient_matrices: Iterable[Matrix] = (),
                 reversed_input: bool = False):
        self.procedure_id = procedure_id
        self.input_nodes = input_nodes
        self.output_nodes = output_nodes
        self.nodes = nodes
        self.expressions = expressions
        self.gradient_expressions = gradient_expressions
        self.dependencies = dict(dependencies or {})
        self.reversed_input = reversed_input
        self.parameter_matrices = list(parameter_matrices)
        self.constant_matrices = list(constant_matrices)
        self._nodes_by_matrix: Dict[Matrix, Node] = {node.reference_matrix: node for node in nodes}
        self._state = ProcedureState.IDLE
        self._forward_order: Dict[int, Optional[int]] = {}
        self._gradient_steps = 0
        self._stored_dependencies: Dict[int, Matrix] = {}

        produced = {expression.result.node_id for expression in expressions}
        inputs = {node.node_id for node in input_nodes.values()}
        for node in nodes:
            node.is_constant = node.node_id not in produced and node.node_id not in inputs \
                and node.node_id not in self.dependencies
            node.reset()
        for matrix in stop_gradient_matrices:
            node = self.get_node(matrix)
            if node is not None:
                node.set_stop_gradient(True)

        if not ProcedureGraph(self).is_acyclic():
            raise MatrixException(f"Procedure {procedure_id} contains a cycle")

    @property
    def state(self) -> ProcedureState:
        return self._state

    @property
    def has_dependent_nodes(self) -> bool:
        return bool(self.dependencies)

    @property
    def expression_head(self) -> Optional[Expression]:
        return self.expressions[0] if self.expressions else None

    @property
    def gradient_head(self) -> Optional[Expression]:
        return self.gradient_expressions[0] if self.gradient_expressions else None

    def get_node(self, matrix: Matrix) -> Optional[Node]:
        return self._nodes_by_matrix.get(matrix)

    def get_gradient(self, matrix: Matrix, index: Optional[int] = None) -> Optional[Matrix]:
        node = self.get_node(matrix)
        if node is None:
            raise MatrixException(f"{matrix!r} is not part of procedure {self.procedure_id}")
        return node.get_gradient(index)

    def get_parameter_gradients(self) -> Dict[Matrix, Optional[Matrix]]:
        return {matrix: self.get_gradient(matrix) for matrix in self.parameter_matrices if matrix in self._nodes_by_matrix}

    def reset(self) -> None:
        """Clear every per-index value and gradient; the graph itself is kept."""
        for node in self.nodes:
            node.reset()
        for expression in self.expressions:
            expression.reset()
        self._forward_order = {}
        self._gradient_steps = 0
        self._state = ProcedureState.IDLE

    # forward

    def calculate_expression(self, inputs: SampleMatrices) -> Dict[int, Dict[int, Matrix]]:
        """Run the forward pass over every sample index present in ``inputs``.

        ``inputs`` maps an input position to ``{sample index: Matrix}``. Returns
        the output values in the same layout.
        """
        self.reset()
        indices = sorted({index for samples in inputs.values() for index in samples})
        if not indices:
            raise MatrixException("No sample indices given for the forward pass")
        if self.reversed_input:
            indices.reverse()
        for input_index, samples in inputs.items():
            node = self.input_nodes.get(input_index)
            if node is None:
                raise MatrixException(f"Procedure {self.procedure_id} has no input {input_index}")
            for index, matrix in samples.items():
                node.set_matrix(index, matrix)
        logger.debug("Procedure %d forward over %d indices", self.procedure_id, len(indices))
        self.calculate_expression_step(indices, indices[0], indices[-1])
        return {output_index: {index: node.get_matrix(index) for index in indices}
                for output_index, node in self.output_nodes.items()}

    def calculate_expression_step(self, indices: Indices, first_index: int, last_index: int) -> None:
        indices = [indices] if isinstance(indices, int) else list(indices)
        self._state = ProcedureState.FORWARD_IN_PROGRESS
        if self.has_dependent_nodes or len(indices) == 1:
            for index in indices:
                self._update_expression_dependencies(index)
                expression = self.expression_head
                while expression is not None:
                    expression.calculate_expression_step(index, first_index, last_index)
                    expression = expression.next_expression
                self._record_forward_index(index)
        else:
            expression = self.expression_head
            while expression is not None:
                expression.calculate_expression_steps(indices, first_index, last_index)
                expression = expression.next_expression
            for index in indices:
                self._record_forward_index(index)
        if last_index in indices:
            self._state = ProcedureState.FORWARD_COMPLETE

    def _record_forward_index(self, index: int) -> None:
        if index not in self._forward_order:
            self._forward_order[index] = next(reversed(self._forward_order), None)

    def _update_expression_dependencies(self, index: int) -> None:
        if not self.dependencies:
            return
        previous_index = next(reversed(self._forward_order), None)
        for argument_id, result_id in self.dependencies.items():
            argument = self.nodes[argument_id]
            if previous_index is None:
                if argument.get_matrix(index) is None:
                    stored = self._stored_dependencies.get(argument_id)
                    argument.set_matrix(index, stored if stored is not None else argument.get_empty_matrix())
                continue
            value = self.nodes[result_id].get_matrix(previous_index)
            if value is None:
                raise ArgumentsNotDefinedException(
                    f"Dependency of {argument.name} on {self.nodes[result_id].name} not defined at index {previous_index}")
            argument.set_matrix(index, value)

    # backward

    def calculate_gradient(self, output_gradients: SampleMatrices,
                           truncate_steps: int = -1) -> Dict[int, Dict[int, Matrix]]:
        """Run the backward pass from ``output_gradients`` and return the input gradients.

        A positive ``truncate_steps`` limits the pass to that many indices,
        counted from the last forward index.
        """
        if self._state is not ProcedureState.FORWARD_COMPLETE:
            raise MatrixException(f"Procedure {self.procedure_id} is {self._state.value}; "
                                  f"the forward pass must complete before the backward pass")
        for output_index, samples in output_gradients.items():
            node = self.output_nodes.get(output_index)
            if node is None:
                raise MatrixException(f"Procedure {self.procedure_id} has no output {output_index}")
            for index, gradient in samples.items():
                node.cumulate_gradient(index, gradient)
        indices = list(reversed(self._forward_order))
        for node in self.output_nodes.values():
            for index in indices:
                if node.get_gradient(index) is None:
                    node.cumulate_gradient(index, node.get_empty_matrix())
        logger.debug("Procedure %d backward over %d indices (truncate %d)", self.procedure_id, len(indices),
                     truncate_steps)
        self.calculate_gradient_step(indices, indices[-1], truncate_steps)
        return {input_index: {index: node.get_gradient(index) for index in indices
                              if node.get_gradient(index) is not None}
                for input_index, node in self.input_nodes.items()}

    def calculate_gradient_step(self, indices: Indices, last_index: int, truncate_steps: int = -1) -> None:
        indices = [indices] if isinstance(indices, int) else list(indices)
        self._state = ProcedureState.BACKWARD_IN_PROGRESS
        completed = last_index in indices
        if self.has_dependent_nodes or len(indices) == 1:
            for index in indices:
                if 0 < truncate_steps <= self._gradient_steps:
                    completed = True
                    break
                self._gradient_steps += 1
                final = self._gradient_steps == truncate_steps
                self._prepare_gradient_dependencies(index)
                expression = self.gradient_head
                while expression is not None:
                    expression.calculate_gradient_step(index, index if final else last_index)
                    expression = expression.previous_expression
                self._update_gradient_dependencies(index)
                if final:
                    completed = True
                    break
        else:
            expression = self.gradient_head
            while expression is not None:
                expression.calculate_gradient_steps(indices, last_index, truncate_steps)
                expression = expression.previous_expression
        if completed:
            self._state = ProcedureState.BACKWARD_COMPLETE

    def _prepare_gradient_dependencies(self, index: int) -> None:
        for result_id in set(self.dependencies.values()):
            result = self.nodes[result_id]
            if result.get_gradient(index) is None:
                result.cumulate_gradient(index, result.get_empty_matrix())

    def _update_gradient_dependencies(self, index: int) -> None:
        previous_index = self._forward_order.get(index)
        if previous_index is None:
            return
        for argument_id, result_id in self.dependencies.items():
            gradient = self.nodes[argument_id].get_gradient(index)
            if gradient is not None:
                self.nodes[result_id].cumulate_gradient(previous_index, gradient)

    # dependency state carried between forward passes

    def store_dependencies(self) -> Dict[int, Matrix]:
        """Keep the last values of the dependent results as the next pass's initial state."""
        if self._forward_order:
            last_index = next(reversed(self._forward_order))
            for argument_id, result_id in self.dependencies.items():
                value = self.nodes[result_id].get_matrix(last_index)
                if value is not None:
                    self._stored_dependencies[argument_id] = value.copy()
        return dict(self._stored_dependencies)

    def restore_dependencies(self, state: Mapping[int, Matrix]) -> None:
        unknown = set(state) - set(self.dependencies)
        if unknown:
            raise MatrixException(f"Nodes {sorted(unknown)} are not dependent nodes of procedure {self.procedure_id}")
        self._stored_dependencies = dict(state)

    def reset_dependencies(self) -> None:
        self._stored_dependencies = {}

    # misc

    def cumulate_regularization_error(self) -> float:
        seen = set()
        error = 0.0
        for expression in self.expressions:
            for node in expression.arguments:
                if node.node_id not in seen:
                    seen.add(node.node_id)
                    error += node.cumulate_regularization_error()
        return error

    def describe_expression_chain(self) -> str:
        return "\n".join(expression.describe() for expression in self.expressions)

    def describe_gradient_chain(self) -> str:
        return "\n".join(expression.describe() for expression in self.gradient_expressions)

    def to_graph(self) -> ProcedureGraph:
        return ProcedureGraph(self)

    def __repr__(self) -> str:
        return (f"Procedure(id={self.procedure_id}, nodes={len(self.nodes)}, expressions={len(self.expressions)}, "
                f"gradient_expressions={len(self.gradient_expressions)}, dependent={self.has_dependent_nodes})")

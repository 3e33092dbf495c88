import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Type, Union
from weakref import WeakKeyDictionary

from pyragraph.core.exceptions import DimensionMismatchException, ExpressionLockException, MatrixException
from pyragraph.core.functions import BinaryFunction, UnaryFunction, UnaryFunctionType
from pyragraph.core.matrix import Matrix
from pyragraph.procedure.expression import (
    AddExpression, AveragePoolExpression, BinaryFunctionExpression, ConvolveExpression, CrosscorrelateExpression,
    CyclicPoolExpression, DivideExpression, DotExpression, Expression, FlattenExpression, MaxPoolExpression,
    MeanExpression, MultiplyExpression, NormExpression, RandomPoolExpression, StandardDeviationExpression,
    SubtractExpression, SumExpression, UnaryFunctionExpression, VarianceExpression, WinogradConvolveExpression,
)
from pyragraph.procedure.forward import ForwardProcedure, ForwardResult
from pyragraph.procedure.node import Node, NodeLink
from pyragraph.procedure.procedure import Procedure
from pyragraph.procedure.register import NodeRegister

logger = logging.getLogger(__name__)

_lock_tokens = itertools.count(1)


@dataclass(frozen=True, eq=False)
class ExpressionLock:
    """Reservation of a procedure factory by one recorded operation."""
    originator: Any
    silently_continue: bool = True
    token: int = field(default_factory=lambda: next(_lock_tokens))


@dataclass
class ProcedureData:
    """Everything recorded during one construction session."""
    procedure_id: int
    input_matrices: Dict[int, Matrix] = field(default_factory=dict)
    input_nodes: Dict[int, Node] = field(default_factory=dict)
    output_nodes: Dict[int, Node] = field(default_factory=dict)
    nodes: List[Node] = field(default_factory=list)
    expressions: List[Expression] = field(default_factory=list)
    result_expressions: Dict[int, Expression] = field(default_factory=dict)
    gradient_expressions: List[Expression] = field(default_factory=list)
    dependencies: Dict[int, int] = field(default_factory=dict)

    @property
    def has_dependent_nodes(self) -> bool:
        return bool(self.dependencies)


class ProcedureFactory:
    """Records operations on tensors into expressions and builds procedures from them.

    The forward computation is run twice: once from fresh inputs and once with
    state carried from the first run. Arguments that differ between the two
    runs are the temporal dependencies of the procedure. Recording is guarded
    by an expression lock so that an operation built from other recorded
    operations is recorded only once.
    """

    def __init__(self):
        self.node_register = NodeRegister()
        self._guard = threading.Lock()
        self._expression_lock: Optional[ExpressionLock] = None
        self._current: Optional[ProcedureData] = None
        self._procedure_ids = itertools.count(1)
        self._single_matrices = set()
        self._procedures: 'WeakKeyDictionary[ForwardProcedure, Procedure]' = WeakKeyDictionary()

    @property
    def is_recording(self) -> bool:
        return self._current is not None

    # expression lock

    def start_expression(self, originator: Any, silently_continue: bool = True) -> Optional[ExpressionLock]:
        """Reserve the factory for ``originator``.

        Returns ``None`` when the factory is already reserved and
        ``silently_continue`` is set, so that nested operations are not recorded.
        """
        with self._guard:
            if self._expression_lock is not None:
                if silently_continue:
                    return None
                raise ExpressionLockException(
                    f"Procedure factory is reserved by: {self._expression_lock.originator!r}")
            self._expression_lock = ExpressionLock(originator, silently_continue)
            return self._expression_lock

    def finish_expression(self, lock: Optional[ExpressionLock]) -> None:
        with self._guard:
            if lock is not None and self._expression_lock is lock:
                self._expression_lock = None

    @contextmanager
    def expression(self, originator: Any, silently_continue: bool = True) -> Iterator[Optional[ExpressionLock]]:
        lock = self.start_expression(originator, silently_continue)
        try:
            yield lock
        finally:
            self.finish_expression(lock)

    def _check_ongoing_expression(self, lock: Optional[ExpressionLock], originator: Any) -> bool:
        """Return True when the expression should be skipped; raise when the lock is not valid."""
        if lock is None:
            return True
        with self._guard:
            current = self._expression_lock
        if current is lock:
            return False
        if current is not None and current.silently_continue:
            logger.debug("Skipping expression of %r, factory reserved by %r", originator, current.originator)
            return True
        holder = current.originator if current is not None else None
        raise ExpressionLockException(f"Procedure factory is reserved by: {holder!r}")

    # construction sessions

    def begin_procedure(self, input_matrices: Mapping[int, Matrix],
                        constant_matrices: Iterable[Matrix] = ()) -> ProcedureData:
        if self._current is not None:
            raise MatrixException(f"Procedure {self._current.procedure_id} is still being built")
        data = ProcedureData(next(self._procedure_ids), dict(input_matrices))
        self.node_register.begin_session(data.procedure_id)
        for matrix in constant_matrices:
            matrix.procedure_factory = self
            self._single_matrices.add(matrix)
        self._current = data
        for input_index, matrix in data.input_matrices.items():
            matrix.procedure_factory = self
            data.input_nodes[input_index] = self._define_node(matrix)
        return data

    def end_procedure(self, output_matrices: ForwardResult) -> ProcedureData:
        data = self._current
        if data is None:
            raise MatrixException("No procedure is being built")
        self._current = None
        outputs = {0: output_matrices} if isinstance(output_matrices, Matrix) else dict(output_matrices)
        for output_index, matrix in outputs.items():
            node = self.node_register.get_node(matrix)
            if node is None:
                raise MatrixException(f"Setting of output node {output_index} failed. "
                                      f"No node corresponding output matrix is found.")
            data.output_nodes[output_index] = node
        data.nodes = self.node_register.nodes
        logger.debug("Procedure %d recorded %d expressions over %d nodes", data.procedure_id,
                     len(data.expressions), len(data.nodes))
        return data

    def get_procedure(self, forward_procedure: ForwardProcedure, parameter_matrices: Iterable[Matrix] = (),
                      constant_matrices: Iterable[Matrix] = (), stop_gradient_matrices: Iterable[Matrix] = (),
                      reversed_input: bool = False) -> Procedure:
        """Build, or return the already built, procedure of ``forward_procedure``."""
        procedure = self._procedures.get(forward_procedure)
        if procedure is not None:
            return procedure

        parameter_matrices = list(parameter_matrices)
        constant_matrices = list(constant_matrices)
        stop_gradient_matrices = list(stop_gradient_matrices)
        single_matrices = parameter_matrices + constant_matrices

        self.node_register.reset()
        self._single_matrices = set()
        try:
            previous = self._build_pass(forward_procedure, True, single_matrices)
            current = self._build_pass(forward_procedure, False, single_matrices)
            self._update_dependencies(previous, current)
            self._check_single_steps(current)
            for matrix in stop_gradient_matrices:
                node = self.node_register.get_node(matrix)
                if node is not None:
                    node.set_stop_gradient(True)
            self._define_gradient_path(current)
        finally:
            self._current = None
            self.node_register.detach()
            for matrix in single_matrices:
                matrix.procedure_factory = None

        for expression, following in zip(current.expressions, current.expressions[1:]):
            expression.next_expression = following
        for expression, following in zip(current.gradient_expressions, current.gradient_expressions[1:]):
            expression.previous_expression = following

        procedure = Procedure(current.procedure_id, current.input_nodes, current.output_nodes, current.nodes,
                              current.expressions, current.gradient_expressions, current.dependencies,
                              parameter_matrices, constant_matrices, stop_gradient_matrices, reversed_input)
        logger.info("Built procedure %d: %d nodes, %d expressions, %d gradient expressions, %d dependencies",
                    procedure.procedure_id, len(current.nodes), len(current.expressions),
                    len(current.gradient_expressions), len(current.dependencies))
        self._procedures[forward_procedure] = procedure
        return procedure

    def _build_pass(self, forward_procedure: ForwardProcedure, reset_previous_input: bool,
                    single_matrices: Sequence[Matrix]) -> ProcedureData:
        self.begin_procedure(forward_procedure.get_input_matrices(reset_previous_input), single_matrices)
        return self.end_procedure(forward_procedure.get_forward_procedure())

    def _update_dependencies(self, previous: ProcedureData, current: ProcedureData) -> None:
        if len(previous.expressions) != len(current.expressions):
            raise MatrixException(f"Procedure passes differ: {len(previous.expressions)} and "
                                  f"{len(current.expressions)} expressions")
        for previous_expression, next_expression in zip(previous.expressions, current.expressions):
            if type(previous_expression) is not type(next_expression):
                raise MatrixException(f"Procedure passes differ at expression {next_expression.expression_id}: "
                                      f"{previous_expression.name} and {next_expression.name}")
            for previous_argument, next_argument in zip(previous_expression.arguments, next_expression.arguments):
                if previous_argument.expression_id != next_argument.expression_id:
                    self._link_nodes(previous, current, next_argument)

    def _link_nodes(self, previous: ProcedureData, current: ProcedureData, next_argument: Node) -> None:
        producer = self.node_register.producer_of(next_argument.reference_matrix)
        if producer is None or producer[0] != previous.procedure_id:
            raise MatrixException(f"Argument {next_argument.name} of procedure {current.procedure_id} "
                                  f"is not produced by procedure {previous.procedure_id}")
        expression_id = producer[1]
        previous_result = previous.expressions[expression_id].result
        next_argument.from_node = NodeLink(previous.procedure_id, previous_result.node_id)
        previous_result.to_node = NodeLink(current.procedure_id, next_argument.node_id)
        current.dependencies[next_argument.node_id] = current.expressions[expression_id].result.node_id
        logger.debug("Procedure %d: %s depends on %s of the previous index", current.procedure_id,
                     next_argument.name, current.expressions[expression_id].result.name)

    @staticmethod
    def _check_single_steps(data: ProcedureData) -> None:
        if not data.has_dependent_nodes:
            return
        for expression in data.expressions:
            if expression.execute_as_single_step:
                raise MatrixException(f"{expression.name}: single step expression in procedure "
                                      f"{data.procedure_id} with dependent nodes")

    @staticmethod
    def _define_gradient_path(data: ProcedureData) -> None:
        """Collect the expressions reachable from the outputs, latest first."""
        reachable = set()
        visited = set()
        stack = list(data.output_nodes.values())
        while stack:
            node = stack.pop()
            if node.node_id in visited or node.is_stop_gradient():
                continue
            visited.add(node.node_id)
            result_id = data.dependencies.get(node.node_id)
            if result_id is not None:
                stack.append(data.nodes[result_id])
            expression = data.result_expressions.get(node.node_id)
            if expression is not None:
                reachable.add(expression.expression_id)
                stack.extend(expression.arguments)
        data.gradient_expressions = [expression for expression in reversed(data.expressions)
                                     if expression.expression_id in reachable]

    # node definition

    def _define_node(self, matrix: Matrix) -> Node:
        return self.node_register.define_node(matrix, single=matrix in self._single_matrices)

    def _create(self, lock: Optional[ExpressionLock], expression_type: Type[Expression], arguments: Sequence[Matrix],
                result: Matrix, single_step: bool = False, **params) -> Optional[Expression]:
        if self._check_ongoing_expression(lock, arguments[0]):
            return None
        try:
            data = self._current
            if data is None:
                raise MatrixException(f"{expression_type.name}: no procedure is being built")
            argument_nodes = [self._define_node(argument) for argument in arguments]

            result_node = self.node_register.get_node(result)
            if result_node is not None:
                if result_node.shape != result.shape:
                    raise DimensionMismatchException(result_node.shape, result.shape,
                                                     f"Registered node {result_node.name}")
                existing = data.result_expressions.get(result_node.node_id)
                if existing is not None:
                    if type(existing) is expression_type and list(existing.arguments) == argument_nodes:
                        return existing
                    raise MatrixException(f"{result!r} is already the result of {existing.describe()}")

            expression_id = len(data.expressions)
            result_node = self.node_register.define_result(result, expression_id, single=single_step)
            if single_step:
                params["single_step"] = True
            expression = expression_type(expression_id, *argument_nodes, result_node, **params)
            data.expressions.append(expression)
            data.result_expressions[result_node.node_id] = expression
            logger.debug("Procedure %d recorded %s", data.procedure_id, expression.describe())
            return expression
        finally:
            self.finish_expression(lock)

    # elementwise and products

    def create_add_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                              result: Matrix) -> Optional[Expression]:
        return self._create(lock, AddExpression, (argument1, argument2), result)

    def create_subtract_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                                   result: Matrix) -> Optional[Expression]:
        return self._create(lock, SubtractExpression, (argument1, argument2), result)

    def create_multiply_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                                   result: Matrix) -> Optional[Expression]:
        return self._create(lock, MultiplyExpression, (argument1, argument2), result)

    def create_divide_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                                 result: Matrix) -> Optional[Expression]:
        return self._create(lock, DivideExpression, (argument1, argument2), result)

    def create_dot_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                              result: Matrix) -> Optional[Expression]:
        return self._create(lock, DotExpression, (argument1, argument2), result)

    # sliding window

    def create_convolve_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                                   result: Matrix, stride: int = 1, dilation: int = 1,
                                   depth_separable: bool = True) -> Optional[Expression]:
        return self._create(lock, ConvolveExpression, (argument1, argument2), result, stride=stride,
                            dilation=dilation, depth_separable=depth_separable)

    def create_crosscorrelate_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, argument2: Matrix,
                                         result: Matrix, stride: int = 1, dilation: int = 1,
                                         depth_separable: bool = True) -> Optional[Expression]:
        return self._create(lock, CrosscorrelateExpression, (argument1, argument2), result, stride=stride,
                            dilation=dilation, depth_separable=depth_separable)

    def create_winograd_convolve_expression(self, lock: Optional[ExpressionLock], argument1: Matrix,
                                            argument2: Matrix, result: Matrix,
                                            depth_separable: bool = True) -> Optional[Expression]:
        return self._create(lock, WinogradConvolveExpression, (argument1, argument2), result,
                            depth_separable=depth_separable)

    def create_max_pool_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                   stride: int = 1, filter_row_size: int = 2,
                                   filter_column_size: Optional[int] = None) -> Optional[Expression]:
        return self._create(lock, MaxPoolExpression, (argument1,), result, stride=stride,
                            filter_row_size=filter_row_size, filter_column_size=filter_column_size)

    def create_random_pool_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                      stride: int = 1, filter_row_size: int = 2,
                                      filter_column_size: Optional[int] = None) -> Optional[Expression]:
        return self._create(lock, RandomPoolExpression, (argument1,), result, stride=stride,
                            filter_row_size=filter_row_size, filter_column_size=filter_column_size)

    def create_cyclic_pool_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                      stride: int = 1, filter_row_size: int = 2,
                                      filter_column_size: Optional[int] = None) -> Optional[Expression]:
        return self._create(lock, CyclicPoolExpression, (argument1,), result, stride=stride,
                            filter_row_size=filter_row_size, filter_column_size=filter_column_size)

    def create_average_pool_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                       stride: int = 1, filter_row_size: int = 2,
                                       filter_column_size: Optional[int] = None) -> Optional[Expression]:
        return self._create(lock, AveragePoolExpression, (argument1,), result, stride=stride,
                            filter_row_size=filter_row_size, filter_column_size=filter_column_size)

    # reductions

    def create_sum_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                              single_step: bool = False) -> Optional[Expression]:
        return self._create(lock, SumExpression, (argument1,), result, single_step)

    def create_mean_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                               single_step: bool = False) -> Optional[Expression]:
        return self._create(lock, MeanExpression, (argument1,), result, single_step)

    def create_variance_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                   single_step: bool = False) -> Optional[Expression]:
        return self._create(lock, VarianceExpression, (argument1,), result, single_step)

    def create_standard_deviation_expression(self, lock: Optional[ExpressionLock], argument1: Matrix,
                                             result: Matrix, single_step: bool = False) -> Optional[Expression]:
        return self._create(lock, StandardDeviationExpression, (argument1,), result, single_step)

    def create_norm_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                               p: float = 2) -> Optional[Expression]:
        return self._create(lock, NormExpression, (argument1,), result, p=p)

    # functions and shape

    def create_unary_function_expression(self, lock: Optional[ExpressionLock], argument1: Matrix, result: Matrix,
                                         unary_function: Union[UnaryFunction, UnaryFunctionType]
                                         ) -> Optional[Expression]:
        if isinstance(unary_function, UnaryFunctionType):
            unary_function = UnaryFunction(unary_function)
        return self._create(lock, UnaryFunctionExpression, (argument1,), result, unary_function=unary_function)

    def create_binary_function_expression(self, lock: Optional[ExpressionLock], argument1: Matrix,
                                          argument2: Matrix, result: Matrix,
                                          binary_function: BinaryFunction) -> Optional[Expression]:
        return self._create(lock, BinaryFunctionExpression, (argument1, argument2), result,
                            binary_function=binary_function)

    def create_flatten_expression(self, lock: Optional[ExpressionLock], argument1: Matrix,
                                  result: Matrix) -> Optional[Expression]:
        return self._create(lock, FlattenExpression, (argument1,), result)

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

import numpy as np

from pyragraph.core.exceptions import (
    ArgumentsNotDefinedException, MatrixException, ResultGradientNotDefinedException,
)
from pyragraph.core.matrix import Matrix
from pyragraph.procedure.node import MultiNode, Node

logger = logging.getLogger(__name__)


class Expression(ABC):
    """One recorded operation binding argument nodes to a result node.

    ``next_expression`` links the forward chain and ``previous_expression``
    the backward chain. A single step expression computes once over every
    index instead of once per index.
    """
    name = "EXPRESSION"
    supports_single_step = False

    def __init__(self, expression_id: int, argument1: Node, argument2: Optional[Node], result: Node,
                 single_step: bool = False):
        if single_step and not self.supports_single_step:
            raise MatrixException(f"{self.name}: single step execution is not supported")
        self.expression_id = expression_id
        self.argument1 = argument1
        self.argument2 = argument2
        self.result = result
        self.execute_as_single_step = single_step
        self.next_expression: Optional['Expression'] = None
        self.previous_expression: Optional['Expression'] = None

    @property
    def arguments(self) -> Tuple[Node, ...]:
        if self.argument2 is None:
            return (self.argument1,)
        return self.argument1, self.argument2

    # forward

    def calculate_expression_step(self, index: int, first_index: int, last_index: int) -> None:
        if index == first_index:
            self.argument1.forward_regularize()
        self.argument1.forward_normalize(index)
        if self.execute_as_single_step:
            if index == last_index:
                self.calculate_expression()
        else:
            self.calculate_expression_at(index)
        if index == last_index:
            self.argument1.forward_normalize_finalize()

    def calculate_expression_steps(self, indices: Iterable[int], first_index: int, last_index: int) -> None:
        for index in indices:
            self.calculate_expression_step(index, first_index, last_index)

    @abstractmethod
    def calculate_expression_at(self, index: int) -> None:
        ...

    def calculate_expression(self) -> None:
        raise MatrixException(f"{self.name}: single step execution is not supported")

    # backward

    def calculate_gradient_step(self, index: int, last_index: int) -> None:
        if self.execute_as_single_step:
            if index == last_index:
                self.calculate_gradient()
        else:
            self.calculate_gradient_at(index)
        self.argument1.backward_normalize(index)
        if index == last_index:
            self.argument1.backward_normalize_finalize()
            self.argument1.backward_regularize()

    def calculate_gradient_steps(self, indices: Iterable[int], last_index: int, truncate_steps: int = -1) -> None:
        """Run the backward step over ``indices``, stopping after ``truncate_steps`` of them when positive."""
        for step, index in enumerate(indices, start=1):
            truncated = 0 < truncate_steps <= step
            self.calculate_gradient_step(index, index if truncated else last_index)
            if truncated:
                break

    @abstractmethod
    def calculate_gradient_at(self, index: int) -> None:
        ...

    def calculate_gradient(self) -> None:
        raise MatrixException(f"{self.name}: single step execution is not supported")

    def reset(self) -> None:
        pass

    def cumulate_regularization_error(self) -> float:
        return self.argument1.cumulate_regularization_error()

    # helpers

    def get_argument(self, node: Node, index: Optional[int]) -> Matrix:
        matrix = node.get_matrix(index)
        if matrix is None:
            raise ArgumentsNotDefinedException(f"{self.name}: Arguments for operation not defined")
        return matrix

    def get_result_gradient(self, index: Optional[int]) -> Matrix:
        gradient = self.result.get_gradient(index)
        if gradient is None:
            raise ResultGradientNotDefinedException(f"{self.name}: Result gradient not defined")
        return gradient

    def argument_indices(self) -> List[int]:
        if isinstance(self.argument1, MultiNode) and not self.argument1.is_constant:
            indices = self.argument1.indices()
            if not indices:
                raise ArgumentsNotDefinedException(f"{self.name}: Arguments for operation not defined")
            return indices
        return [None]

    def store_result(self, index: Optional[int], values: np.ndarray) -> None:
        self.result.set_matrix(index, Matrix(values, copy=False, is_scalar=self.result.is_scalar))

    def describe(self) -> str:
        arguments = ", ".join(node.name for node in self.arguments)
        single = " [single step]" if self.execute_as_single_step else ""
        return f"Expression {self.expression_id}: {self.name}({arguments}) = {self.result.name}{single}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.expression_id})"


class UnaryExpression(Expression):

    def __init__(self, expression_id: int, argument1: Node, result: Node, single_step: bool = False):
        super().__init__(expression_id, argument1, None, result, single_step)


class BinaryExpression(Expression):

    def __init__(self, expression_id: int, argument1: Node, argument2: Node, result: Node):
        super().__init__(expression_id, argument1, argument2, result)

    def get_arguments(self, index: int) -> Tuple[Matrix, Matrix]:
        return self.get_argument(self.argument1, index), self.get_argument(self.argument2, index)

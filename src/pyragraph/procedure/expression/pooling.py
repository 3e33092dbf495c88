from typing import Dict, List, Optional

import numpy as np

from pyragraph.config import get_settings
from pyragraph.core.exceptions import ArgumentsNotDefinedException, DimensionMismatchException
from pyragraph.operation import (
    AveragePool, AveragePoolGradient, CyclicPool, CyclicPoolGradient, MaxPool, MaxPoolGradient,
    OperationGeometry, RandomPool, RandomPoolGradient,
)
from pyragraph.procedure.expression.base import UnaryExpression
from pyragraph.procedure.node import Node


class _PoolExpression(UnaryExpression):

    def __init__(self, expression_id: int, argument1: Node, result: Node, stride: int = 1,
                 filter_row_size: int = 2, filter_column_size: Optional[int] = None):
        super().__init__(expression_id, argument1, result)
        geometry = OperationGeometry.sliding_window(argument1.shape, filter_row_size,
                                                    filter_column_size or filter_row_size, stride)
        if result.shape != geometry.shape:
            raise DimensionMismatchException(geometry.shape, result.shape, f"{self.name} result")
        self.geometry = geometry


class _PositionPoolExpression(_PoolExpression):
    """Pool that routes each output to one input cell.

    The position map of every index is kept until :meth:`reset`, which
    returns the buffers to a stack reused by later forward steps.
    """
    gradient_type = MaxPoolGradient

    def __init__(self, expression_id: int, argument1: Node, result: Node, stride: int = 1,
                 filter_row_size: int = 2, filter_column_size: Optional[int] = None):
        super().__init__(expression_id, argument1, result, stride, filter_row_size, filter_column_size)
        self.forward_operation = self.create_forward_operation()
        self.gradient_operation = self.gradient_type(self.geometry)
        self._positions: Dict[int, np.ndarray] = {}
        self._position_cache: List[np.ndarray] = []

    def create_forward_operation(self):
        return MaxPool(self.geometry)

    def _take_positions(self, index: int) -> np.ndarray:
        positions = self._positions.pop(index, None)
        if positions is None and self._position_cache:
            positions = self._position_cache.pop()
        return positions

    def calculate_expression_at(self, index: int) -> None:
        argument = self.get_argument(self.argument1, index)
        result, positions = self.forward_operation.compute_forward(argument, self._take_positions(index))
        self._positions[index] = positions
        self.result.set_matrix(index, result)

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        argument = self.get_argument(self.argument1, index)
        positions = self._positions.get(index)
        if positions is None:
            raise ArgumentsNotDefinedException(f"{self.name}: Arguments for operation not defined")
        self.argument1.cumulate_gradient(index, self.gradient_operation.compute_backward(gradient, argument, positions))

    def reset(self) -> None:
        self._position_cache.extend(self._positions.values())
        self._positions.clear()


class MaxPoolExpression(_PositionPoolExpression):
    name = "MAX_POOL"


class RandomPoolExpression(_PositionPoolExpression):
    name = "RANDOM_POOL"
    gradient_type = RandomPoolGradient

    def create_forward_operation(self):
        return RandomPool(self.geometry, get_settings().make_random_generator())


class CyclicPoolExpression(_PositionPoolExpression):
    name = "CYCLIC_POOL"
    gradient_type = CyclicPoolGradient

    def create_forward_operation(self):
        return CyclicPool(self.geometry)


class AveragePoolExpression(_PoolExpression):
    name = "AVERAGE_POOL"

    def __init__(self, expression_id: int, argument1: Node, result: Node, stride: int = 1,
                 filter_row_size: int = 2, filter_column_size: Optional[int] = None):
        super().__init__(expression_id, argument1, result, stride, filter_row_size, filter_column_size)
        self.forward_operation = AveragePool(self.geometry)
        self.gradient_operation = AveragePoolGradient(self.geometry)

    def calculate_expression_at(self, index: int) -> None:
        argument = self.get_argument(self.argument1, index)
        self.result.set_matrix(index, self.forward_operation.compute_forward(argument))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        argument = self.get_argument(self.argument1, index)
        self.argument1.cumulate_gradient(index, self.gradient_operation.compute_backward(gradient, argument))

"""Reductions to a scalar per index, or across all indices as a single step.

A single step reduction works elementwise over the argument values of every
index and writes one result shared by all indices.
"""
from typing import List, Tuple

import numpy as np

from pyragraph.procedure.expression.base import UnaryExpression
from pyragraph.procedure.node import Node


def _scalar(value: float) -> np.ndarray:
    return np.full((1, 1, 1), value)


class _ReductionExpression(UnaryExpression):
    supports_single_step = True

    def _samples(self) -> Tuple[List[int], np.ndarray]:
        indices = self.argument_indices()
        values = np.stack([self.get_argument(self.argument1, index).data for index in indices])
        return indices, values


class SumExpression(_ReductionExpression):
    name = "SUM"

    def calculate_expression_at(self, index: int) -> None:
        self.store_result(index, _scalar(self.get_argument(self.argument1, index).data.sum()))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data.item()
        self.argument1.cumulate_gradient(index, np.full(self.argument1.reference_matrix.data.shape, gradient))

    def calculate_expression(self) -> None:
        _, values = self._samples()
        self.store_result(None, values.sum(axis=0))

    def calculate_gradient(self) -> None:
        gradient = self.get_result_gradient(None).data
        for index in self.argument_indices():
            self.argument1.cumulate_gradient(index, gradient)


class MeanExpression(_ReductionExpression):
    name = "MEAN"

    def calculate_expression_at(self, index: int) -> None:
        self.store_result(index, _scalar(self.get_argument(self.argument1, index).data.mean()))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data.item()
        shape = self.argument1.reference_matrix.data.shape
        self.argument1.cumulate_gradient(index, np.full(shape, gradient / np.prod(shape)))

    def calculate_expression(self) -> None:
        _, values = self._samples()
        self.store_result(None, values.mean(axis=0))

    def calculate_gradient(self) -> None:
        indices = self.argument_indices()
        gradient = self.get_result_gradient(None).data / len(indices)
        for index in indices:
            self.argument1.cumulate_gradient(index, gradient)


class VarianceExpression(_ReductionExpression):
    """Sample variance, normalized by ``n - 1``."""
    name = "VARIANCE"

    def calculate_expression_at(self, index: int) -> None:
        values = self.get_argument(self.argument1, index).data
        self.store_result(index, _scalar(np.sum((values - values.mean()) ** 2) / max(values.size - 1, 1)))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data.item()
        values = self.get_argument(self.argument1, index).data
        self.argument1.cumulate_gradient(index, gradient * 2.0 * (values - values.mean()) / max(values.size - 1, 1))

    def calculate_expression(self) -> None:
        _, values = self._samples()
        mean = values.mean(axis=0)
        self.store_result(None, np.sum((values - mean) ** 2, axis=0) / max(len(values) - 1, 1))

    def calculate_gradient(self) -> None:
        indices, values = self._samples()
        gradient = self.get_result_gradient(None).data
        mean = values.mean(axis=0)
        for index, value in zip(indices, values):
            self.argument1.cumulate_gradient(index, gradient * 2.0 * (value - mean) / max(len(values) - 1, 1))


class StandardDeviationExpression(_ReductionExpression):
    name = "STANDARD_DEVIATION"

    def calculate_expression_at(self, index: int) -> None:
        values = self.get_argument(self.argument1, index).data
        variance = np.sum((values - values.mean()) ** 2) / max(values.size - 1, 1)
        self.store_result(index, _scalar(np.sqrt(variance)))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data.item()
        values = self.get_argument(self.argument1, index).data
        deviation = self.get_argument(self.result, index).data.item()
        if deviation == 0.0:
            self.argument1.cumulate_gradient(index, np.zeros_like(values))
            return
        self.argument1.cumulate_gradient(index, gradient * (values - values.mean())
                                         / (max(values.size - 1, 1) * deviation))

    def calculate_expression(self) -> None:
        _, values = self._samples()
        mean = values.mean(axis=0)
        self.store_result(None, np.sqrt(np.sum((values - mean) ** 2, axis=0) / max(len(values) - 1, 1)))

    def calculate_gradient(self) -> None:
        indices, values = self._samples()
        gradient = self.get_result_gradient(None).data
        deviation = self.get_argument(self.result, None).data
        mean = values.mean(axis=0)
        scale = np.divide(gradient, max(len(values) - 1, 1) * deviation,
                          out=np.zeros_like(deviation), where=deviation != 0.0)
        for index, value in zip(indices, values):
            self.argument1.cumulate_gradient(index, scale * (value - mean))


class NormExpression(_ReductionExpression):
    """p-norm of every value of the argument."""
    name = "NORM"
    supports_single_step = False

    def __init__(self, expression_id: int, argument1: Node, result: Node, p: float = 2):
        super().__init__(expression_id, argument1, result)
        self.p = p

    def calculate_expression_at(self, index: int) -> None:
        values = self.get_argument(self.argument1, index).data
        self.store_result(index, _scalar(np.sum(np.abs(values) ** self.p) ** (1.0 / self.p)))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data.item()
        values = self.get_argument(self.argument1, index).data
        norm = self.get_argument(self.result, index).data.item()
        if norm == 0.0:
            self.argument1.cumulate_gradient(index, np.zeros_like(values))
            return
        self.argument1.cumulate_gradient(index, gradient * np.sign(values) * np.abs(values) ** (self.p - 1)
                                         / norm ** (self.p - 1))

    def describe(self) -> str:
        return f"{super().describe()} p={self.p}"

import numpy as np

from pyragraph.core.exceptions import DimensionMismatchException
from pyragraph.procedure.expression.base import BinaryExpression
from pyragraph.procedure.node import Node


class AddExpression(BinaryExpression):
    name = "ADD"

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, first.data + second.data)

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        self.argument1.cumulate_gradient(index, gradient)
        self.argument2.cumulate_gradient(index, gradient)


class SubtractExpression(BinaryExpression):
    name = "SUB"

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, first.data - second.data)

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        self.argument1.cumulate_gradient(index, gradient)
        self.argument2.cumulate_gradient(index, gradient, negate=True)


class MultiplyExpression(BinaryExpression):
    name = "MUL"

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, first.data * second.data)

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data
        first, second = self.get_arguments(index)
        self.argument1.cumulate_gradient(index, gradient * second.data)
        self.argument2.cumulate_gradient(index, gradient * first.data)


class DivideExpression(BinaryExpression):
    name = "DIV"

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, first.data / second.data)

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data
        first, second = self.get_arguments(index)
        self.argument1.cumulate_gradient(index, gradient / second.data)
        self.argument2.cumulate_gradient(index, -gradient * first.data / second.data ** 2)


class DotExpression(BinaryExpression):
    name = "DOT"

    def __init__(self, expression_id: int, argument1: Node, argument2: Node, result: Node):
        if argument1.columns != argument2.rows or argument1.depth != argument2.depth:
            raise DimensionMismatchException(argument1.shape, argument2.shape, self.name)
        super().__init__(expression_id, argument1, argument2, result)

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, np.matmul(first.data, second.data))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data
        first, second = self.get_arguments(index)
        self.argument1.cumulate_gradient(index, np.matmul(gradient, np.swapaxes(second.data, 1, 2)))
        self.argument2.cumulate_gradient(index, np.matmul(np.swapaxes(first.data, 1, 2), gradient))

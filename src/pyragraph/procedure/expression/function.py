from pyragraph.core.exceptions import InvalidGeometryException
from pyragraph.core.functions import BinaryFunction, UnaryFunction
from pyragraph.operation import Flatten, Unflatten
from pyragraph.procedure.expression.base import BinaryExpression, UnaryExpression
from pyragraph.procedure.node import Node


class UnaryFunctionExpression(UnaryExpression):
    name = "UNARY_FUNCTION"

    def __init__(self, expression_id: int, argument1: Node, result: Node, unary_function: UnaryFunction):
        if unary_function.is_softmax and argument1.columns != 1:
            raise InvalidGeometryException(f"Softmax needs a column vector, got {argument1.rows}x{argument1.columns}")
        super().__init__(expression_id, argument1, result)
        self.unary_function = unary_function

    def calculate_expression_at(self, index: int) -> None:
        argument = self.get_argument(self.argument1, index)
        self.store_result(index, self.unary_function.function(argument.data))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data
        if self.unary_function.is_softmax:
            output = self.get_argument(self.result, index).data
            self.argument1.cumulate_gradient(index, UnaryFunction.softmax_gradient(output, gradient))
        else:
            argument = self.get_argument(self.argument1, index)
            self.argument1.cumulate_gradient(index, gradient * self.unary_function.derivative(argument.data))

    def describe(self) -> str:
        return super().describe().replace(self.name, self.unary_function.function_type.name, 1)


class BinaryFunctionExpression(BinaryExpression):
    """Gradient flows to the first argument only; the second acts as a constant."""
    name = "BINARY_FUNCTION"

    def __init__(self, expression_id: int, argument1: Node, argument2: Node, result: Node,
                 binary_function: BinaryFunction):
        super().__init__(expression_id, argument1, argument2, result)
        self.binary_function = binary_function

    def calculate_expression_at(self, index: int) -> None:
        first, second = self.get_arguments(index)
        self.store_result(index, self.binary_function.function(first.data, second.data))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index).data
        first, second = self.get_arguments(index)
        self.argument1.cumulate_gradient(index, gradient * self.binary_function.derivative(first.data, second.data))

    def describe(self) -> str:
        return super().describe().replace(self.name, self.binary_function.function_type.name, 1)


class FlattenExpression(UnaryExpression):
    name = "FLATTEN"

    def __init__(self, expression_id: int, argument1: Node, result: Node):
        super().__init__(expression_id, argument1, result)
        self.forward_operation = Flatten.for_input(argument1.reference_matrix)
        self.gradient_operation = Unflatten(self.forward_operation.geometry)

    def calculate_expression_at(self, index: int) -> None:
        argument = self.get_argument(self.argument1, index)
        self.result.set_matrix(index, self.forward_operation.compute_forward(argument))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        self.argument1.cumulate_gradient(index, self.gradient_operation.compute_backward(gradient))

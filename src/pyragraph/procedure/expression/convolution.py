from typing import Optional

import numpy as np

from pyragraph.config import get_settings
from pyragraph.core.exceptions import DimensionMismatchException
from pyragraph.operation import (
    Convolution, ConvolutionFilterGradient, ConvolutionInputGradient,
    Crosscorrelation, CrosscorrelationFilterGradient, CrosscorrelationInputGradient,
    OperationGeometry, WinogradConvolution,
)
from pyragraph.procedure.expression.base import BinaryExpression
from pyragraph.procedure.node import Node


class _SlidingWindowExpression(BinaryExpression):
    forward_type = Crosscorrelation
    input_gradient_type = CrosscorrelationInputGradient
    filter_gradient_type = CrosscorrelationFilterGradient

    def __init__(self, expression_id: int, argument1: Node, argument2: Node, result: Node,
                 stride: int = 1, dilation: int = 1, depth_separable: bool = True):
        super().__init__(expression_id, argument1, argument2, result)
        geometry = OperationGeometry.sliding_window(argument1.shape, argument2.rows, argument2.columns,
                                                    stride, dilation, depth_separable)
        if argument2.shape != geometry.filter_shape:
            raise DimensionMismatchException(geometry.filter_shape, argument2.shape, f"{self.name} filter")
        if result.shape != geometry.shape:
            raise DimensionMismatchException(geometry.shape, result.shape, f"{self.name} result")
        self.geometry = geometry
        self.forward_operation = self.forward_type(geometry, depth_separable)
        self.input_gradient_operation = self.input_gradient_type(geometry, depth_separable)
        self.filter_gradient_operation = self.filter_gradient_type(geometry, depth_separable)

    def calculate_expression_at(self, index: int) -> None:
        input, filter = self.get_arguments(index)
        self.result.set_matrix(index, self.forward_operation.compute_forward(input, filter))

    def calculate_gradient_at(self, index: int) -> None:
        gradient = self.get_result_gradient(index)
        input, filter = self.get_arguments(index)
        self.argument1.cumulate_gradient(index, self.input_gradient_operation.compute_backward(gradient, input, filter))
        self.argument2.cumulate_gradient(index, self.filter_gradient_operation.compute_backward(gradient, input, filter))


class ConvolveExpression(_SlidingWindowExpression):
    name = "CONVOLVE"
    forward_type = Convolution
    input_gradient_type = ConvolutionInputGradient
    filter_gradient_type = ConvolutionFilterGradient


class CrosscorrelateExpression(_SlidingWindowExpression):
    name = "CROSSCORRELATE"


class WinogradConvolveExpression(_SlidingWindowExpression):
    """Winograd forward pass with cross-correlation gradients.

    The transformed filter is cached while the filter node is shared across
    indices; :meth:`reset` and every backward step invalidate it.
    """
    name = "WINOGRAD_CONVOLVE"

    def __init__(self, expression_id: int, argument1: Node, argument2: Node, result: Node,
                 depth_separable: bool = True):
        super().__init__(expression_id, argument1, argument2, result, depth_separable=depth_separable)
        self.forward_operation = WinogradConvolution(self.geometry, depth_separable)
        self._preprocessed_filter: Optional[np.ndarray] = None

    def calculate_expression_at(self, index: int) -> None:
        input, filter = self.get_arguments(index)
        preprocessed = self._preprocessed_filter
        if preprocessed is None:
            preprocessed = self.forward_operation.preprocess_filter(filter)
            if not self.argument2.is_multi_index and get_settings().winograd_cache:
                self._preprocessed_filter = preprocessed
        self.result.set_matrix(index, self.forward_operation.compute_forward(input, filter, preprocessed))

    def calculate_gradient_at(self, index: int) -> None:
        self._preprocessed_filter = None
        super().calculate_gradient_at(index)

    def reset(self) -> None:
        self._preprocessed_filter = None

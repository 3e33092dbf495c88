from typing import TYPE_CHECKING

from pyragraph.operation import _kernels
from pyragraph.operation.base import MatrixOperation, OperationGeometry

if TYPE_CHECKING:
    from pyragraph.core.matrix import Matrix


class _SlidingWindowOperation(MatrixOperation):
    flip = False

    def __init__(self, geometry: OperationGeometry, depth_separable: bool = True):
        super().__init__(geometry)
        self.depth_separable = depth_separable

    @classmethod
    def for_operands(cls, input: 'Matrix', filter: 'Matrix', stride: int = 1, dilation: int = 1,
                     depth_separable: bool = True):
        geometry = OperationGeometry.sliding_window(input.shape, filter.rows, filter.columns,
                                                    stride, dilation, depth_separable)
        return cls(geometry, depth_separable)

    def _check_operands(self, input: 'Matrix', filter: 'Matrix') -> None:
        self.check_shape(input, self.geometry.input_shape, f"{self.__class__.__name__} input")
        self.check_shape(filter, self.geometry.filter_shape, f"{self.__class__.__name__} filter")


class Crosscorrelation(_SlidingWindowOperation):
    def compute_forward(self, input: 'Matrix', filter: 'Matrix') -> 'Matrix':
        self._check_operands(input, filter)
        result = input.get_new_matrix(*self.geometry.shape)
        _kernels.crosscorrelate(input.data, self.mask_of(input), filter.data, self.mask_of(filter), result.data,
                                self.geometry.stride, self.geometry.dilation, self.flip, self.depth_separable)
        return result


class Convolution(Crosscorrelation):
    """Cross-correlation with the filter read in reversed order on both spatial axes."""
    flip = True


class CrosscorrelationInputGradient(_SlidingWindowOperation):
    def compute_backward(self, output_gradient: 'Matrix', input: 'Matrix', filter: 'Matrix') -> 'Matrix':
        self._check_operands(input, filter)
        self.check_shape(output_gradient, self.geometry.shape, f"{self.__class__.__name__} output gradient")
        input_gradient = input.get_new_matrix()
        _kernels.crosscorrelate_input_gradient(output_gradient.data, filter.data, self.mask_of(input),
                                               self.mask_of(filter), input_gradient.data, self.geometry.stride,
                                               self.geometry.dilation, self.flip, self.depth_separable)
        return input_gradient


class ConvolutionInputGradient(CrosscorrelationInputGradient):
    flip = True


class CrosscorrelationFilterGradient(_SlidingWindowOperation):
    def compute_backward(self, output_gradient: 'Matrix', input: 'Matrix', filter: 'Matrix') -> 'Matrix':
        self._check_operands(input, filter)
        self.check_shape(output_gradient, self.geometry.shape, f"{self.__class__.__name__} output gradient")
        filter_gradient = filter.get_new_matrix()
        _kernels.crosscorrelate_filter_gradient(output_gradient.data, input.data, self.mask_of(input),
                                                self.mask_of(filter), filter_gradient.data, self.geometry.stride,
                                                self.geometry.dilation, self.flip, self.depth_separable)
        return filter_gradient


class ConvolutionFilterGradient(CrosscorrelationFilterGradient):
    flip = True

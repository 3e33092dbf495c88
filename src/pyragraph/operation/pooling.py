from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from pyragraph.operation import _kernels
from pyragraph.operation.base import MatrixOperation, OperationGeometry

if TYPE_CHECKING:
    from pyragraph.core.matrix import Matrix


class _PoolOperation(MatrixOperation):

    @classmethod
    def for_input(cls, input: 'Matrix', filter_row_size: int, filter_column_size: int, stride: int = 1, **kwargs):
        geometry = OperationGeometry.sliding_window(input.shape, filter_row_size, filter_column_size, stride)
        return cls(geometry, **kwargs)

    def new_positions(self) -> np.ndarray:
        return np.full((self.geometry.depth, self.geometry.rows, self.geometry.columns), -1, dtype=np.int64)

    def _prepare(self, input: 'Matrix', positions: Optional[np.ndarray]) -> Tuple['Matrix', np.ndarray]:
        self.check_shape(input, self.geometry.input_shape, f"{self.__class__.__name__} input")
        if positions is None:
            positions = self.new_positions()
        return input.get_new_matrix(*self.geometry.shape), positions


class MaxPool(_PoolOperation):
    def compute_forward(self, input: 'Matrix', positions: Optional[np.ndarray] = None) -> Tuple['Matrix', np.ndarray]:
        result, positions = self._prepare(input, positions)
        _kernels.max_pool(input.data, self.mask_of(input), result.data, positions,
                          self.geometry.filter_row_size, self.geometry.filter_column_size, self.geometry.stride)
        return result, positions


class RandomPool(_PoolOperation):
    def __init__(self, geometry: OperationGeometry, random_generator: Optional[np.random.Generator] = None):
        super().__init__(geometry)
        self.random_generator = random_generator or np.random.default_rng()

    def compute_forward(self, input: 'Matrix', positions: Optional[np.ndarray] = None) -> Tuple['Matrix', np.ndarray]:
        result, positions = self._prepare(input, positions)
        ranks = self.random_generator.integers(0, np.iinfo(np.int64).max, size=positions.shape, dtype=np.int64)
        _kernels.select_pool(input.data, self.mask_of(input), ranks, result.data, positions,
                             self.geometry.filter_row_size, self.geometry.filter_column_size, self.geometry.stride)
        return result, positions


class CyclicPool(_PoolOperation):
    """Picks window cell ``k mod n`` for the k-th output position, n being the unmasked cell count."""

    def compute_forward(self, input: 'Matrix', positions: Optional[np.ndarray] = None) -> Tuple['Matrix', np.ndarray]:
        result, positions = self._prepare(input, positions)
        ranks = np.arange(positions.size, dtype=np.int64).reshape(positions.shape)
        _kernels.select_pool(input.data, self.mask_of(input), ranks, result.data, positions,
                             self.geometry.filter_row_size, self.geometry.filter_column_size, self.geometry.stride)
        return result, positions


class AveragePool(_PoolOperation):
    def compute_forward(self, input: 'Matrix') -> 'Matrix':
        self.check_shape(input, self.geometry.input_shape, "AveragePool input")
        result = input.get_new_matrix(*self.geometry.shape)
        _kernels.average_pool(input.data, self.mask_of(input), result.data,
                              self.geometry.filter_row_size, self.geometry.filter_column_size, self.geometry.stride)
        return result


class _PositionPoolGradient(_PoolOperation):
    def compute_backward(self, output_gradient: 'Matrix', input: 'Matrix', positions: np.ndarray) -> 'Matrix':
        self.check_shape(input, self.geometry.input_shape, f"{self.__class__.__name__} input")
        self.check_shape(output_gradient, self.geometry.shape, f"{self.__class__.__name__} output gradient")
        input_gradient = input.get_new_matrix()
        _kernels.scatter_positions(output_gradient.data, positions, input_gradient.data)
        return input_gradient


class MaxPoolGradient(_PositionPoolGradient):
    pass


class RandomPoolGradient(_PositionPoolGradient):
    pass


class CyclicPoolGradient(_PositionPoolGradient):
    pass


class AveragePoolGradient(_PoolOperation):
    def compute_backward(self, output_gradient: 'Matrix', input: 'Matrix') -> 'Matrix':
        self.check_shape(input, self.geometry.input_shape, "AveragePoolGradient input")
        self.check_shape(output_gradient, self.geometry.shape, "AveragePoolGradient output gradient")
        input_gradient = input.get_new_matrix()
        _kernels.average_pool_gradient(output_gradient.data, self.mask_of(input), input_gradient.data,
                                       self.geometry.filter_row_size, self.geometry.filter_column_size,
                                       self.geometry.stride)
        return input_gradient

"""Winograd F(2x2, 3x3) convolution.

Produces the same values as cross-correlation with a 3x3 filter at stride 1
and dilation 1. The transform matrices are mostly zeros, so their products
skip masked (zero) coefficients.
"""
from typing import TYPE_CHECKING, Optional

import numpy as np

from pyragraph.core.exceptions import InvalidGeometryException
from pyragraph.operation import _kernels
from pyragraph.operation.base import MatrixOperation, OperationGeometry

if TYPE_CHECKING:
    from pyragraph.core.matrix import Matrix

AT = np.array([[1.0, 1.0, 1.0, 0.0],
               [0.0, 1.0, -1.0, -1.0]])
A = np.ascontiguousarray(AT.T)
BT = np.array([[1.0, 0.0, -1.0, 0.0],
               [0.0, 1.0, 1.0, 0.0],
               [0.0, -1.0, 1.0, 0.0],
               [0.0, 1.0, 0.0, -1.0]])
B = np.ascontiguousarray(BT.T)
G = np.array([[1.0, 0.0, 0.0],
              [0.5, 0.5, 0.5],
              [0.5, -0.5, 0.5],
              [0.0, 0.0, 1.0]])
GT = np.ascontiguousarray(G.T)


class WinogradConvolution(MatrixOperation):

    def __init__(self, geometry: OperationGeometry, depth_separable: bool = True):
        if geometry.filter_row_size != 3 or geometry.filter_column_size != 3:
            raise InvalidGeometryException(
                f"Winograd convolution needs a 3x3 filter, got "
                f"{geometry.filter_row_size}x{geometry.filter_column_size}")
        if geometry.stride != 1 or geometry.dilation != 1:
            raise InvalidGeometryException("Winograd convolution supports only stride 1 and dilation 1")
        super().__init__(geometry)
        self.depth_separable = depth_separable

    @classmethod
    def for_operands(cls, input: 'Matrix', filter: 'Matrix', depth_separable: bool = True) -> 'WinogradConvolution':
        geometry = OperationGeometry.sliding_window(input.shape, filter.rows, filter.columns,
                                                    depth_separable=depth_separable)
        return cls(geometry, depth_separable)

    def preprocess_filter(self, filter: 'Matrix') -> np.ndarray:
        """Return ``G f G^T`` per depth, with masked filter coefficients taken as zero."""
        self.check_shape(filter, self.geometry.filter_shape, "WinogradConvolution filter")
        coefficients = np.where(self.mask_of(filter), 0.0, filter.data)
        return np.ascontiguousarray(np.matmul(np.matmul(G, coefficients), GT))

    def compute_forward(self, input: 'Matrix', filter: 'Matrix',
                        preprocessed_filter: Optional[np.ndarray] = None) -> 'Matrix':
        self.check_shape(input, self.geometry.input_shape, "WinogradConvolution input")
        if preprocessed_filter is None:
            preprocessed_filter = self.preprocess_filter(filter)
        result = input.get_new_matrix(*self.geometry.shape)
        _kernels.winograd(input.data, self.mask_of(input), preprocessed_filter,
                          AT, AT == 0.0, A, A == 0.0, BT, BT == 0.0, B, B == 0.0,
                          result.data, self.depth_separable)
        return result

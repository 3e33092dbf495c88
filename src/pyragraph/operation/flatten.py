from typing import TYPE_CHECKING

import numpy as np

from pyragraph.operation.base import MatrixOperation, OperationGeometry

if TYPE_CHECKING:
    from pyragraph.core.matrix import Matrix


class Flatten(MatrixOperation):
    """Lays a tensor out as a column vector at position ``row + rows * column + rows * columns * depth``."""

    @classmethod
    def for_input(cls, input: 'Matrix') -> 'Flatten':
        return cls(OperationGeometry.elementwise((input.size, 1, 1), input.shape))

    def compute_forward(self, input: 'Matrix') -> 'Matrix':
        self.check_shape(input, self.geometry.input_shape, "Flatten input")
        # (depth, rows, columns) -> depth-major, then column-major
        values = np.transpose(input.data, (0, 2, 1)).reshape(-1)
        return input.get_new_matrix(*self.geometry.shape, data=values.reshape(1, -1, 1))


class Unflatten(MatrixOperation):

    def compute_backward(self, output_gradient: 'Matrix') -> 'Matrix':
        self.check_shape(output_gradient, self.geometry.shape, "Unflatten gradient")
        rows, columns, depth = self.geometry.input_shape
        values = output_gradient.data.reshape(depth, columns, rows)
        return output_gradient.get_new_matrix(rows, columns, depth, data=np.transpose(values, (0, 2, 1)))

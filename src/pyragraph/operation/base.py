from abc import ABC
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from pyragraph.core.exceptions import DimensionMismatchException, InvalidGeometryException

if TYPE_CHECKING:
    from pyragraph.core.matrix import Matrix

Shape = Tuple[int, int, int]


@dataclass(frozen=True)
class OperationGeometry:
    """Input and output extents of a kernel, as ``(rows, columns, depth)``."""
    rows: int
    columns: int
    depth: int
    input_rows: int
    input_columns: int
    input_depth: int
    filter_row_size: int = 1
    filter_column_size: int = 1
    stride: int = 1
    dilation: int = 1

    @property
    def shape(self) -> Shape:
        return self.rows, self.columns, self.depth

    @property
    def input_shape(self) -> Shape:
        return self.input_rows, self.input_columns, self.input_depth

    @property
    def filter_shape(self) -> Shape:
        return self.filter_row_size, self.filter_column_size, self.input_depth

    @classmethod
    def sliding_window(cls, input_shape: Shape, filter_row_size: int, filter_column_size: int,
                       stride: int = 1, dilation: int = 1, depth_separable: bool = True) -> 'OperationGeometry':
        if filter_row_size < 1 or filter_column_size < 1:
            raise InvalidGeometryException(
                f"Filter size must be positive, got {filter_row_size}x{filter_column_size}")
        if stride < 1 or dilation < 1:
            raise InvalidGeometryException(f"Stride and dilation must be positive, got {stride} and {dilation}")
        input_rows, input_columns, input_depth = input_shape
        span_rows = (filter_row_size - 1) * dilation + 1
        span_columns = (filter_column_size - 1) * dilation + 1
        if span_rows > input_rows or span_columns > input_columns:
            raise InvalidGeometryException(
                f"Filter window {span_rows}x{span_columns} does not fit input {input_rows}x{input_columns}")
        return cls(
            rows=(input_rows - span_rows) // stride + 1,
            columns=(input_columns - span_columns) // stride + 1,
            depth=input_depth if depth_separable else 1,
            input_rows=input_rows,
            input_columns=input_columns,
            input_depth=input_depth,
            filter_row_size=filter_row_size,
            filter_column_size=filter_column_size,
            stride=stride,
            dilation=dilation,
        )

    @classmethod
    def elementwise(cls, shape: Shape, input_shape: Optional[Shape] = None) -> 'OperationGeometry':
        input_rows, input_columns, input_depth = input_shape or shape
        rows, columns, depth = shape
        return cls(rows, columns, depth, input_rows, input_columns, input_depth)


class MatrixOperation(ABC):
    """Base of the kernel variants.

    Forward kernels expose ``compute_forward`` and gradient kernels expose
    ``compute_backward``; both validate operand shapes against ``geometry``.
    """

    def __init__(self, geometry: OperationGeometry):
        self.geometry = geometry

    @staticmethod
    def check_shape(matrix: 'Matrix', expected: Shape, context: str) -> None:
        if matrix.shape != expected:
            raise DimensionMismatchException(expected, matrix.shape, context)

    @staticmethod
    def mask_of(matrix: 'Matrix') -> np.ndarray:
        if matrix.has_mask:
            return matrix.mask
        return np.zeros(matrix.data.shape, dtype=np.bool_)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.geometry})"

import functools
import inspect
import logging
from typing import Any, Callable, Iterable, Optional, Tuple, Union

import numpy as np

from pyragraph.config import get_settings
from pyragraph.core.exceptions import DimensionMismatchException, InvalidGeometryException
from pyragraph.core.functions import BinaryFunction, UnaryFunction, UnaryFunctionType
from pyragraph.operation import (
    AveragePool, Convolution, Crosscorrelation, CyclicPool, Flatten, MaxPool, RandomPool, WinogradConvolution,
)

logger = logging.getLogger(__name__)

MatrixLike = Union['Matrix', float, int]


def _recording_factory(values: Iterable[Any]):
    for value in values:
        if isinstance(value, Matrix) and value.procedure_factory is not None \
                and value.procedure_factory.is_recording:
            return value.procedure_factory
    return None


def recorded(create: Callable[..., Any]):
    """Record the decorated operation into the procedure factory attached to its operands.

    ``create`` is called as ``create(factory, lock, arguments, result)`` where
    ``arguments`` maps parameter names to the bound call values. A numeric
    ``other`` argument is promoted to a scalar matrix before the call.
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            call = signature.bind(*args, **kwargs)
            call.apply_defaults()
            other = call.arguments.get("other")
            if other is not None and not isinstance(other, Matrix):
                call.arguments["other"] = Matrix.scalar(other)
            factory = _recording_factory(call.arguments.values())
            if factory is None:
                return func(*call.args, **call.kwargs)
            with factory.expression(call.arguments["self"]) as lock:
                result = func(*call.args, **call.kwargs)
                result.procedure_factory = factory
                if lock is not None:
                    create(factory, lock, call.arguments, result)
            return result
        return wrapper
    return decorator


def sample_variance(values: np.ndarray, mean: float) -> float:
    count = values.size
    return float(np.sum((values - mean) ** 2) / max(count - 1, 1))


class Matrix:
    """Dense ``rows x columns x depth`` tensor of float64 values.

    Values are stored as ``data`` with layout ``(depth, rows, columns)``. A
    tensor may carry a boolean ``mask`` of the same shape; masked positions are
    skipped by the sliding-window kernels. A 1x1x1 tensor is a scalar by default
    and broadcasts against any shape in the elementwise operations.

    Operations decorated with :func:`recorded` are appended to the procedure
    factory attached to one of their operands while that factory is building.
    """

    def __init__(self, data: Any, mask: Any = None, is_scalar: Optional[bool] = None,
                 name: Optional[str] = None, copy: bool = True):
        values = np.array(data, dtype=np.float64) if copy else np.asarray(data, dtype=np.float64)
        if values.ndim == 0:
            values = values.reshape(1, 1, 1)
        elif values.ndim == 1:
            values = values.reshape(1, -1, 1)
        elif values.ndim == 2:
            values = values[np.newaxis, :, :]
        elif values.ndim != 3:
            raise InvalidGeometryException(f"Matrix data must have at most 3 dimensions, got {values.ndim}")
        if 0 in values.shape:
            raise InvalidGeometryException(f"Matrix dimensions must be positive, got {values.shape}")
        self.data = values
        self.mask: Optional[np.ndarray] = None
        if mask is not None:
            self.set_mask(mask)
        self.is_scalar = self.data.shape == (1, 1, 1) if is_scalar is None else is_scalar
        self.name = name
        self.procedure_factory = None

    @classmethod
    def zeros(cls, rows: int, columns: int, depth: int = 1, **kwargs) -> 'Matrix':
        return cls(np.zeros((depth, rows, columns)), copy=False, **kwargs)

    @classmethod
    def ones(cls, rows: int, columns: int, depth: int = 1, **kwargs) -> 'Matrix':
        return cls(np.ones((depth, rows, columns)), copy=False, **kwargs)

    @classmethod
    def scalar(cls, value: float, **kwargs) -> 'Matrix':
        return cls(np.full((1, 1, 1), float(value)), copy=False, is_scalar=True, **kwargs)

    @classmethod
    def random(cls, rows: int, columns: int, depth: int = 1,
               random_generator: Optional[np.random.Generator] = None, **kwargs) -> 'Matrix':
        generator = random_generator or get_settings().make_random_generator()
        return cls(generator.standard_normal((depth, rows, columns)), copy=False, **kwargs)

    @property
    def rows(self) -> int:
        return self.data.shape[1]

    @property
    def columns(self) -> int:
        return self.data.shape[2]

    @property
    def depth(self) -> int:
        return self.data.shape[0]

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.rows, self.columns, self.depth

    @property
    def size(self) -> int:
        return self.data.size

    @property
    def has_mask(self) -> bool:
        return self.mask is not None

    def get_value(self, row: int, column: int, depth: int = 0) -> float:
        return float(self.data[depth, row, column])

    def set_value(self, row: int, column: int, value: float, depth: int = 0) -> None:
        self.data[depth, row, column] = value

    def increment_by_value(self, row: int, column: int, value: float, depth: int = 0) -> None:
        self.data[depth, row, column] += value

    def get_new_matrix(self, rows: Optional[int] = None, columns: Optional[int] = None,
                       depth: Optional[int] = None, data: Optional[np.ndarray] = None) -> 'Matrix':
        """Return an unmasked, unattached tensor, zero-filled unless ``data`` is given."""
        shape = (self.depth if depth is None else depth,
                 self.rows if rows is None else rows,
                 self.columns if columns is None else columns)
        if data is None:
            return Matrix(np.zeros(shape), copy=False, is_scalar=self.is_scalar and shape == (1, 1, 1))
        return Matrix(np.reshape(data, shape), is_scalar=self.is_scalar and shape == (1, 1, 1))

    def copy(self) -> 'Matrix':
        duplicate = Matrix(self.data, mask=self.mask, is_scalar=self.is_scalar, name=self.name)
        return duplicate

    def flip(self) -> 'Matrix':
        """Return a copy reversed along both spatial axes."""
        return Matrix(self.data[:, ::-1, ::-1], mask=None if self.mask is None else self.mask[:, ::-1, ::-1],
                      is_scalar=self.is_scalar)

    def to_numpy(self) -> np.ndarray:
        return self.data

    # masking

    def set_mask(self, mask: Any = None) -> None:
        if mask is None:
            self.mask = np.zeros(self.data.shape, dtype=np.bool_)
            return
        values = np.array(mask, dtype=np.bool_)
        if values.ndim == 2:
            values = values[np.newaxis, :, :]
        if values.shape != self.data.shape:
            depth, rows, columns = values.shape if values.ndim == 3 else (1, 0, 0)
            raise DimensionMismatchException(self.shape, (rows, columns, depth), "mask")
        self.mask = values

    def clear_mask(self) -> None:
        self.mask = None

    def get_mask_at(self, row: int, column: int, depth: int = 0) -> bool:
        return self.mask is not None and bool(self.mask[depth, row, column])

    def set_mask_at(self, row: int, column: int, value: bool = True, depth: int = 0) -> None:
        if self.mask is None:
            self.set_mask()
        self.mask[depth, row, column] = value

    # plain statistics, never recorded

    def sum(self) -> float:
        return float(self.data.sum())

    def mean(self) -> float:
        return float(self.data.mean())

    def variance(self, mean: Optional[float] = None) -> float:
        return sample_variance(self.data, self.mean() if mean is None else mean)

    def standard_deviation(self, mean: Optional[float] = None) -> float:
        return float(np.sqrt(self.variance(mean)))

    def norm(self, p: float = 2) -> float:
        return float(np.sum(np.abs(self.data) ** p) ** (1.0 / p))

    # elementwise

    def _elementwise(self, other: 'Matrix', operation: Callable, context: str) -> 'Matrix':
        if self.shape != other.shape and not (self.is_scalar or other.is_scalar):
            raise DimensionMismatchException(self.shape, other.shape, context)
        values = operation(self.data, other.data)
        return Matrix(values, copy=False, is_scalar=self.is_scalar and other.is_scalar)

    @recorded(lambda factory, lock, call, result:
              factory.create_add_expression(lock, call["self"], call["other"], result))
    def add(self, other: MatrixLike) -> 'Matrix':
        return self._elementwise(other, np.add, "add")

    @recorded(lambda factory, lock, call, result:
              factory.create_subtract_expression(lock, call["self"], call["other"], result))
    def subtract(self, other: MatrixLike) -> 'Matrix':
        return self._elementwise(other, np.subtract, "subtract")

    @recorded(lambda factory, lock, call, result:
              factory.create_multiply_expression(lock, call["self"], call["other"], result))
    def multiply(self, other: MatrixLike) -> 'Matrix':
        return self._elementwise(other, np.multiply, "multiply")

    @recorded(lambda factory, lock, call, result:
              factory.create_divide_expression(lock, call["self"], call["other"], result))
    def divide(self, other: MatrixLike) -> 'Matrix':
        return self._elementwise(other, np.divide, "divide")

    @recorded(lambda factory, lock, call, result:
              factory.create_dot_expression(lock, call["self"], call["other"], result))
    def dot(self, other: MatrixLike) -> 'Matrix':
        if self.columns != other.rows or self.depth != other.depth:
            raise DimensionMismatchException(self.shape, other.shape, "dot")
        return Matrix(np.matmul(self.data, other.data), copy=False)

    @recorded(lambda factory, lock, call, result:
              factory.create_unary_function_expression(lock, call["self"], result, call["unary_function"]))
    def apply(self, unary_function: Union[UnaryFunction, UnaryFunctionType]) -> 'Matrix':
        if isinstance(unary_function, UnaryFunctionType):
            unary_function = UnaryFunction(unary_function)
        if unary_function.is_softmax and self.columns != 1:
            raise InvalidGeometryException(f"Softmax needs a column vector, got {self.rows}x{self.columns}")
        return Matrix(unary_function.function(self.data), copy=False, is_scalar=self.is_scalar)

    @recorded(lambda factory, lock, call, result:
              factory.create_binary_function_expression(lock, call["self"], call["other"], result,
                                                        call["binary_function"]))
    def apply_bi(self, other: MatrixLike, binary_function: BinaryFunction) -> 'Matrix':
        return self._elementwise(other, binary_function.function, binary_function.function_type.value)

    # sliding window

    @recorded(lambda factory, lock, call, result:
              factory.create_convolve_expression(lock, call["self"], call["filter"], result, call["stride"],
                                                 call["dilation"], call["depth_separable"]))
    def convolve(self, filter: 'Matrix', stride: int = 1, dilation: int = 1,
                 depth_separable: bool = True) -> 'Matrix':
        return Convolution.for_operands(self, filter, stride, dilation, depth_separable).compute_forward(self, filter)

    @recorded(lambda factory, lock, call, result:
              factory.create_crosscorrelate_expression(lock, call["self"], call["filter"], result, call["stride"],
                                                       call["dilation"], call["depth_separable"]))
    def crosscorrelate(self, filter: 'Matrix', stride: int = 1, dilation: int = 1,
                       depth_separable: bool = True) -> 'Matrix':
        operation = Crosscorrelation.for_operands(self, filter, stride, dilation, depth_separable)
        return operation.compute_forward(self, filter)

    @recorded(lambda factory, lock, call, result:
              factory.create_winograd_convolve_expression(lock, call["self"], call["filter"], result,
                                                          call["depth_separable"]))
    def winograd_convolve(self, filter: 'Matrix', depth_separable: bool = True) -> 'Matrix':
        return WinogradConvolution.for_operands(self, filter, depth_separable).compute_forward(self, filter)

    @recorded(lambda factory, lock, call, result:
              factory.create_max_pool_expression(lock, call["self"], result, call["stride"],
                                                 call["filter_row_size"], call["filter_column_size"]))
    def max_pool(self, filter_row_size: int, filter_column_size: Optional[int] = None, stride: int = 1) -> 'Matrix':
        filter_column_size = filter_column_size or filter_row_size
        result, _ = MaxPool.for_input(self, filter_row_size, filter_column_size, stride).compute_forward(self)
        return result

    @recorded(lambda factory, lock, call, result:
              factory.create_random_pool_expression(lock, call["self"], result, call["stride"],
                                                    call["filter_row_size"], call["filter_column_size"]))
    def random_pool(self, filter_row_size: int, filter_column_size: Optional[int] = None,
                    stride: int = 1) -> 'Matrix':
        filter_column_size = filter_column_size or filter_row_size
        operation = RandomPool.for_input(self, filter_row_size, filter_column_size, stride,
                                         random_generator=get_settings().make_random_generator())
        result, _ = operation.compute_forward(self)
        return result

    @recorded(lambda factory, lock, call, result:
              factory.create_cyclic_pool_expression(lock, call["self"], result, call["stride"],
                                                    call["filter_row_size"], call["filter_column_size"]))
    def cyclic_pool(self, filter_row_size: int, filter_column_size: Optional[int] = None,
                    stride: int = 1) -> 'Matrix':
        filter_column_size = filter_column_size or filter_row_size
        result, _ = CyclicPool.for_input(self, filter_row_size, filter_column_size, stride).compute_forward(self)
        return result

    @recorded(lambda factory, lock, call, result:
              factory.create_average_pool_expression(lock, call["self"], result, call["stride"],
                                                     call["filter_row_size"], call["filter_column_size"]))
    def average_pool(self, filter_row_size: int, filter_column_size: Optional[int] = None,
                     stride: int = 1) -> 'Matrix':
        filter_column_size = filter_column_size or filter_row_size
        return AveragePool.for_input(self, filter_row_size, filter_column_size, stride).compute_forward(self)

    @recorded(lambda factory, lock, call, result: factory.create_flatten_expression(lock, call["self"], result))
    def flatten(self) -> 'Matrix':
        return Flatten.for_input(self).compute_forward(self)

    # reductions

    @recorded(lambda factory, lock, call, result: factory.create_sum_expression(lock, call["self"], result))
    def sum_as_matrix(self) -> 'Matrix':
        return Matrix.scalar(self.sum())

    @recorded(lambda factory, lock, call, result: factory.create_mean_expression(lock, call["self"], result))
    def mean_as_matrix(self) -> 'Matrix':
        return Matrix.scalar(self.mean())

    @recorded(lambda factory, lock, call, result: factory.create_variance_expression(lock, call["self"], result))
    def variance_as_matrix(self) -> 'Matrix':
        return Matrix.scalar(self.variance())

    @recorded(lambda factory, lock, call, result:
              factory.create_standard_deviation_expression(lock, call["self"], result))
    def standard_deviation_as_matrix(self) -> 'Matrix':
        return Matrix.scalar(self.standard_deviation())

    @recorded(lambda factory, lock, call, result:
              factory.create_norm_expression(lock, call["self"], result, call["p"]))
    def norm_as_matrix(self, p: float = 2) -> 'Matrix':
        return Matrix.scalar(self.norm(p))

    # Reductions across every sample index of a procedure. While a graph is
    # being built only this one sample exists, so the values are those of a
    # single-element set.

    @recorded(lambda factory, lock, call, result:
              factory.create_sum_expression(lock, call["self"], result, single_step=True))
    def sum_over_samples(self) -> 'Matrix':
        return Matrix(self.data, is_scalar=self.is_scalar)

    @recorded(lambda factory, lock, call, result:
              factory.create_mean_expression(lock, call["self"], result, single_step=True))
    def mean_over_samples(self) -> 'Matrix':
        return Matrix(self.data, is_scalar=self.is_scalar)

    @recorded(lambda factory, lock, call, result:
              factory.create_variance_expression(lock, call["self"], result, single_step=True))
    def variance_over_samples(self) -> 'Matrix':
        return self.get_new_matrix()

    @recorded(lambda factory, lock, call, result:
              factory.create_standard_deviation_expression(lock, call["self"], result, single_step=True))
    def standard_deviation_over_samples(self) -> 'Matrix':
        return self.get_new_matrix()

    # operators

    def __add__(self, other: MatrixLike) -> 'Matrix':
        return self.add(other)

    def __radd__(self, other: MatrixLike) -> 'Matrix':
        return Matrix.scalar(other).add(self)

    def __sub__(self, other: MatrixLike) -> 'Matrix':
        return self.subtract(other)

    def __rsub__(self, other: MatrixLike) -> 'Matrix':
        return Matrix.scalar(other).subtract(self)

    def __mul__(self, other: MatrixLike) -> 'Matrix':
        return self.multiply(other)

    def __rmul__(self, other: MatrixLike) -> 'Matrix':
        return Matrix.scalar(other).multiply(self)

    def __truediv__(self, other: MatrixLike) -> 'Matrix':
        return self.divide(other)

    def __rtruediv__(self, other: MatrixLike) -> 'Matrix':
        return Matrix.scalar(other).divide(self)

    def __matmul__(self, other: 'Matrix') -> 'Matrix':
        return self.dot(other)

    def __neg__(self) -> 'Matrix':
        return self.multiply(-1.0)

    def __repr__(self) -> str:
        label = f"{self.name}, " if self.name else ""
        scalar = ", scalar" if self.is_scalar else ""
        return f"Matrix({label}{self.rows}x{self.columns}x{self.depth}{scalar})"

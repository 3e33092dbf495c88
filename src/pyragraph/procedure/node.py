import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from pyragraph.core.exceptions import DimensionMismatchException
from pyragraph.core.matrix import Matrix
from pyragraph.procedure.hooks import Normalizer, Regularizer

logger = logging.getLogger(__name__)

GradientLike = Union[Matrix, np.ndarray]


@dataclass(frozen=True)
class NodeLink:
    """Position of a node in the node arena of a procedure."""
    procedure_id: int
    node_id: int


class Node(ABC):
    """Graph vertex holding the value and gradient of one tensor per sample index.

    ``expression_id`` is the id of the expression that produced the tensor, or
    -1 for a root. ``from_node`` and ``to_node`` link a node to its counterpart in
    a temporally adjacent procedure.
    """

    def __init__(self, node_id: int, reference_matrix: Matrix, expression_id: int = -1):
        self.node_id = node_id
        self.reference_matrix = reference_matrix
        # fixed at definition, the matrix itself may be reassigned later
        self._shape = reference_matrix.shape
        self.expression_id = expression_id
        self.stop_gradient = False
        self.is_constant = False
        self.from_node: Optional[NodeLink] = None
        self.to_node: Optional[NodeLink] = None
        self.normalizers: List[Normalizer] = []
        self.regularizers: List[Regularizer] = []

    @property
    def name(self) -> str:
        return f"N{self.node_id}"

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._shape

    @property
    def rows(self) -> int:
        return self._shape[0]

    @property
    def columns(self) -> int:
        return self._shape[1]

    @property
    def depth(self) -> int:
        return self._shape[2]

    @property
    def is_scalar(self) -> bool:
        return self.reference_matrix.is_scalar

    @property
    @abstractmethod
    def is_multi_index(self) -> bool:
        ...

    @abstractmethod
    def get_matrix(self, index: Optional[int] = None) -> Optional[Matrix]:
        ...

    @abstractmethod
    def set_matrix(self, index: Optional[int], matrix: Matrix) -> None:
        ...

    @abstractmethod
    def get_gradient(self, index: Optional[int] = None) -> Optional[Matrix]:
        ...

    @abstractmethod
    def _set_gradient(self, index: Optional[int], gradient: Matrix) -> None:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...

    def is_stop_gradient(self) -> bool:
        return self.stop_gradient

    def set_stop_gradient(self, stop_gradient: bool = True) -> None:
        self.stop_gradient = stop_gradient

    def get_empty_matrix(self) -> Matrix:
        return self.reference_matrix.get_new_matrix()

    def cumulate_gradient(self, index: Optional[int], gradient: GradientLike, negate: bool = False) -> None:
        """Add ``gradient`` to the gradient at ``index``; a scalar node sums it first."""
        if self.stop_gradient:
            return
        values = gradient.data if isinstance(gradient, Matrix) else np.asarray(gradient, dtype=np.float64)
        if negate:
            values = -values
        expected = self.reference_matrix.data.shape
        if values.shape != expected:
            if self.is_scalar:
                values = np.full(expected, values.sum())
            else:
                depth, rows, columns = values.shape if values.ndim == 3 else (0, 0, 0)
                raise DimensionMismatchException(self.shape, (rows, columns, depth), f"{self.name} gradient")
        current = self.get_gradient(index)
        if current is None:
            self._set_gradient(index, Matrix(values, is_scalar=self.is_scalar))
        else:
            current.data += values

    # normalization and regularization hooks

    def forward_regularize(self) -> None:
        for regularizer in self.regularizers:
            regularizer.forward(self)

    def backward_regularize(self) -> None:
        for regularizer in self.regularizers:
            regularizer.backward(self)

    def cumulate_regularization_error(self) -> float:
        return sum(regularizer.error(self) for regularizer in self.regularizers)

    def forward_normalize(self, index: Optional[int]) -> None:
        for normalizer in self.normalizers:
            normalizer.forward(self, index)

    def forward_normalize_finalize(self) -> None:
        for normalizer in self.normalizers:
            normalizer.forward_finalize(self)

    def backward_normalize(self, index: Optional[int]) -> None:
        for normalizer in self.normalizers:
            normalizer.backward(self, index)

    def backward_normalize_finalize(self) -> None:
        for normalizer in self.normalizers:
            normalizer.backward_finalize(self)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name}, {self.rows}x{self.columns}x{self.depth})"


class SingleNode(Node):
    """Node sharing one tensor and one gradient across every index."""

    def __init__(self, node_id: int, reference_matrix: Matrix, expression_id: int = -1):
        super().__init__(node_id, reference_matrix, expression_id)
        self._matrix: Optional[Matrix] = reference_matrix
        self._gradient: Optional[Matrix] = None

    @property
    def is_multi_index(self) -> bool:
        return False

    def get_matrix(self, index: Optional[int] = None) -> Optional[Matrix]:
        return self._matrix

    def set_matrix(self, index: Optional[int], matrix: Matrix) -> None:
        self._matrix = matrix

    def get_gradient(self, index: Optional[int] = None) -> Optional[Matrix]:
        return self._gradient

    def _set_gradient(self, index: Optional[int], gradient: Matrix) -> None:
        self._gradient = gradient

    def reset(self) -> None:
        self._matrix = self.reference_matrix if self.is_constant else None
        self._gradient = None


class MultiNode(Node):
    """Node with a separate tensor and gradient slot per index."""

    def __init__(self, node_id: int, reference_matrix: Matrix, expression_id: int = -1):
        super().__init__(node_id, reference_matrix, expression_id)
        self._matrices: Dict[int, Matrix] = {}
        self._gradients: Dict[int, Matrix] = {}

    @property
    def is_multi_index(self) -> bool:
        return True

    def get_matrix(self, index: Optional[int] = None) -> Optional[Matrix]:
        if self.is_constant:
            return self.reference_matrix
        return self._matrices.get(index)

    def set_matrix(self, index: Optional[int], matrix: Matrix) -> None:
        if matrix.shape != self.shape:
            raise DimensionMismatchException(self.shape, matrix.shape, f"{self.name} value")
        self._matrices[index] = matrix

    def get_gradient(self, index: Optional[int] = None) -> Optional[Matrix]:
        return self._gradients.get(index)

    def _set_gradient(self, index: Optional[int], gradient: Matrix) -> None:
        self._gradients[index] = gradient

    def indices(self) -> List[int]:
        return list(self._matrices)

    def matrices(self, indices: Optional[Iterable[int]] = None) -> Dict[int, Matrix]:
        if indices is None:
            return dict(self._matrices)
        return {index: self.get_matrix(index) for index in indices if self.get_matrix(index) is not None}

    def gradients(self) -> Dict[int, Matrix]:
        return dict(self._gradients)

    def reset(self) -> None:
        self._matrices.clear()
        self._gradients.clear()

import logging
from typing import Dict, List, Optional, Tuple
from weakref import WeakKeyDictionary

from pyragraph.core.exceptions import DimensionMismatchException, MatrixException
from pyragraph.core.matrix import Matrix
from pyragraph.procedure.node import MultiNode, Node, SingleNode

logger = logging.getLogger(__name__)


class NodeRegister:
    """Interns tensors into nodes, keyed by tensor identity.

    Nodes live for one construction session; each session is one procedure
    and gets a fresh node arena. Which expression produced a tensor is
    remembered across sessions until :meth:`reset`, so that a later session
    can see that one of its roots was computed by an earlier one.
    """

    def __init__(self):
        self._nodes: Dict[Matrix, Node] = {}
        self._producers: 'WeakKeyDictionary[Matrix, Tuple[int, int]]' = WeakKeyDictionary()
        self._registered: List[Matrix] = []
        self.session_id: Optional[int] = None

    def begin_session(self, session_id: int) -> None:
        self._nodes = {}
        self.session_id = session_id

    def reset(self) -> None:
        self._nodes = {}
        self._producers = WeakKeyDictionary()
        self.session_id = None

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, matrix: Matrix) -> bool:
        return matrix in self._nodes

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def get_node(self, matrix: Matrix) -> Optional[Node]:
        return self._nodes.get(matrix)

    def producer_of(self, matrix: Matrix) -> Optional[Tuple[int, int]]:
        """Return ``(session_id, expression_id)`` of the expression that produced ``matrix``."""
        return self._producers.get(matrix)

    def define_node(self, matrix: Matrix, single: bool = False) -> Node:
        node = self._nodes.get(matrix)
        if node is not None:
            self._check_shape(node, matrix)
            return node
        producer = self._producers.get(matrix)
        return self._add(matrix, producer[1] if producer else -1, single)

    def define_result(self, matrix: Matrix, expression_id: int, single: bool = False) -> Node:
        node = self._nodes.get(matrix)
        if node is not None:
            raise MatrixException(f"{matrix!r} is already registered as {node.name} and cannot be a new result")
        self._producers[matrix] = (self.session_id, expression_id)
        return self._add(matrix, expression_id, single)

    def detach(self) -> None:
        """Detach the procedure factory from every tensor registered since the last call."""
        for matrix in self._registered:
            matrix.procedure_factory = None
        self._registered = []

    def _add(self, matrix: Matrix, expression_id: int, single: bool) -> Node:
        node_type = SingleNode if single else MultiNode
        node = node_type(len(self._nodes), matrix, expression_id)
        self._nodes[matrix] = node
        self._registered.append(matrix)
        logger.debug("Session %s defined %r for %r (expression %d)", self.session_id, node, matrix, expression_id)
        return node

    @staticmethod
    def _check_shape(node: Node, matrix: Matrix) -> None:
        if node.shape != matrix.shape:
            raise DimensionMismatchException(node.shape, matrix.shape, f"Registered node {node.name}")

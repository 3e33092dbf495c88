from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pyragraph.procedure.node import Node


@runtime_checkable
class Normalizer(Protocol):
    """Normalization applied to a node before an expression reads it."""

    def forward(self, node: 'Node', index: int) -> None: ...

    def forward_finalize(self, node: 'Node') -> None: ...

    def backward(self, node: 'Node', index: int) -> None: ...

    def backward_finalize(self, node: 'Node') -> None: ...


@runtime_checkable
class Regularizer(Protocol):
    """Regularization of a constant node, usually a layer weight."""

    def forward(self, node: 'Node') -> None: ...

    def backward(self, node: 'Node') -> None: ...

    def error(self, node: 'Node') -> float: ...

from abc import ABC, abstractmethod
from typing import Callable, Dict, Mapping, Union

from pyragraph.core.matrix import Matrix

ForwardResult = Union[Matrix, Mapping[int, Matrix]]


class ForwardProcedure(ABC):
    """Forward computation a procedure is built from.

    ``get_input_matrices(True)`` returns inputs without any carried state,
    ``get_input_matrices(False)`` inputs where state carried from the previous
    step is present. ``get_forward_procedure`` runs the computation on the
    inputs last returned and gives its outputs.
    """

    @abstractmethod
    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        ...

    @abstractmethod
    def get_forward_procedure(self) -> ForwardResult:
        ...


class FunctionalForwardProcedure(ForwardProcedure):

    def __init__(self, input_matrices: Callable[[bool], Dict[int, Matrix]], forward: Callable[[], ForwardResult]):
        self._input_matrices = input_matrices
        self._forward = forward

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        return self._input_matrices(reset_previous_input)

    def get_forward_procedure(self) -> ForwardResult:
        return self._forward()

from pyragraph.procedure.factory import ExpressionLock, ProcedureData, ProcedureFactory
from pyragraph.procedure.forward import ForwardProcedure, FunctionalForwardProcedure
from pyragraph.procedure.hooks import Normalizer, Regularizer
from pyragraph.procedure.node import MultiNode, Node, NodeLink, SingleNode
from pyragraph.procedure.procedure import Procedure, ProcedureState
from pyragraph.procedure.register import NodeRegister

__all__ = [
    "ProcedureFactory", "ProcedureData", "ExpressionLock",
    "Procedure", "ProcedureState",
    "ForwardProcedure", "FunctionalForwardProcedure",
    "Node", "SingleNode", "MultiNode", "NodeLink", "NodeRegister",
    "Normalizer", "Regularizer",
]

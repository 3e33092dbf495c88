from typing import TYPE_CHECKING, Dict, List, Set, Tuple

import networkx as nx

if TYPE_CHECKING:
    from pyragraph.procedure.procedure import Procedure


class ProcedureGraph:
    """Directed view of a procedure: argument nodes point to result nodes.

    Temporal dependencies are kept apart from the graph edges, since a result
    feeding its own argument at the next index would otherwise form a cycle.
    """

    def __init__(self, procedure: 'Procedure'):
        self.graph = nx.DiGraph()
        self.dependency_edges: List[Tuple[int, int]] = [
            (result_id, argument_id) for argument_id, result_id in procedure.dependencies.items()
        ]
        for node in procedure.nodes:
            self.graph.add_node(node.node_id, node=node, multi_index=node.is_multi_index)
        for expression in procedure.expressions:
            for argument in expression.arguments:
                self.graph.add_edge(argument.node_id, expression.result.node_id, expression=expression)
        self.output_ids: Set[int] = {node.node_id for node in procedure.output_nodes.values()}

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.graph)

    def topological_order(self) -> List[int]:
        return list(nx.topological_sort(self.graph))

    def nodes_reaching_outputs(self) -> Set[int]:
        """Node ids from which an output is reachable, outputs included."""
        reaching = set(self.output_ids)
        for output_id in self.output_ids:
            reaching |= nx.ancestors(self.graph, output_id)
        return reaching

    def longest_path_length(self) -> int:
        return nx.dag_longest_path_length(self.graph)

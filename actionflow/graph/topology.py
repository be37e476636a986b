"""
Preset Topology
===============

Structural analysis of a preset graph using networkx.

This module answers questions about the SHAPE of a preset:
- Which nodes can never be entered from the start node
- Whether the workflow can cycle
- Which nodes have no way out (other than holding)
- The shortest legal route between two states

It never decides anything at run time; the execution engine only
uses the O(1) adjacency lookup in preset.py.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Set

import networkx as nx

from .preset import Preset


@dataclass(frozen=True)
class GraphMetrics:
    """Immutable structural metrics for a preset graph."""
    node_count: int
    edge_count: int
    self_loop_count: int
    density: float
    has_cycles: bool
    reachable_count: int


class PresetTopology:
    """Directed-graph view of one preset."""

    def __init__(self, preset: Preset):
        self._preset = preset
        self._graph = nx.DiGraph()
        for node_id in preset.node_order:
            self._graph.add_node(node_id)
        for node_id in preset.node_order:
            for next_id in preset.nodes[node_id].allowed_next_ids:
                self._graph.add_edge(node_id, next_id)

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    def reachable_nodes(self) -> Set[str]:
        """Nodes enterable from the start node, the start included."""
        start = self._preset.start_node_id
        return {start} | nx.descendants(self._graph, start)

    def unreachable_nodes(self) -> Set[str]:
        return set(self._graph.nodes) - self.reachable_nodes()

    def has_cycles(self) -> bool:
        """True when any state can be re-entered, self-loops included."""
        return not nx.is_directed_acyclic_graph(self._graph)

    def terminal_nodes(self) -> Set[str]:
        """Nodes whose only successor, if any, is themselves."""
        return {
            n for n in self._graph.nodes
            if set(self._graph.successors(n)) <= {n}
        }

    def shortest_route(self, from_id: str, to_id: str) -> Optional[List[str]]:
        try:
            return nx.shortest_path(self._graph, source=from_id, target=to_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

    def compute_metrics(self) -> GraphMetrics:
        return GraphMetrics(
            node_count=self._graph.number_of_nodes(),
            edge_count=self._graph.number_of_edges(),
            self_loop_count=nx.number_of_selfloops(self._graph),
            density=nx.density(self._graph),
            has_cycles=self.has_cycles(),
            reachable_count=len(self.reachable_nodes()),
        )

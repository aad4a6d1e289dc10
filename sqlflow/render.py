from __future__ import annotations

from typing import Dict, Optional

from graphviz import Digraph

from .graph import EdgeKind, GraphNode, LineageGraph, NodeCategory

DEFAULT_HEADER = "Column lineage generated by sqlflow"

NODE_STYLES: Dict[NodeCategory, Dict[str, str]] = {
    NodeCategory.SOURCE: {'shape': 'box', 'style': 'filled', 'fillcolor': '#E3F2FD'},
    NodeCategory.VIEW: {'shape': 'box', 'style': 'filled', 'fillcolor': '#F3E5F5'},
    NodeCategory.CACHED: {'shape': 'box3d', 'style': 'filled', 'fillcolor': '#FFF3E0'},
    NodeCategory.PLAN: {'shape': 'ellipse', 'style': 'filled', 'fillcolor': '#E8F5E8'},
    NodeCategory.COLUMN: {'shape': 'note', 'style': 'filled', 'fillcolor': '#FFFFFF'},
}

EDGE_STYLES: Dict[EdgeKind, Dict[str, str]] = {
    EdgeKind.DERIVE: {},
    EdgeKind.CONDITION: {'style': 'dashed'},
    EdgeKind.MEMBER: {'style': 'dotted', 'arrowhead': 'none'},
    EdgeKind.ENTITY: {'penwidth': '2'},
}

GRAPH_ATTRIBUTES = {'rankdir': 'LR', 'nodesep': '0.5', 'ranksep': '1.5'}


class GraphRenderer:
    """Serializes a LineageGraph to DOT text.

    Pure: the same graph always yields byte-identical text. Nodes are emitted
    by (category, id), edges by (source, target).
    """

    def __init__(self, graph_attributes: Optional[Dict[str, str]] = None):
        self.graph_attributes = dict(GRAPH_ATTRIBUTES)
        if graph_attributes:
            self.graph_attributes.update(graph_attributes)

    def render(self, graph: LineageGraph, header: Optional[str] = None) -> str:
        dot = Digraph(
            name='sqlflow',
            comment=header or DEFAULT_HEADER,
            graph_attr=self.graph_attributes,
            node_attr={'fontname': 'Helvetica'},
        )
        for node in graph.sorted_nodes():
            dot.node(node.node_id, self._label(node), **self._node_style(node))
        for edge in graph.sorted_edges():
            dot.edge(edge.source, edge.target, label=edge.label, **EDGE_STYLES[edge.kind])
        return dot.source

    def _label(self, node: GraphNode) -> str:
        if node.data_type:
            return f"{node.label}: {node.data_type}"
        return node.label

    def _node_style(self, node: GraphNode) -> Dict[str, str]:
        style = dict(NODE_STYLES[node.category])
        if node.cached and node.category == NodeCategory.SOURCE:
            style['penwidth'] = '2'
        # views read by several parents are candidates for caching
        if node.shared and node.category == NodeCategory.VIEW:
            style['peripheries'] = '2'
            style['color'] = '#D32F2F'
        return style


def render_graph(graph: LineageGraph, header: Optional[str] = None) -> str:
    return GraphRenderer().render(graph, header=header)

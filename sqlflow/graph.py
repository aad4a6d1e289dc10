"""
Lineage graph model and builder.

The builder folds per-entity walks into one graph. Node ids are the walker's
NodeRef ids (``entity``, ``entity.column``, ``entity/kind_n``,
``entity/kind_n.column``), so the same logical entity or column always maps to
one node no matter how many views reach it.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .catalog import Entity
from .core.origin import LineageEdge, NodeRef
from .core.walker import EntityLineage


class NodeCategory(str, Enum):
    SOURCE = "source"
    VIEW = "view"
    CACHED = "cached"
    PLAN = "plan"
    COLUMN = "column"


class EdgeKind(str, Enum):
    DERIVE = "derive"
    CONDITION = "condition"
    MEMBER = "member"
    ENTITY = "entity"


CATEGORY_ORDER = {c: i for i, c in enumerate(NodeCategory)}
ENTITY_CATEGORIES = (NodeCategory.SOURCE, NodeCategory.VIEW, NodeCategory.CACHED)
_EDGE_PRECEDENCE = {EdgeKind.MEMBER: 0, EdgeKind.CONDITION: 1, EdgeKind.ENTITY: 2, EdgeKind.DERIVE: 3}


@dataclass(frozen=True)
class GraphNode:
    node_id: str
    label: str
    category: NodeCategory
    entity: str  # owning entity, the node itself for entity nodes
    owner: Optional[str] = None  # entity or plan node holding a column
    cached: bool = False
    shared: bool = False
    data_type: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, str]:
        return CATEGORY_ORDER[self.category], self.node_id


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    kind: EdgeKind = EdgeKind.DERIVE
    vias: Tuple[str, ...] = ()
    pairs: Tuple[Tuple[str, str], ...] = ()  # contributing column edges of an entity edge

    @property
    def label(self) -> Optional[str]:
        if self.kind == EdgeKind.ENTITY:
            return str(len(self.pairs))
        if self.vias:
            return ", ".join(self.vias)
        return None


class LineageGraph:
    """Deduplicated nodes and edges; ``contracted`` graphs hold entities only."""

    def __init__(self, contracted: bool = False):
        self.contracted = contracted
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: Dict[Tuple[str, str], GraphEdge] = {}

    def __eq__(self, other) -> bool:
        if not isinstance(other, LineageGraph):
            return NotImplemented
        return (self.contracted, self.nodes, self.edges) == (other.contracted, other.nodes, other.edges)

    def __len__(self) -> int:
        return len(self.nodes)

    def add_node(self, node: GraphNode) -> GraphNode:
        existing = self.nodes.get(node.node_id)
        if existing is not None:
            node = replace(
                existing,
                cached=existing.cached or node.cached,
                shared=existing.shared or node.shared,
                data_type=existing.data_type or node.data_type,
            )
        self.nodes[node.node_id] = node
        return node

    def add_edge(self, edge: GraphEdge) -> GraphEdge:
        for end in (edge.source, edge.target):
            if end not in self.nodes:
                raise ValueError(f"edge {edge.source} -> {edge.target} references unknown node {end}")
        key = (edge.source, edge.target)
        existing = self.edges.get(key)
        if existing is not None:
            kind = max(existing.kind, edge.kind, key=_EDGE_PRECEDENCE.get)
            edge = GraphEdge(
                edge.source,
                edge.target,
                kind,
                vias=tuple(sorted(set(existing.vias) | set(edge.vias))),
                pairs=tuple(sorted(set(existing.pairs) | set(edge.pairs))),
            )
        self.edges[key] = edge
        return edge

    def sorted_nodes(self) -> List[GraphNode]:
        return sorted(self.nodes.values(), key=lambda n: n.sort_key)

    def sorted_edges(self) -> List[GraphEdge]:
        return [self.edges[k] for k in sorted(self.edges)]

    def entity_nodes(self) -> List[GraphNode]:
        return [n for n in self.sorted_nodes() if n.category in ENTITY_CATEGORIES]

    def predecessors(self, node_id: str) -> List[str]:
        return sorted(s for (s, t) in self.edges if t == node_id)

    def successors(self, node_id: str) -> List[str]:
        return sorted(t for (s, t) in self.edges if s == node_id)

    def upstream(self, node_id: str) -> Set[str]:
        """Every node with a path into ``node_id``."""
        incoming: Dict[str, List[str]] = defaultdict(list)
        for s, t in self.edges:
            incoming[t].append(s)
        seen: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for s in incoming.get(current, ()):
                if s not in seen:
                    seen.add(s)
                    queue.append(s)
        return seen

    def contract(self) -> "LineageGraph":
        """Project onto entity nodes; one edge per entity pair. Idempotent."""
        out = LineageGraph(contracted=True)
        for node in self.entity_nodes():
            out.add_node(node)
        for edge in self.sorted_edges():
            a = self.nodes[edge.source].entity
            b = self.nodes[edge.target].entity
            if a == b:
                continue
            pairs = edge.pairs or ((edge.source, edge.target),)
            out.add_edge(GraphEdge(a, b, EdgeKind.ENTITY, pairs=tuple(sorted(set(pairs)))))
        return out


class GraphBuilder:
    """Fold (entity, lineage) pairs into one LineageGraph."""

    def __init__(
        self,
        contracted: bool = False,
        include_column_types: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.contracted = contracted
        self.include_column_types = include_column_types
        self.logger = logger or logging.getLogger(__name__)
        self._entities: Dict[str, Entity] = {}
        self._lineages: Dict[str, EntityLineage] = {}
        self._parents: Dict[str, Set[str]] = defaultdict(set)

    def add(self, entity: Entity, lineage: Optional[EntityLineage] = None) -> None:
        """Register an entity; ``lineage`` is None when its walk failed."""
        self._entities[entity.name] = entity
        if lineage is None:
            return
        self._lineages[entity.name] = lineage
        for ref in lineage.references:
            self._parents[ref].add(entity.name)

    def build(self) -> LineageGraph:
        graph = LineageGraph()
        for name in sorted(self._entities):
            graph.add_node(self._entity_node(self._entities[name]))
        for name in sorted(self._lineages):
            self._fold(graph, self._lineages[name])
        self.logger.debug(f"Lineage graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
        if self.contracted:
            return graph.contract()
        return graph

    # --------------- internal ---------------
    def _entity_node(self, entity: Entity) -> GraphNode:
        if entity.is_table:
            category = NodeCategory.SOURCE
        elif entity.cached:
            category = NodeCategory.CACHED
        else:
            category = NodeCategory.VIEW
        shared = len(self._parents.get(entity.name, ())) > 1
        return GraphNode(entity.name, entity.name, category, entity.name, cached=entity.cached, shared=shared)

    def _fold(self, graph: LineageGraph, lineage: EntityLineage) -> None:
        for column, data_type in lineage.columns:
            self._column(graph, NodeRef(lineage.entity, column), data_type)
        for info in lineage.plan_nodes:
            label = info.node_id.rsplit('/', 1)[-1]
            graph.add_node(GraphNode(info.node_id, label, NodeCategory.PLAN, lineage.entity))
            for column in info.columns:
                self._column(graph, NodeRef(info.node_id, column))
        for edge in lineage.edges:
            self._edge(graph, edge)

    def _column(self, graph: LineageGraph, ref: NodeRef, data_type: Optional[str] = None) -> GraphNode:
        owner = graph.nodes.get(ref.owner)
        if owner is None:
            raise ValueError(f"column {ref.node_id} belongs to unknown node {ref.owner}")
        node = graph.add_node(GraphNode(
            ref.node_id,
            ref.column,
            NodeCategory.COLUMN,
            owner.entity,
            owner=owner.node_id,
            data_type=data_type if self.include_column_types else None,
        ))
        if owner.category == NodeCategory.SOURCE:
            graph.add_edge(GraphEdge(owner.node_id, node.node_id, EdgeKind.MEMBER))
        else:
            graph.add_edge(GraphEdge(node.node_id, owner.node_id, EdgeKind.MEMBER))
        return node

    def _edge(self, graph: LineageGraph, edge: LineageEdge) -> None:
        for ref in (edge.source, edge.target):
            if ref.is_column and ref.node_id not in graph.nodes:
                self._column(graph, ref)
        kind = EdgeKind.CONDITION if edge.condition else EdgeKind.DERIVE
        vias = (edge.via,) if edge.via else ()
        graph.add_edge(GraphEdge(edge.source.node_id, edge.target.node_id, kind, vias=vias))

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from ..errors import CyclicLineageError, LineageError, UnresolvedPlanError
from .column_resolver import ColumnResolver
from .origin import LineageEdge, NodeRef, _norm
from .plan import LeafRelation, PlanNode


@dataclass
class PlanNodeInfo:
    """Intermediate operator that introduced new columns."""
    node_id: str
    kind: str
    columns: List[str] = field(default_factory=list)


@dataclass
class EntityLineage:
    """Everything one entity walk contributes to the graph."""
    entity: str
    columns: List[Tuple[str, Optional[str]]] = field(default_factory=list)  # (name, data_type)
    plan_nodes: List[PlanNodeInfo] = field(default_factory=list)
    edges: List[LineageEdge] = field(default_factory=list)
    references: Set[str] = field(default_factory=set)
    unsupported: List[str] = field(default_factory=list)


@dataclass
class LineageWalker:
    """Walk one entity's plan and emit its column lineage.

    Algorithm:
    1. Depth-first, post-order over the plan; results memoized by node identity
       so a sub-plan shared by several parents is resolved once.
    2. Every output column of every node is represented by a NodeRef:
       - LeafRelation: the referenced entity's column (terminal, the entity is
         expanded by its own walk, never inlined)
       - identity-preserving columns: the child's NodeRef
       - new columns below the root: a column of a plan node ``<entity>/<kind>_<n>``
       - root columns: the entity's own columns
    3. Edges connect input NodeRefs to new NodeRefs; predicate-only columns
       become condition edges into the entity node.
    """

    entity: str
    plan: PlanNode
    lookup: Callable[[str], Optional[PlanNode]]
    resolver: ColumnResolver = field(default_factory=ColumnResolver)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def __post_init__(self):
        self.entity = _norm(self.entity)
        self._memo: Dict[int, List[NodeRef]] = {}
        self._active: Set[int] = set()
        self._counter = 0
        self._result = EntityLineage(self.entity)
        self._edges: Dict[Tuple[NodeRef, NodeRef], LineageEdge] = {}

    # --------------- public API ---------------
    def walk(self) -> EntityLineage:
        try:
            return self._walk()
        except LineageError as e:
            e.with_entity(self.entity)
            raise

    def _walk(self) -> EntityLineage:
        result = self._result
        attrs = self.resolver.output(self.plan)
        result.columns = [(a.name, a.data_type) for a in attrs]
        if self._is_table():
            return result
        refs = self._visit(self.plan, root=True)
        for (name, _), ref in zip(result.columns, refs):
            target = NodeRef(self.entity, name)
            if ref != target:
                self._add_edge(LineageEdge(ref, target))
        result.edges = list(self._edges.values())
        return result

    # --------------- internal ---------------
    def _is_table(self) -> bool:
        return isinstance(self.plan, LeafRelation) and _norm(self.plan.entity) == self.entity

    def _visit(self, node: PlanNode, root: bool = False) -> List[NodeRef]:
        key = id(node)
        if key in self._memo:
            return self._memo[key]
        if key in self._active:
            raise CyclicLineageError(f"plan re-enters {node.kind} while it is being resolved")
        self._active.add(key)
        try:
            if isinstance(node, LeafRelation):
                refs = self._leaf(node)
            else:
                child_refs = [self._visit(c) for c in node.children]
                refs = self._derive(node, child_refs, root)
        finally:
            self._active.discard(key)
        self._memo[key] = refs
        return refs

    def _leaf(self, node: LeafRelation) -> List[NodeRef]:
        name = _norm(node.entity)
        if name == self.entity:
            raise CyclicLineageError("view references itself")
        if self.lookup(name) is None:
            raise UnresolvedPlanError(f"table or view not found: {name}")
        self._check_reentry(name)
        self._result.references.add(name)
        return [NodeRef(name, a.name) for a in self.resolver.output(node)]

    def _check_reentry(self, name: str) -> None:
        """Fail if ``name`` depends, through catalog views, on the entity being walked."""
        seen: Set[str] = set()
        stack = [name]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            plan = self.lookup(current)
            if plan is None:
                continue
            for ref in referenced_entities(plan):
                if ref == self.entity:
                    raise CyclicLineageError(f"view is re-entered through {current}")
                if ref != current:
                    stack.append(ref)

    def _derive(self, node: PlanNode, child_refs: List[List[NodeRef]], root: bool) -> List[NodeRef]:
        if self.resolver.is_opaque(node):
            self.logger.warning(
                f"{self.entity}: unsupported operator '{node.kind}', assuming every output depends on every input"
            )
            self._result.unsupported.append(node.kind)
        attrs = self.resolver.output(node)
        derivations = self.resolver.derivations(node)
        owner: Optional[str] = self.entity if root else None
        refs: List[NodeRef] = []
        for attr, derivation in zip(attrs, derivations):
            inputs = sorted(derivation.inputs)
            if derivation.identity and len(inputs) == 1 and not root:
                refs.append(child_refs[inputs[0].child][inputs[0].index])
                continue
            if owner is None:
                owner = self._allocate(node)
            target = NodeRef(owner, attr.name)
            if owner != self.entity:
                self._plan_info(owner).columns.append(attr.name)
            for pos in inputs:
                self._add_edge(LineageEdge(child_refs[pos.child][pos.index], target, derivation.via))
            refs.append(target)
        for pos in sorted(self.resolver.conditions(node)):
            self._add_edge(LineageEdge(child_refs[pos.child][pos.index], NodeRef(self.entity), condition=True))
        return refs

    def _allocate(self, node: PlanNode) -> str:
        self._counter += 1
        node_id = f"{self.entity}/{node.kind}_{self._counter}"
        self._result.plan_nodes.append(PlanNodeInfo(node_id, node.kind))
        return node_id

    def _plan_info(self, node_id: str) -> PlanNodeInfo:
        for info in self._result.plan_nodes:
            if info.node_id == node_id:
                return info
        raise KeyError(node_id)

    def _add_edge(self, edge: LineageEdge) -> None:
        key = (edge.source, edge.target)
        existing = self._edges.get(key)
        if existing is None:
            self._edges[key] = edge
        elif existing.via is None and edge.via is not None:
            self._edges[key] = replace(existing, via=edge.via)


def referenced_entities(plan: PlanNode) -> Set[str]:
    out: Set[str] = set()
    seen: Set[int] = set()
    stack = [plan]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if isinstance(node, LeafRelation):
            out.add(_norm(node.entity))
        stack.extend(node.children)
    return out


def walk_entity(
    entity: str,
    plan: PlanNode,
    plans: Mapping[str, PlanNode],
    resolver: Optional[ColumnResolver] = None,
    logger: Optional[logging.Logger] = None,
) -> EntityLineage:
    walker = LineageWalker(
        entity,
        plan,
        lookup=lambda name: plans.get(_norm(name)),
        resolver=resolver or ColumnResolver(logger),
        logger=logger or logging.getLogger(__name__),
    )
    return walker.walk()

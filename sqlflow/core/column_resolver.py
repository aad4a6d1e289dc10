"""
Column resolution functionality.

For one plan node this module computes the output schema and, for every output
column, the immediate input columns it is derived from. Name binding follows
the engine's rules: qualifier first, then a case-insensitive name match.
Recursion across the whole tree is the walker's job; the resolver only ever
looks one level down.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple, Union as TypingUnion

from ..errors import AmbiguousColumnError, UnresolvedPlanError
from .origin import Attribute, Derivation, InputRef, _norm
from .plan import (
    Aggregate,
    Alias,
    ColumnRef,
    Expression,
    Filter,
    FunctionCall,
    Join,
    LeafRelation,
    Limit,
    Literal,
    OneRowRelation,
    OuterRef,
    PlanNode,
    Project,
    Sort,
    StarRef,
    SubqueryAlias,
    SubqueryExpression,
    Union,
    output_name,
    strip_alias,
)

_Resolution = Tuple[List[Attribute], List[Derivation], FrozenSet[InputRef]]
_Inputs = List[Tuple[InputRef, Attribute]]


class ColumnResolver:
    """Resolves output columns of individual plan nodes to their input columns.

    Results are cached per node identity for the lifetime of the resolver, so
    one resolver must not outlive the plans of a single analysis run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[int, Tuple[PlanNode, _Resolution]] = {}
        self._handlers: Dict[type, Callable[[PlanNode], _Resolution]] = {
            LeafRelation: self._leaf,
            OneRowRelation: self._one_row,
            Project: self._project,
            Filter: self._filter,
            Aggregate: self._aggregate,
            Join: self._join,
            Union: self._union,
            SubqueryAlias: self._subquery_alias,
            Sort: self._sort,
            Limit: self._limit,
        }

    # --------------- public API ---------------
    def output(self, node: PlanNode) -> List[Attribute]:
        return list(self._resolution(node)[0])

    def derivations(self, node: PlanNode) -> List[Derivation]:
        return list(self._resolution(node)[1])

    def conditions(self, node: PlanNode) -> FrozenSet[InputRef]:
        """Input columns used only by predicates, join keys or ordering."""
        return self._resolution(node)[2]

    def resolve(self, node: PlanNode, column: TypingUnion[int, str]) -> Derivation:
        derivations = self._resolution(node)[1]
        if isinstance(column, int):
            return derivations[column]
        name = _norm(column)
        hits = [i for i, attr in enumerate(self.output(node)) if attr.name == name]
        if not hits:
            raise UnresolvedPlanError(f"{node.kind} has no output column '{name}'")
        if len(hits) > 1:
            raise AmbiguousColumnError(f"output column '{name}' of {node.kind} is ambiguous")
        return derivations[hits[0]]

    def is_opaque(self, node: PlanNode) -> bool:
        return type(node) not in self._handlers

    # --------------- internal ---------------
    def _resolution(self, node: PlanNode) -> _Resolution:
        key = id(node)
        cached = self._cache.get(key)
        if cached is not None:
            return cached[1]
        handler = self._handlers.get(type(node), self._opaque)
        result = handler(node)
        # keep the node alive so its id cannot be recycled while cached
        self._cache[key] = (node, result)
        return result

    def _inputs(self, node: PlanNode) -> _Inputs:
        out: _Inputs = []
        for c, child in enumerate(node.relations):
            for i, attr in enumerate(self.output(child)):
                out.append((InputRef(c, i), attr))
        return out

    def _bind(self, ref: ColumnRef, inputs: _Inputs, node: PlanNode) -> InputRef:
        name = _norm(ref.name)
        qualifier = _norm(ref.qualifier)
        hits = sorted({pos for pos, attr in inputs if attr.name == name and attr.matches(qualifier)})
        label = f"{qualifier}.{name}" if qualifier else name
        if not hits:
            available = ", ".join(_attr_label(a) for _, a in inputs)
            raise UnresolvedPlanError(
                f"cannot resolve column '{label}' in {node.kind}; input columns: [{available}]"
            )
        if len(hits) > 1:
            candidates = ", ".join(_attr_label(a) for pos, a in inputs if pos in hits)
            raise AmbiguousColumnError(
                f"column reference '{label}' in {node.kind} is ambiguous, it could be: [{candidates}]"
            )
        return hits[0]

    def _refs(self, expr: Expression, inputs: _Inputs, node: PlanNode) -> Set[InputRef]:
        if isinstance(expr, ColumnRef):
            return {self._bind(expr, inputs, node)}
        if isinstance(expr, (Literal, OuterRef)):
            return set()
        if isinstance(expr, StarRef):
            return self._star(expr, inputs, node)
        if isinstance(expr, SubqueryExpression):
            return self._subquery(expr, inputs, node)
        out: Set[InputRef] = set()
        for child in expr.children:
            out |= self._refs(child, inputs, node)
        return out

    def _star(self, star: StarRef, inputs: _Inputs, node: PlanNode) -> Set[InputRef]:
        qualifier = _norm(star.qualifier)
        hits = {pos for pos, attr in inputs if attr.matches(qualifier)}
        if qualifier and not hits:
            raise UnresolvedPlanError(f"cannot resolve '{qualifier}.*' in {node.kind}")
        return hits

    def _subquery(self, expr: SubqueryExpression, inputs: _Inputs, node: PlanNode) -> Set[InputRef]:
        """Every output column of the subquery, plus the correlated columns it reads."""
        offset = len(node.relations)
        child = offset + [i for i, p in enumerate(node.subqueries) if p is expr.plan][0]
        out = {InputRef(child, i) for i in range(len(self.output(expr.plan)))}
        for ref in expr.outer:
            name, qualifier = _norm(ref.name), _norm(ref.qualifier)
            # references to queries further out bind at their own level
            if any(attr.name == name and attr.matches(qualifier) for _, attr in inputs):
                out.add(self._bind(ref, inputs, node))
        return out

    def _leaf(self, node: LeafRelation) -> _Resolution:
        qualifier = _norm(node.entity).split('.')[-1]
        types = list(node.column_types) + [None] * (len(node.columns) - len(node.column_types))
        outputs = [Attribute(_norm(c), qualifier, t) for c, t in zip(node.columns, types)]
        derivations = [Derivation(frozenset()) for _ in outputs]
        return outputs, derivations, frozenset()

    def _one_row(self, node: OneRowRelation) -> _Resolution:
        return [], [], frozenset()

    def _project(self, node: Project) -> _Resolution:
        inputs = self._inputs(node)
        outputs: List[Attribute] = []
        derivations: List[Derivation] = []
        for expr in node.expressions:
            refs = frozenset(self._refs(expr, inputs, node))
            core = strip_alias(expr)
            name = output_name(expr)
            if isinstance(core, ColumnRef):
                attr = _lookup(inputs, next(iter(refs)))
                same = attr.name == name
                qualifier = None if isinstance(expr, Alias) else attr.qualifier
                outputs.append(Attribute(name, qualifier, attr.data_type))
                derivations.append(Derivation(refs, None if same else "alias", identity=same))
            else:
                outputs.append(Attribute(name))
                derivations.append(Derivation(refs, _via(core)))
        return outputs, derivations, frozenset()

    def _aggregate(self, node: Aggregate) -> _Resolution:
        inputs = self._inputs(node)
        keys: Set[InputRef] = set()
        used: Set[InputRef] = set()
        for expr in node.grouping:
            refs = self._refs(expr, inputs, node)
            used |= refs
            if isinstance(strip_alias(expr), ColumnRef):
                keys |= refs
        if node.having is not None:
            used |= self._refs(node.having, inputs, node)

        outputs: List[Attribute] = []
        derivations: List[Derivation] = []
        flowing: Set[InputRef] = set()
        for expr in node.aggregates:
            refs = frozenset(self._refs(expr, inputs, node))
            flowing |= refs
            core = strip_alias(expr)
            name = output_name(expr)
            if isinstance(core, ColumnRef) and refs <= keys:
                attr = _lookup(inputs, next(iter(refs)))
                qualifier = None if isinstance(expr, Alias) else attr.qualifier
                outputs.append(Attribute(name, qualifier, attr.data_type))
                derivations.append(Derivation(refs, "group by", identity=attr.name == name))
            else:
                outputs.append(Attribute(name))
                derivations.append(Derivation(refs, _via(core) if not isinstance(core, ColumnRef) else "aggregate"))
        return outputs, derivations, frozenset(used - flowing)

    def _join(self, node: Join) -> _Resolution:
        inputs = self._inputs(node)
        outputs = [attr for _, attr in inputs]
        derivations = [Derivation(frozenset([pos]), identity=True) for pos, _ in inputs]
        conditions = self._refs(node.condition, inputs, node) if node.condition is not None else set()
        return outputs, derivations, frozenset(conditions)

    def _union(self, node: Union) -> _Resolution:
        branches = [self.output(b) for b in node.branches]
        if not branches:
            raise UnresolvedPlanError("union without branches")
        arity = len(branches[0])
        if any(len(b) != arity for b in branches):
            widths = ", ".join(str(len(b)) for b in branches)
            raise UnresolvedPlanError(f"union branches have different column counts: {widths}")
        outputs = [Attribute(a.name, None, a.data_type) for a in branches[0]]
        derivations = [
            Derivation(frozenset(InputRef(b, i) for b in range(len(branches))), "union")
            for i in range(arity)
        ]
        return outputs, derivations, frozenset()

    def _passthrough(self, node: PlanNode, qualifier: Optional[str] = None) -> Tuple[List[Attribute], List[Derivation]]:
        outputs: List[Attribute] = []
        derivations: List[Derivation] = []
        for pos, attr in self._inputs(node):
            if qualifier is not None:
                attr = Attribute(attr.name, qualifier, attr.data_type)
            outputs.append(attr)
            derivations.append(Derivation(frozenset([pos]), identity=True))
        return outputs, derivations

    def _filter(self, node: Filter) -> _Resolution:
        outputs, derivations = self._passthrough(node)
        return outputs, derivations, frozenset(self._refs(node.condition, self._inputs(node), node))

    def _sort(self, node: Sort) -> _Resolution:
        inputs = self._inputs(node)
        outputs, derivations = self._passthrough(node)
        conditions: Set[InputRef] = set()
        for expr in node.order:
            conditions |= self._refs(expr, inputs, node)
        return outputs, derivations, frozenset(conditions)

    def _limit(self, node: Limit) -> _Resolution:
        outputs, derivations = self._passthrough(node)
        return outputs, derivations, frozenset()

    def _subquery_alias(self, node: SubqueryAlias) -> _Resolution:
        outputs, derivations = self._passthrough(node, qualifier=_norm(node.alias))
        return outputs, derivations, frozenset()

    def _opaque(self, node: PlanNode) -> _Resolution:
        # Conservative: every output depends on every input column.
        inputs = self._inputs(node)
        everything = frozenset(pos for pos, _ in inputs)
        names = getattr(node, "output", None)
        if names is not None:
            outputs = [Attribute(_norm(n)) for n in names]
        else:
            outputs = [attr for _, attr in inputs]
        derivations = [Derivation(everything, node.kind) for _ in outputs]
        return outputs, derivations, frozenset()


def _lookup(inputs: _Inputs, pos: InputRef) -> Attribute:
    for p, attr in inputs:
        if p == pos:
            return attr
    raise KeyError(pos)


def _attr_label(attr: Attribute) -> str:
    return f"{attr.qualifier}.{attr.name}" if attr.qualifier else attr.name


def _via(expr: Expression) -> Optional[str]:
    if isinstance(expr, FunctionCall):
        return expr.name.lower()
    if isinstance(expr, Literal):
        return "literal"
    if isinstance(expr, SubqueryExpression):
        return "subquery"
    return type(expr).__name__.lower()

"""
SQL to logical plan translation.

``PlanBuilder`` turns a parsed sqlglot query into the operator tree of
``sqlflow.core.plan``:

1. FROM and JOIN terms become leaf relations wrapped in ``SubqueryAlias`` (the
   alias, or the last segment of the table name, is the column qualifier).
2. WHERE becomes a ``Filter`` above the joined sources.
3. GROUP BY, HAVING, DISTINCT or an aggregate call in the select list produce
   an ``Aggregate``; anything else a ``Project``. Stars are expanded against the
   input schema.
4. ORDER BY becomes a ``Sort`` above the projection when it binds there and
   below it otherwise; LIMIT is applied last.
5. CTEs are planned once per WITH clause and the same plan object is reused by
   every reference, so the walker resolves shared sub-plans a single time.

6. Subqueries used as values (``IN (SELECT ...)``, ``EXISTS``, scalar
   subqueries) are planned on their own and held by ``SubqueryExpression``.
   Columns of an enclosing query they reference become ``OuterRef`` inside the
   subquery and are listed on the expression as its correlated columns.

INTERSECT and EXCEPT have no lineage rule and are emitted as ``Unsupported``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlglot import expressions as exp

from .core.column_resolver import ColumnResolver
from .core.origin import Attribute, _norm
from .core.plan import (
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
    Unsupported,
    strip_alias,
)
from .errors import UnresolvedPlanError

RelationLookup = Callable[[str], Optional[LeafRelation]]
_Scope = Dict[str, PlanNode]
_Frame = Tuple[Tuple[PlanNode, ...], _Scope]


def _arg(node: exp.Expression, key: str):
    # newer sqlglot releases suffix keyword-named args with an underscore
    value = node.args.get(key)
    if value is None:
        value = node.args.get(f"{key}_")
    return value


def table_name(table: exp.Table) -> str:
    parts = []
    if table.args.get('catalog'):
        parts.append(str(table.catalog))
    if table.args.get('db'):
        parts.append(str(table.db))
    this = table.this
    if hasattr(this, 'name'):
        parts.append(str(this.name))
    else:
        parts.append(str(this))
    return _norm(".".join(p for p in parts if p))


def _function_name(e: exp.Expression) -> str:
    if isinstance(e, exp.Anonymous):
        return str(e.name).lower()
    if isinstance(e, exp.Func):
        return e.sql_name().lower()
    return e.key


def _column_refs(expr: Expression) -> List[ColumnRef]:
    if isinstance(expr, ColumnRef):
        return [expr]
    out: List[ColumnRef] = []
    for child in expr.children:
        out.extend(_column_refs(child))
    return out


class PlanBuilder:
    """Builds logical plans for queries over the relations ``lookup`` knows."""

    def __init__(
        self,
        lookup: RelationLookup,
        dialect: str = "spark",
        resolver: Optional[ColumnResolver] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.lookup = lookup
        self.dialect = dialect
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = resolver or ColumnResolver(self.logger)
        # relations in scope for the expression being built, innermost last
        self._frames: List[_Frame] = []
        self._correlated: List[Tuple[int, List[ColumnRef]]] = []

    # --------------- public API ---------------
    def build(self, query: exp.Expression) -> PlanNode:
        return self._query(query, {})

    def output_columns(self, plan: PlanNode) -> List[Attribute]:
        return self.resolver.output(plan)

    # --------------- queries ---------------
    def _query(self, node: exp.Expression, scope: _Scope) -> PlanNode:
        scope = self._with(node, scope)
        if isinstance(node, exp.Subquery):
            plan = self._query(node.this, scope)
        elif isinstance(node, (exp.Intersect, exp.Except)):
            # checked before Union: older sqlglot releases derive both from it
            left = self._query(node.this, scope)
            right = self._query(node.expression, scope)
            names = tuple(a.name for a in self.resolver.output(left))
            plan = Unsupported(type(node).__name__, (left, right), output=names)
        elif isinstance(node, exp.Union):
            parts = self._union_branches(node.this) + self._union_branches(node.expression)
            branches = tuple(self._query(b, scope) for b in parts)
            plan = Union(branches)
        elif isinstance(node, exp.Select):
            return self._select(node, scope)
        else:
            raise UnresolvedPlanError(f"unsupported query expression '{node.key}'")
        return self._limit(node, self._order(node, plan, scope))

    def _union_branches(self, node: exp.Expression) -> List[exp.Expression]:
        # UNION ALL and UNION DISTINCT chains collapse into one n-ary node
        if type(node) is exp.Union and not any(_arg(node, k) for k in ("with", "order", "limit")):
            return self._union_branches(node.this) + self._union_branches(node.expression)
        return [node]

    def _with(self, node: exp.Expression, scope: _Scope) -> _Scope:
        w = _arg(node, "with")
        if not w:
            return scope
        inner = dict(scope)
        for cte in w.expressions:
            name = _norm(str(cte.alias))
            if not name:
                continue
            inner[name] = self._query(cte.this, inner)
        return inner

    def _select(self, select: exp.Select, scope: _Scope) -> PlanNode:
        source = self._from(select, scope)
        with self._frame(scope, source):
            plan = self._select_body(select, source)
            return self._limit(select, self._order(select, plan, scope))

    def _select_body(self, select: exp.Select, source: PlanNode) -> PlanNode:
        where = select.args.get("where")
        if where is not None:
            source = Filter(source, self._expr(where.this))
        projections = self._projections(select, source)

        group = select.args.get("group")
        having = select.args.get("having")
        if group is not None or having is not None or self._has_aggregate(select):
            grouping = tuple(
                self._grouping(g, projections, source) for g in (group.expressions if group is not None else [])
            )
            having_expr = self._expr(having.this) if having is not None else None
            plan: PlanNode = Aggregate(source, grouping, projections, having=having_expr)
        elif select.args.get("distinct"):
            plan = Aggregate(source, projections, projections)
        else:
            plan = Project(source, projections)
        return plan

    def _has_aggregate(self, select: exp.Select) -> bool:
        for proj in select.expressions:
            for agg in proj.find_all(exp.AggFunc):
                if agg.find_ancestor(exp.Window) is not None:
                    continue
                # aggregates of a nested scalar subquery belong to that subquery
                if agg.find_ancestor(exp.Select) is not select:
                    continue
                return True
        return False

    def _grouping(self, g: exp.Expression, projections: Sequence[Expression], source: PlanNode) -> Expression:
        # GROUP BY 1 and GROUP BY <select alias> refer to the select list
        if isinstance(g, exp.Literal) and g.name.isdigit():
            position = int(g.name)
            if 1 <= position <= len(projections):
                return strip_alias(projections[position - 1])
        if isinstance(g, exp.Column) and not isinstance(g.this, exp.Star):
            ref = ColumnRef(_norm(g.name), _norm(g.table) or None)
            if not self._binds(ref, source):
                for proj in projections:
                    if isinstance(proj, Alias) and proj.name == ref.name:
                        return strip_alias(proj)
        return self._expr(g)

    def _order(self, node: exp.Expression, plan: PlanNode, scope: _Scope) -> PlanNode:
        order = node.args.get("order")
        if order is None:
            return plan
        with self._frame(scope, plan, *plan.relations):
            keys = tuple(self._expr(o.this if isinstance(o, exp.Ordered) else o) for o in order.expressions)
        if all(self._binds(ref, plan) for k in keys for ref in _column_refs(k)):
            return Sort(plan, keys)
        child = getattr(plan, "child", None)
        if isinstance(plan, (Project, Aggregate)) and child is not None:
            # sorting on columns the projection drops happens underneath it
            return replace(plan, child=Sort(child, keys))
        return Sort(plan, keys)

    def _limit(self, node: exp.Expression, plan: PlanNode) -> PlanNode:
        limit = node.args.get("limit")
        if limit is None:
            return plan
        value = limit.args.get("expression") or limit.this
        count: Optional[int] = None
        if isinstance(value, exp.Literal) and value.name.isdigit():
            count = int(value.name)
        return Limit(plan, count)

    def _binds(self, ref: ColumnRef, plan: PlanNode) -> bool:
        qualifier = _norm(ref.qualifier)
        return any(a.name == _norm(ref.name) and a.matches(qualifier) for a in self.resolver.output(plan))

    @contextmanager
    def _frame(self, scope: _Scope, *plans: PlanNode):
        self._frames.append((plans, scope))
        try:
            yield
        finally:
            self._frames.pop()

    def _column(self, ref: ColumnRef) -> Expression:
        """``ref`` itself, or an ``OuterRef`` when only an enclosing query can bind it."""
        if len(self._frames) < 2 or any(self._binds(ref, p) for p in self._frames[-1][0]):
            return ref
        for level in range(len(self._frames) - 2, -1, -1):
            if any(self._binds(ref, p) for p in self._frames[level][0]):
                for owner, refs in reversed(self._correlated):
                    if owner == level:
                        refs.append(ref)
                        break
                return OuterRef(ref.name, ref.qualifier)
        return ref

    def _subquery(self, e: exp.Expression) -> SubqueryExpression:
        scope = self._frames[-1][1] if self._frames else {}
        correlated: List[ColumnRef] = []
        self._correlated.append((len(self._frames) - 1, correlated))
        try:
            plan = self._query(e, scope)
        finally:
            self._correlated.pop()
        self.logger.debug(f"Planned subquery expression with {len(correlated)} correlated column(s)")
        return SubqueryExpression(plan, tuple(dict.fromkeys(correlated)))

    # --------------- sources ---------------
    def _from(self, select: exp.Select, scope: _Scope) -> PlanNode:
        from_ = _arg(select, "from")
        if from_ is None:
            return OneRowRelation()
        plan = self._relation(from_.this, scope)
        for join in select.args.get("joins") or []:
            plan = self._join(plan, join, scope)
        return plan

    def _join(self, left: PlanNode, join: exp.Join, scope: _Scope) -> PlanNode:
        right = self._relation(join.this, scope)
        on = join.args.get("on")
        using = join.args.get("using") or []
        join_type = " ".join(p for p in (join.side, join.kind) if p).lower()
        if not join_type:
            join_type = "inner" if on is not None or using else "cross"
        if not using:
            condition = None
            if on is not None:
                with self._frame(scope, left, right):
                    condition = self._expr(on)
            return Join(left, right, condition, join_type)

        keys = [_norm(u.name) for u in using]
        left_attrs = self.resolver.output(left)
        right_attrs = self.resolver.output(right)
        condition = FunctionCall("and", tuple(
            FunctionCall("=", (self._using_ref(k, left_attrs), self._using_ref(k, right_attrs)))
            for k in keys
        ))
        joined = Join(left, right, condition, join_type)
        # USING keeps a single copy of every key column, taken from the left side
        kept = [ColumnRef(a.name, a.qualifier) for a in left_attrs]
        kept += [ColumnRef(a.name, a.qualifier) for a in right_attrs if a.name not in keys]
        return Project(joined, tuple(kept))

    def _using_ref(self, key: str, attrs: Sequence[Attribute]) -> ColumnRef:
        matches = [a for a in attrs if a.name == key]
        qualifier = matches[0].qualifier if len(matches) == 1 else None
        return ColumnRef(key, qualifier)

    def _relation(self, term: exp.Expression, scope: _Scope) -> PlanNode:
        if isinstance(term, exp.Table):
            name = table_name(term)
            alias = _norm(term.alias) or name.split('.')[-1]
            if name in scope:
                return SubqueryAlias(scope[name], alias)
            leaf = self.lookup(name)
            if leaf is None:
                raise UnresolvedPlanError(f"table or view not found: {name}")
            return SubqueryAlias(leaf, alias)
        if isinstance(term, exp.Subquery):
            inner = self._query(term.this, scope)
            alias = _norm(term.alias)
            return SubqueryAlias(inner, alias) if alias else inner
        if isinstance(term, exp.Values):
            return self._values(term)
        raise UnresolvedPlanError(f"unsupported relation '{term.sql(dialect=self.dialect)}'")

    def _values(self, term: exp.Values) -> PlanNode:
        alias = _norm(term.alias) or "values"
        columns = [_norm(c) for c in term.alias_column_names]
        if not columns and term.expressions:
            first = term.expressions[0]
            width = len(first.expressions) if isinstance(first, exp.Tuple) else 1
            columns = [f"col{i + 1}" for i in range(width)]
        self.logger.debug(f"Inline VALUES relation {alias} has no upstream lineage")
        return SubqueryAlias(Unsupported("LocalRelation", (), output=tuple(columns)), alias)

    # --------------- expressions ---------------
    def _projections(self, select: exp.Select, source: PlanNode) -> Tuple[Expression, ...]:
        out: List[Expression] = []
        for proj in select.expressions:
            if isinstance(proj, exp.Star):
                out.extend(ColumnRef(a.name, a.qualifier) for a in self.resolver.output(source))
                continue
            if isinstance(proj, exp.Column) and isinstance(proj.this, exp.Star):
                qualifier = _norm(proj.table)
                attrs = [a for a in self.resolver.output(source) if a.matches(qualifier)]
                if not attrs:
                    raise UnresolvedPlanError(f"cannot resolve '{qualifier}.*'")
                out.extend(ColumnRef(a.name, a.qualifier) for a in attrs)
                continue
            out.append(self._expr(proj))
        return tuple(out)

    def _expr(self, e: exp.Expression) -> Expression:
        if isinstance(e, exp.Paren):
            return self._expr(e.this)
        if isinstance(e, exp.Alias):
            return Alias(self._expr(e.this), _norm(e.alias))
        if isinstance(e, exp.Column):
            if isinstance(e.this, exp.Star):
                return StarRef(_norm(e.table) or None)
            return self._column(ColumnRef(_norm(e.name), _norm(e.table) or None))
        if isinstance(e, exp.Star):
            return StarRef()
        if isinstance(e, exp.Null):
            return Literal(None)
        if isinstance(e, exp.Boolean):
            return Literal("true" if e.this else "false")
        if isinstance(e, exp.Literal):
            return Literal(e.name)
        if isinstance(e, (exp.DataType, exp.Var, exp.Identifier)):
            return Literal(e.sql(dialect=self.dialect).lower())
        if isinstance(e, (exp.Select, exp.Subquery, exp.Union, exp.Intersect, exp.Except)):
            return self._subquery(e)
        args = tuple(self._expr(c) for c in e.iter_expressions())
        return FunctionCall(_function_name(e), args, aggregate=isinstance(e, exp.AggFunc))

"""
Logical plan model.

Resolved relational operator trees as handed over by the query engine. Plan
nodes compare by identity: a sub-plan shared by two parents (a CTE referenced
twice) is one object, and the lineage walker relies on that to resolve it once.
Expressions are plain values.

A node's ``children`` are its ``relations`` (the inputs whose columns its
expressions bind against) followed by the plans of subquery expressions
(``IN (SELECT ...)``, ``EXISTS``, scalar subqueries) found in those
expressions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple


class Expression:
    """Scalar expression attached to a plan node's output or predicate."""

    @property
    def children(self) -> Tuple["Expression", ...]:
        return ()


@dataclass(frozen=True)
class ColumnRef(Expression):
    name: str
    qualifier: Optional[str] = None


@dataclass(frozen=True)
class StarRef(Expression):
    """``*`` or ``q.*`` used as a function argument, as in ``count(*)``."""
    qualifier: Optional[str] = None


@dataclass(frozen=True)
class OuterRef(Expression):
    """Column of an enclosing query referenced from a correlated subquery."""
    name: str
    qualifier: Optional[str] = None


@dataclass(frozen=True)
class Literal(Expression):
    value: Any


@dataclass(frozen=True)
class FunctionCall(Expression):
    name: str
    args: Tuple[Expression, ...] = ()
    aggregate: bool = False

    @property
    def children(self) -> Tuple[Expression, ...]:
        return self.args


@dataclass(frozen=True)
class Alias(Expression):
    child: Expression
    name: str

    @property
    def children(self) -> Tuple[Expression, ...]:
        return (self.child,)


@dataclass(frozen=True)
class SubqueryExpression(Expression):
    """A query used as a value. ``outer`` lists the correlated columns it reads
    from the node that holds it."""
    plan: "PlanNode"
    outer: Tuple[ColumnRef, ...] = ()


def strip_alias(expr: Expression) -> Expression:
    while isinstance(expr, Alias):
        expr = expr.child
    return expr


def expression_sql(expr: Expression) -> str:
    """Render an expression the way the engine names unaliased projections."""
    if isinstance(expr, Alias):
        return expr.name
    if isinstance(expr, (ColumnRef, OuterRef)):
        return expr.name
    if isinstance(expr, StarRef):
        return f"{expr.qualifier}.*" if expr.qualifier else "*"
    if isinstance(expr, Literal):
        return "null" if expr.value is None else str(expr.value)
    if isinstance(expr, FunctionCall):
        return f"{expr.name}({', '.join(expression_sql(a) for a in expr.args)})"
    if isinstance(expr, SubqueryExpression):
        return "scalarsubquery()"
    return type(expr).__name__.lower()


def output_name(expr: Expression) -> str:
    return expression_sql(expr).lower()


def subquery_plans(expressions: Iterable[Optional[Expression]]) -> Tuple["PlanNode", ...]:
    """Plans of the subquery expressions in ``expressions``, first occurrence first."""
    out: List[PlanNode] = []
    stack = [e for e in expressions if e is not None]
    stack.reverse()
    while stack:
        expr = stack.pop()
        if isinstance(expr, SubqueryExpression):
            if not any(p is expr.plan for p in out):
                out.append(expr.plan)
            continue
        stack.extend(reversed(expr.children))
    return tuple(out)


class PlanNode:
    """Base of the operator taxonomy."""

    @property
    def kind(self) -> str:
        return type(self).__name__.lower()

    @property
    def relations(self) -> Tuple["PlanNode", ...]:
        return ()

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return ()

    @property
    def subqueries(self) -> Tuple["PlanNode", ...]:
        return subquery_plans(self.bound_expressions)

    @property
    def children(self) -> Tuple["PlanNode", ...]:
        return self.relations + self.subqueries


@dataclass(frozen=True, eq=False)
class LeafRelation(PlanNode):
    """Reference to a named catalog entity (table or view)."""
    entity: str
    columns: Tuple[str, ...]
    column_types: Tuple[Optional[str], ...] = ()


@dataclass(frozen=True, eq=False)
class OneRowRelation(PlanNode):
    """Input of a SELECT without FROM: one row, no columns."""


@dataclass(frozen=True, eq=False)
class Project(PlanNode):
    child: PlanNode
    expressions: Tuple[Expression, ...]

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return self.expressions


@dataclass(frozen=True, eq=False)
class Filter(PlanNode):
    child: PlanNode
    condition: Expression

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return (self.condition,)


@dataclass(frozen=True, eq=False)
class Aggregate(PlanNode):
    child: PlanNode
    grouping: Tuple[Expression, ...]
    aggregates: Tuple[Expression, ...]
    having: Optional[Expression] = None

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return self.grouping + self.aggregates + (self.having,)


@dataclass(frozen=True, eq=False)
class Join(PlanNode):
    left: PlanNode
    right: PlanNode
    condition: Optional[Expression] = None
    join_type: str = "inner"

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.left, self.right)

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return (self.condition,)


@dataclass(frozen=True, eq=False)
class Union(PlanNode):
    branches: Tuple[PlanNode, ...]

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return self.branches


@dataclass(frozen=True, eq=False)
class SubqueryAlias(PlanNode):
    child: PlanNode
    alias: str

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)


@dataclass(frozen=True, eq=False)
class Sort(PlanNode):
    child: PlanNode
    order: Tuple[Expression, ...]

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)

    @property
    def bound_expressions(self) -> Tuple[Optional[Expression], ...]:
        return self.order


@dataclass(frozen=True, eq=False)
class Limit(PlanNode):
    child: PlanNode
    limit: Optional[int] = None

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return (self.child,)


@dataclass(frozen=True, eq=False)
class Unsupported(PlanNode):
    """Operator the lineage engine has no rule for (window, intersect, generate, ...).

    ``output`` names its columns when known; otherwise the children's columns
    are concatenated.
    """
    name: str
    inputs: Tuple[PlanNode, ...]
    output: Optional[Tuple[str, ...]] = None

    @property
    def kind(self) -> str:
        return self.name.lower()

    @property
    def relations(self) -> Tuple[PlanNode, ...]:
        return self.inputs

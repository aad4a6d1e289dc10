import pytest
import sqlglot

from sqlflow.core.column_resolver import ColumnResolver
from sqlflow.core.origin import InputRef
from sqlflow.core.plan import (
    Aggregate,
    Alias,
    ColumnRef,
    Filter,
    FunctionCall,
    Join,
    LeafRelation,
    Limit,
    OuterRef,
    Project,
    Sort,
    StarRef,
    SubqueryAlias,
    SubqueryExpression,
    Union,
    Unsupported,
)
from sqlflow.errors import UnresolvedPlanError
from sqlflow.planner import PlanBuilder

RELATIONS = {
    "testtable": LeafRelation("testtable", ("key", "value")),
    "other": LeafRelation("other", ("code", "label")),
}


def _plan(sql: str):
    return PlanBuilder(RELATIONS.get).build(sqlglot.parse_one(sql, read="spark"))


def _names(plan):
    return [a.name for a in ColumnResolver().output(plan)]


def test_simple_projection():
    plan = _plan("SELECT key, value AS v FROM testtable")
    assert isinstance(plan, Project)
    assert isinstance(plan.child, SubqueryAlias)
    assert plan.child.alias == "testtable"
    assert _names(plan) == ["key", "v"]


def test_where_becomes_filter():
    plan = _plan("SELECT key FROM testtable WHERE value = 'a'")
    assert isinstance(plan.child, Filter)


def test_group_by_becomes_aggregate():
    plan = _plan("SELECT key, SUM(value) s FROM testtable GROUP BY key")
    assert isinstance(plan, Aggregate)
    assert plan.grouping == (ColumnRef("key"),)
    assert _names(plan) == ["key", "s"]


def test_aggregate_without_group_by():
    plan = _plan("SELECT COUNT(*) AS n FROM testtable")
    assert isinstance(plan, Aggregate)
    assert plan.grouping == ()


def test_window_aggregate_is_not_grouping():
    plan = _plan("SELECT key, SUM(value) OVER (PARTITION BY key) AS total FROM testtable")
    assert isinstance(plan, Project)


def test_group_by_ordinal_refers_to_select_list():
    plan = _plan("SELECT key, COUNT(value) AS n FROM testtable GROUP BY 1")
    assert plan.grouping == (ColumnRef("key"),)


def test_distinct_becomes_aggregate():
    plan = _plan("SELECT DISTINCT key FROM testtable")
    assert isinstance(plan, Aggregate)
    assert _names(plan) == ["key"]


def test_star_is_expanded():
    assert _names(_plan("SELECT * FROM testtable")) == ["key", "value"]
    plan = _plan("SELECT o.* FROM testtable t JOIN other o ON t.key = o.code")
    assert _names(plan) == ["code", "label"]


def test_join_condition_and_type():
    plan = _plan("SELECT t.key, o.label FROM testtable t LEFT JOIN other o ON t.key = o.code")
    join = plan.child
    assert isinstance(join, Join)
    assert join.join_type == "left"
    assert join.condition is not None


def test_comma_join_is_cross():
    plan = _plan("SELECT t.key, o.label FROM testtable t, other o")
    assert plan.child.join_type == "cross"


def test_order_by_dropped_column_sorts_below_projection():
    plan = _plan("SELECT key FROM testtable ORDER BY value")
    assert isinstance(plan, Project)
    assert isinstance(plan.child, Sort)


def test_order_by_output_column_sorts_above_projection():
    plan = _plan("SELECT key AS k FROM testtable ORDER BY k LIMIT 10")
    assert isinstance(plan, Limit)
    assert plan.limit == 10
    assert isinstance(plan.child, Sort)


def test_union_chain_is_flattened():
    plan = _plan(
        "SELECT key FROM testtable UNION ALL SELECT code FROM other UNION ALL SELECT key FROM testtable"
    )
    assert isinstance(plan, Union)
    assert len(plan.branches) == 3
    assert _names(plan) == ["key"]


def test_intersect_is_unsupported():
    plan = _plan("SELECT key FROM testtable INTERSECT SELECT code FROM other")
    assert isinstance(plan, Unsupported)
    assert plan.kind == "intersect"
    assert _names(plan) == ["key"]


def test_cte_plan_is_shared():
    plan = _plan(
        "WITH base AS (SELECT key FROM testtable) "
        "SELECT a.key FROM base a JOIN base b ON a.key = b.key"
    )
    join = plan.child
    assert join.left.child is join.right.child


def test_unknown_table_is_unresolved():
    with pytest.raises(UnresolvedPlanError) as excinfo:
        _plan("SELECT x FROM nowhere")
    assert "nowhere" in excinfo.value.message


def test_using_join_keeps_one_key_column():
    plan = _plan("SELECT * FROM testtable a JOIN testtable b USING (key)")
    assert _names(plan) == ["key", "value", "value"]


def test_count_star_reads_every_input_column():
    plan = _plan("SELECT COUNT(*) AS n FROM testtable")
    assert plan.aggregates == (Alias(FunctionCall("count", (StarRef(),), aggregate=True), "n"),)
    (n,) = ColumnResolver().derivations(plan)
    assert n.inputs == {InputRef(0, 0), InputRef(0, 1)}


def test_in_subquery_becomes_a_child_of_the_filter():
    plan = _plan("SELECT key FROM testtable WHERE key IN (SELECT code FROM other)")
    where = plan.child
    assert isinstance(where, Filter)
    (subquery,) = where.subqueries
    assert _names(subquery) == ["code"]
    assert where.children == (where.child, subquery)


def test_scalar_subquery_in_select_list():
    plan = _plan("SELECT key, (SELECT MAX(code) FROM other) AS top FROM testtable")
    assert isinstance(plan, Project)
    top = plan.expressions[1]
    assert isinstance(top.child, SubqueryExpression)
    assert isinstance(top.child.plan, Aggregate)
    assert _names(plan) == ["key", "top"]


def test_correlated_subquery_marks_outer_columns():
    plan = _plan(
        "SELECT key FROM testtable t WHERE EXISTS (SELECT o.code FROM other o WHERE o.code = t.key)"
    )
    condition = plan.child.condition
    assert condition.name == "exists"
    (subquery,) = condition.args
    assert subquery.outer == (ColumnRef("key", "t"),)
    inner = subquery.plan.child
    assert isinstance(inner, Filter)
    assert OuterRef("key", "t") in inner.condition.args

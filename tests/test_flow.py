import pytest

from sqlflow.catalog import Entity, InMemoryCatalog
from sqlflow.config import FlowConfig
from sqlflow.core.plan import (
    Alias,
    ColumnRef,
    FunctionCall,
    Join,
    LeafRelation,
    Project,
    SubqueryAlias,
    Unsupported,
)
from sqlflow.errors import CatalogError, UnresolvedPlanError
from sqlflow.flow import analyze, generate_lineage

TABLE = LeafRelation("testtable", ("key", "value"))


def _view_over(name, columns=("key",)):
    return Project(SubqueryAlias(LeafRelation(name, columns), name), tuple(ColumnRef(c) for c in columns))


def _catalog(*entities):
    return InMemoryCatalog((Entity("testtable", TABLE),) + tuple(entities))


def test_empty_catalog_generates_nothing():
    assert generate_lineage(InMemoryCatalog()) is None
    result = analyze(InMemoryCatalog())
    assert len(result.graph) == 0
    assert result.diagnostics == []


def test_generate_lineage_returns_dot_text():
    text = generate_lineage(_catalog(Entity("v", _view_over("testtable"))), contracted=True)
    assert text.startswith("// ")
    assert "testtable -> v" in text


def test_ambiguous_view_is_reported_and_others_survive():
    bad = Project(Join(SubqueryAlias(TABLE, "a"), SubqueryAlias(TABLE, "b")), (ColumnRef("key"),))
    result = analyze(_catalog(Entity("bad", bad), Entity("good", _view_over("testtable"))))
    assert [(d.entity, d.kind, d.fatal) for d in result.diagnostics] == [
        ("bad", "AmbiguousColumnError", True),
    ]
    assert result.failed_entities == ["bad"]
    assert "bad" in result.graph.nodes
    assert result.graph.predecessors("bad") == []
    assert ("testtable.key", "good.key") in result.graph.edges


def test_cyclic_views_are_reported():
    result = analyze(_catalog(Entity("a", _view_over("b")), Entity("b", _view_over("a"))))
    assert result.failed_entities == ["a", "b"]
    assert {d.kind for d in result.diagnostics} == {"CyclicLineageError"}


def test_unresolved_reference_aborts_the_run():
    with pytest.raises(UnresolvedPlanError) as excinfo:
        analyze(_catalog(Entity("v", _view_over("missing"))))
    assert excinfo.value.entity == "v"


def test_unsupported_operator_is_a_warning():
    window = Unsupported("Window", (SubqueryAlias(TABLE, "testtable"),), output=("key", "rn"))
    result = analyze(_catalog(Entity("w", window)))
    (diagnostic,) = result.diagnostics
    assert diagnostic.kind == "UnsupportedOperatorError"
    assert not diagnostic.fatal
    assert result.failed_entities == []
    assert result.graph.edges[("testtable.key", "w.rn")].vias == ("window",)


def test_unreadable_catalog_aborts():
    class _Broken:
        def list_entities(self):
            raise OSError("gone")

    with pytest.raises(CatalogError):
        analyze(_Broken())


def test_views_over_global_temp_views_are_skipped():
    result = analyze(_catalog(
        Entity("global_temp.g", _view_over("testtable")),
        Entity("v", _view_over("global_temp.g")),
    ))
    assert result.skipped == ["global_temp.g", "v"]
    assert set(result.graph.nodes) == {"testtable", "testtable.key", "testtable.value"}


def test_column_types_are_optional():
    typed = LeafRelation("typed", ("key",), ("int",))
    catalog = InMemoryCatalog((Entity("typed", typed),))
    plain = analyze(catalog).graph
    annotated = analyze(catalog, FlowConfig(include_column_types=True)).graph
    assert plain.nodes["typed.key"].data_type is None
    assert annotated.nodes["typed.key"].data_type == "int"


def test_alias_rename_keeps_edge_label():
    renamed = Project(SubqueryAlias(TABLE, "t"), (Alias(ColumnRef("value"), "v"),))
    result = analyze(_catalog(Entity("r", renamed)))
    assert result.graph.edges[("testtable.value", "r.v")].vias == ("alias",)


def test_function_over_several_columns():
    concat = Project(
        SubqueryAlias(TABLE, "t"),
        (Alias(FunctionCall("concat", (ColumnRef("key"), ColumnRef("value"))), "kv"),),
    )
    result = analyze(_catalog(Entity("c", concat)))
    assert result.graph.predecessors("c.kv") == ["testtable.key", "testtable.value"]

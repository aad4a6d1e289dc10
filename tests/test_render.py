from sqlflow.catalog import Entity, InMemoryCatalog
from sqlflow.config import FlowConfig
from sqlflow.core.plan import ColumnRef, LeafRelation, Project, SubqueryAlias
from sqlflow.flow import analyze
from sqlflow.render import DEFAULT_HEADER, GraphRenderer, render_graph

TABLE = LeafRelation("testtable", ("key", "value"), ("int", "string"))


def _view_over(name, columns=("key",)):
    return Project(SubqueryAlias(LeafRelation(name, columns), name), tuple(ColumnRef(c) for c in columns))


ENTITIES = (
    Entity("testtable", TABLE),
    Entity("testview1", _view_over("testtable"), cached=True),
    Entity("testview2", _view_over("testview1")),
    Entity("testview3", _view_over("testview1")),
)


def _render(entities=ENTITIES, **config):
    return analyze(InMemoryCatalog(entities), FlowConfig(**config)).render()


def test_default_header_comment():
    text = _render()
    assert text.startswith(f"// {DEFAULT_HEADER}\n")
    assert "digraph sqlflow {" in text


def test_custom_header():
    graph = analyze(InMemoryCatalog(ENTITIES)).graph
    text = render_graph(graph, header="Automatically generated by tests")
    assert text.splitlines()[0] == "// Automatically generated by tests"


def test_output_is_deterministic():
    assert _render() == _render()
    assert _render(tuple(reversed(ENTITIES))) == _render()


def test_contracted_output_has_entity_edges():
    text = _render(contracted=True)
    assert "testtable -> testview1" in text
    assert "testview1 -> testview2" in text
    assert "testtable.key" not in text


def test_column_types_in_labels():
    text = _render(include_column_types=True)
    assert 'label="key: int"' in text
    assert 'label="key: int"' not in _render()


def test_category_styles():
    text = _render(contracted=True)
    assert "box3d" in text  # cached testview1
    assert "#E3F2FD" in text  # source testtable


def test_shared_view_is_highlighted():
    entities = (
        Entity("testtable", TABLE),
        Entity("base", _view_over("testtable")),
        Entity("left", _view_over("base")),
        Entity("right", _view_over("base")),
    )
    text = _render(entities, contracted=True)
    assert "peripheries=2" in text
    assert "#D32F2F" in text


def test_graph_attributes_can_be_overridden():
    graph = analyze(InMemoryCatalog(ENTITIES)).graph
    text = GraphRenderer({"rankdir": "TB"}).render(graph)
    assert "rankdir=TB" in text

import csv

import graphviz

from sqlflow.catalog import Entity, InMemoryCatalog
from sqlflow.core.plan import ColumnRef, LeafRelation, Project, SubqueryAlias
from sqlflow.export import edge_records, export_graph, write_edges_csv
from sqlflow.flow import analyze
from sqlflow.models import CSV_HEADER

TABLE = LeafRelation("testtable", ("key",))
VIEW = Project(SubqueryAlias(TABLE, "testtable"), (ColumnRef("key"),))
TEXT = "// header\ndigraph sqlflow {\n}\n"


def _graph():
    return analyze(InMemoryCatalog((Entity("testtable", TABLE), Entity("v", VIEW)))).graph


def test_export_writes_text_file(tmp_path):
    result = export_graph(TEXT, str(tmp_path / "out" / "scenario"))
    assert result.text_path == str(tmp_path / "out" / "scenario.gv")
    assert result.image_path is None
    assert (tmp_path / "out" / "scenario.gv").read_text(encoding="utf-8") == TEXT


def test_gv_suffix_is_not_doubled(tmp_path):
    result = export_graph(TEXT, str(tmp_path / "scenario.gv"))
    assert result.text_path.endswith("scenario.gv")
    assert not result.text_path.endswith(".gv.gv")


def test_missing_dot_binary_keeps_text(tmp_path, monkeypatch):
    def _missing(*args, **kwargs):
        raise graphviz.ExecutableNotFound(["dot"])

    monkeypatch.setattr(graphviz, "render", _missing)
    result = export_graph(TEXT, str(tmp_path / "scenario"), image_format="png")
    assert result.image_path is None
    assert (tmp_path / "scenario.gv").exists()


def test_image_is_rendered_next_to_text(tmp_path, monkeypatch):
    calls = []

    def _render(engine, format, filepath, outfile):
        calls.append((engine, format, filepath, outfile))
        return outfile

    monkeypatch.setattr(graphviz, "render", _render)
    result = export_graph(TEXT, str(tmp_path / "scenario"), image_format="svg")
    assert result.image_path == str(tmp_path / "scenario.svg")
    assert calls == [("dot", "svg", str(tmp_path / "scenario.gv"), str(tmp_path / "scenario.svg"))]


def test_edge_records_carry_entities():
    records = {(r.source, r.target): r for r in edge_records(_graph())}
    record = records[("testtable.key", "v.key")]
    assert (record.source_entity, record.target_entity, record.kind) == ("testtable", "v", "derive")
    assert records[("testtable", "testtable.key")].kind == "member"


def test_write_edges_csv(tmp_path):
    path = tmp_path / "edges.csv"
    graph = _graph()
    count = write_edges_csv(graph, str(path))
    with open(path, encoding="utf-8", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_HEADER
    assert count == len(rows) - 1 == len(graph.edges)

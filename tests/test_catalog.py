import pytest

from sqlflow.catalog import CatalogScanner, Entity, InMemoryCatalog
from sqlflow.core.plan import ColumnRef, LeafRelation, Project, SubqueryAlias
from sqlflow.errors import CatalogError

TABLE = LeafRelation("TestTable", ("key", "value"))


def _view_over(name, alias=None):
    leaf = LeafRelation(name, ("key",))
    return Project(SubqueryAlias(leaf, alias or name.split(".")[-1]), (ColumnRef("key"),))


class _BrokenCatalog:
    def list_entities(self):
        raise RuntimeError("metastore unavailable")


def test_entity_names_are_normalized():
    entity = Entity("TestTable", TABLE)
    assert entity.name == "testtable"
    assert entity.is_table
    assert not Entity("v", _view_over("testtable")).is_table


def test_scan_orders_entities_by_name():
    catalog = InMemoryCatalog((
        Entity("zview", _view_over("testtable")),
        Entity("testtable", TABLE),
        Entity("aview", _view_over("testtable")),
    ))
    result = CatalogScanner(catalog).scan()
    assert [e.name for e in result.entities] == ["aview", "testtable", "zview"]
    assert result.skipped == []
    assert set(result.plans()) == {"aview", "testtable", "zview"}


def test_tuple_entries_are_accepted():
    class _Catalog:
        def list_entities(self):
            return [("testtable", TABLE, False), ("v", _view_over("testtable"), True)]

    result = CatalogScanner(_Catalog()).scan()
    assert result.get("V").cached
    assert not result.get("testtable").cached


def test_duplicate_names_are_rejected():
    catalog = InMemoryCatalog((Entity("testtable", TABLE), Entity("TESTTABLE", TABLE)))
    with pytest.raises(CatalogError):
        CatalogScanner(catalog).scan()


def test_unreadable_catalog_raises_catalog_error():
    with pytest.raises(CatalogError) as excinfo:
        CatalogScanner(_BrokenCatalog()).scan()
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_malformed_entry_raises_catalog_error():
    class _Catalog:
        def list_entities(self):
            return [("only-a-name",)]

    with pytest.raises(CatalogError):
        CatalogScanner(_Catalog()).scan()


def test_global_temp_views_and_their_dependents_are_skipped():
    catalog = InMemoryCatalog((
        Entity("testtable", TABLE),
        Entity("global_temp.g", _view_over("testtable")),
        Entity("over_g", _view_over("global_temp.g")),
        Entity("over_over_g", _view_over("over_g")),
        Entity("plain", _view_over("testtable")),
    ))
    result = CatalogScanner(catalog).scan()
    assert result.skipped == ["global_temp.g", "over_g", "over_over_g"]
    assert [e.name for e in result.entities] == ["plain", "testtable"]

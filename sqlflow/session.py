"""
SQL session.

Executes DDL statements against an in-memory catalog of tables, views and
cached plans. Queries are resolved into plans when they are registered, so a
view always sees the catalog as it was at its CREATE statement.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Tuple

import sqlglot
from sqlglot import expressions as exp

from .catalog import GLOBAL_TEMP_DATABASE, Entity, InMemoryCatalog
from .config import FlowConfig
from .core.column_resolver import ColumnResolver
from .core.origin import _norm
from .core.plan import Alias, ColumnRef, LeafRelation, PlanNode, Project
from .errors import CatalogError, LineageError, UnresolvedPlanError
from .flow import LineageResult, analyze
from .logger import get_logger
from .planner import PlanBuilder, table_name

DEFAULT_DATABASE = "default"


class SQLSession:
    """Spark-style session that only keeps catalog metadata.

    Supported statements: CREATE TABLE (with a column list or AS SELECT),
    CREATE [OR REPLACE] [GLOBAL] [TEMPORARY] VIEW, CACHE [LAZY] TABLE
    [AS SELECT], UNCACHE TABLE and DROP TABLE/VIEW. Anything else is logged and
    ignored.
    """

    def __init__(self, dialect: str = "spark", logger: Optional[logging.Logger] = None):
        self.dialect = dialect
        self.logger = logger or get_logger(level=os.getenv("LOG_LEVEL", "INFO"))
        self._entities: Dict[str, Entity] = {}
        self._resolver = ColumnResolver(self.logger)

    # --------------- public API ---------------
    def sql(self, text: str) -> List[str]:
        """Execute every statement in ``text``; returns the affected entity names."""
        affected: List[str] = []
        for stmt in sqlglot.parse(text, read=self.dialect):
            if stmt is None:
                continue
            name = self._execute(stmt)
            if name:
                affected.append(name)
        return affected

    def execute_file(self, path: str) -> List[str]:
        with open(path, 'r', encoding='utf-8') as f:
            return self.sql(f.read())

    def catalog(self) -> InMemoryCatalog:
        return InMemoryCatalog(tuple(self._entities.values()))

    def entity(self, name: str) -> Optional[Entity]:
        return self._find(name)

    def lineage(self, config: Optional[FlowConfig] = None) -> LineageResult:
        return analyze(self.catalog(), config, logger=self.logger)

    # --------------- statements ---------------
    def _execute(self, stmt: exp.Expression) -> Optional[str]:
        # plans of replaced or dropped entities must not stay cached
        self._resolver = ColumnResolver(self.logger)
        try:
            if isinstance(stmt, exp.Create):
                return self._create(stmt)
            if isinstance(stmt, exp.Cache):
                return self._cache(stmt)
            if isinstance(stmt, exp.Uncache):
                return self._uncache(stmt)
            if isinstance(stmt, exp.Drop):
                return self._drop(stmt)
        except LineageError as e:
            self.logger.error(f"Statement failed: {e}")
            raise
        self.logger.debug(f"Ignoring {stmt.key} statement")
        return None

    def _create(self, stmt: exp.Create) -> Optional[str]:
        kind = str(stmt.args.get("kind") or "").upper()
        if kind not in ("TABLE", "VIEW"):
            self.logger.debug(f"Ignoring CREATE {kind}")
            return None
        target = stmt.this
        columns: List[Tuple[str, Optional[str]]] = []
        if isinstance(target, exp.Schema):
            for c in target.expressions:
                dtype = c.args.get("kind") if isinstance(c, exp.ColumnDef) else None
                columns.append((_norm(c.name), dtype.sql(dialect=self.dialect).lower() if dtype else None))
            target = target.this
        name = self._canonical(table_name(target))
        if kind == "VIEW" and self._is_global_temporary(stmt):
            name = f"{GLOBAL_TEMP_DATABASE}.{name.split('.')[-1]}"

        if self._find(name) is not None and not stmt.args.get("replace"):
            if stmt.args.get("exists"):
                self.logger.debug(f"{name} already exists, skipping")
                return None
            raise CatalogError(f"table or view already exists: {name}", entity=name)

        query = stmt.args.get("expression")
        if kind == "TABLE":
            if query is not None:
                # CREATE TABLE AS SELECT materializes data; the new table is a source
                attrs = self._builder().output_columns(self._plan(query, name))
                columns = [(a.name, a.data_type) for a in attrs]
            plan: PlanNode = LeafRelation(name, tuple(c for c, _ in columns), tuple(t for _, t in columns))
            self._register(Entity(name, plan))
            return name

        if query is None:
            self.logger.warning(f"View {name} has no query, skipping")
            return None
        plan = self._plan(query, name)
        if columns:
            plan = self._rename(plan, [c for c, _ in columns], name)
        self._register(Entity(name, plan))
        return name

    def _cache(self, stmt: exp.Cache) -> str:
        name = self._canonical(table_name(stmt.this))
        query = stmt.args.get("expression")
        if query is not None:
            # CACHE TABLE t AS SELECT registers a cached temporary view
            self._register(Entity(name, self._plan(query, name), cached=True))
            return name
        entity = self._require(name)
        self._register(Entity(entity.name, entity.plan, cached=True))
        return entity.name

    def _uncache(self, stmt: exp.Uncache) -> Optional[str]:
        name = table_name(stmt.this)
        entity = self._find(name)
        if entity is None:
            if stmt.args.get("exists"):
                return None
            raise UnresolvedPlanError(f"table or view not found: {name}", entity=name)
        self._register(Entity(entity.name, entity.plan, cached=False))
        return entity.name

    def _drop(self, stmt: exp.Drop) -> Optional[str]:
        kind = str(stmt.args.get("kind") or "").upper()
        if kind not in ("TABLE", "VIEW"):
            self.logger.debug(f"Ignoring DROP {kind}")
            return None
        dropped: Optional[str] = None
        for target in _drop_targets(stmt):
            name = table_name(target)
            entity = self._find(name)
            if entity is None:
                if stmt.args.get("exists"):
                    continue
                raise UnresolvedPlanError(f"table or view not found: {name}", entity=name)
            del self._entities[entity.name]
            self.logger.debug(f"Dropped {entity.name}")
            dropped = entity.name
        return dropped

    # --------------- helpers ---------------
    def _builder(self) -> PlanBuilder:
        return PlanBuilder(self._relation, dialect=self.dialect, resolver=self._resolver, logger=self.logger)

    def _plan(self, query: exp.Expression, name: str) -> PlanNode:
        try:
            return self._builder().build(query)
        except LineageError as e:
            e.with_entity(name)
            raise

    def _rename(self, plan: PlanNode, names: List[str], entity: str) -> PlanNode:
        attrs = self._resolver.output(plan)
        if len(attrs) != len(names):
            raise UnresolvedPlanError(
                f"view column list has {len(names)} names but the query returns {len(attrs)} columns",
                entity=entity,
            )
        return Project(plan, tuple(Alias(ColumnRef(a.name, a.qualifier), n) for a, n in zip(attrs, names)))

    def _relation(self, name: str) -> Optional[LeafRelation]:
        entity = self._find(name)
        if entity is None:
            return None
        if entity.is_table:
            return entity.plan
        attrs = self._resolver.output(entity.plan)
        return LeafRelation(entity.name, tuple(a.name for a in attrs), tuple(a.data_type for a in attrs))

    def _find(self, name: str) -> Optional[Entity]:
        return self._entities.get(self._canonical(name))

    def _canonical(self, name: str) -> str:
        n = _norm(name)
        database, _, rest = n.partition('.')
        if database == DEFAULT_DATABASE and rest:
            return rest
        return n

    def _require(self, name: str) -> Entity:
        entity = self._find(name)
        if entity is None:
            raise UnresolvedPlanError(f"table or view not found: {name}", entity=_norm(name))
        return entity

    def _register(self, entity: Entity) -> None:
        self._entities[entity.name] = entity
        kind = "table" if entity.is_table else "view"
        self.logger.debug(f"Registered {kind} {entity.name}{' (cached)' if entity.cached else ''}")

    def _is_global_temporary(self, create: exp.Create) -> bool:
        props = create.args.get("properties")
        if props is not None and any(p.key == "globalproperty" for p in props.expressions):
            return True
        return "GLOBAL TEMP" in create.sql(dialect=self.dialect).upper()


def _drop_targets(stmt: exp.Drop) -> List[exp.Table]:
    # older sqlglot releases keep a single target in ``this``, newer ones a list in ``tables``
    if stmt.args.get("this") is not None:
        return [stmt.args["this"]]
    targets = stmt.args.get("tables") or stmt.args.get("expressions") or []
    return [t for t in targets if isinstance(t, exp.Table)]

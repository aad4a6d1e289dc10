"""
Catalog snapshot and scanning.

The engine's live catalog is never handed to the lineage core. A run reads
``list_entities()`` exactly once and works on that snapshot; entities created
or dropped by other sessions afterwards are not reflected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from .core.origin import _norm
from .core.plan import LeafRelation, PlanNode
from .core.walker import referenced_entities
from .errors import CatalogError

GLOBAL_TEMP_DATABASE = "global_temp"


@dataclass(frozen=True)
class Entity:
    """A named table, view or cached plan."""
    name: str
    plan: PlanNode
    cached: bool = False

    def __post_init__(self):
        object.__setattr__(self, "name", _norm(self.name))

    @property
    def is_table(self) -> bool:
        return isinstance(self.plan, LeafRelation) and _norm(self.plan.entity) == self.name

    @property
    def is_view(self) -> bool:
        return not self.is_table

    @property
    def is_global_temp(self) -> bool:
        return self.name.split('.')[0] == GLOBAL_TEMP_DATABASE and '.' in self.name


EntityEntry = Union[Entity, Tuple[str, PlanNode, bool]]


class Catalog(Protocol):
    def list_entities(self) -> Iterable[EntityEntry]:
        ...


@dataclass(frozen=True)
class InMemoryCatalog:
    """Immutable catalog snapshot."""
    entities: Tuple[Entity, ...] = ()

    def list_entities(self) -> Iterable[Entity]:
        return self.entities


@dataclass
class ScanResult:
    entities: List[Entity] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def plans(self) -> Dict[str, PlanNode]:
        return {e.name: e.plan for e in self.entities}

    def get(self, name: str) -> Optional[Entity]:
        n = _norm(name)
        for e in self.entities:
            if e.name == n:
                return e
        return None


class CatalogScanner:
    """Enumerates registered entities in a deterministic order.

    Global temporary views, and views defined on top of them, are not analyzed;
    their names are reported in ``ScanResult.skipped``.
    """

    def __init__(self, catalog: Catalog, logger: Optional[logging.Logger] = None):
        self.catalog = catalog
        self.logger = logger or logging.getLogger(__name__)

    def scan(self) -> ScanResult:
        snapshot = self._snapshot()
        by_name: Dict[str, Entity] = {}
        for entity in snapshot:
            if entity.name in by_name:
                raise CatalogError(f"duplicate entity name in catalog: {entity.name}")
            by_name[entity.name] = entity

        skipped = {name for name, e in by_name.items() if e.is_global_temp}
        # views over skipped views are skipped too, until nothing changes
        changed = True
        while changed:
            changed = False
            for name, e in by_name.items():
                if name in skipped or e.is_table:
                    continue
                if referenced_entities(e.plan) & skipped:
                    skipped.add(name)
                    changed = True
        for name in sorted(skipped):
            self.logger.warning(f"Skipping {name}: global temporary views are not analyzed")

        entities = [by_name[n] for n in sorted(by_name) if n not in skipped]
        self.logger.debug(f"Catalog snapshot: {len(entities)} entities, {len(skipped)} skipped")
        return ScanResult(entities=entities, skipped=sorted(skipped))

    def _snapshot(self) -> Sequence[Entity]:
        try:
            raw = tuple(self.catalog.list_entities())
        except Exception as e:
            raise CatalogError(f"cannot read catalog: {e}") from e
        return [self._coerce(entry) for entry in raw]

    def _coerce(self, entry: EntityEntry) -> Entity:
        if isinstance(entry, Entity):
            return entry
        try:
            name, plan, cached = entry
        except (TypeError, ValueError) as e:
            raise CatalogError(f"malformed catalog entry: {entry!r}") from e
        return Entity(name, plan, bool(cached))

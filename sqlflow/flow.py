"""
Lineage runs over a catalog snapshot.

``analyze`` returns the graph together with per-entity diagnostics;
``generate_lineage`` is the text-only entry point. Every run owns its snapshot,
resolver caches and builder, so concurrent runs share no mutable state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from .catalog import Catalog, CatalogScanner
from .config import FlowConfig
from .core.column_resolver import ColumnResolver
from .core.walker import LineageWalker
from .errors import AmbiguousColumnError, CyclicLineageError, UnsupportedOperatorError
from .graph import GraphBuilder, LineageGraph
from .models import Diagnostic
from .render import render_graph


@dataclass
class LineageResult:
    graph: LineageGraph
    diagnostics: List[Diagnostic] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def failed_entities(self) -> List[str]:
        return sorted({d.entity for d in self.diagnostics if d.fatal})

    def render(self, header: Optional[str] = None) -> str:
        return render_graph(self.graph, header=header)


def analyze(
    catalog: Catalog,
    config: Optional[FlowConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> LineageResult:
    """Derive the lineage graph of every entity in ``catalog``.

    UnresolvedPlanError and CatalogError abort the run. Ambiguous and cyclic
    definitions only drop the offending entity's lineage and are reported as
    diagnostics; unsupported operators are reported as warnings.
    """
    config = config or FlowConfig()
    logger = logger or logging.getLogger(__name__)
    scan = CatalogScanner(catalog, logger=logger).scan()
    plans = scan.plans()
    resolver = ColumnResolver(logger)
    builder = GraphBuilder(
        contracted=config.contracted,
        include_column_types=config.include_column_types,
        logger=logger,
    )
    diagnostics: List[Diagnostic] = []

    for entity in scan.entities:
        walker = LineageWalker(entity.name, entity.plan, lookup=plans.get, resolver=resolver, logger=logger)
        try:
            lineage = walker.walk()
        except (AmbiguousColumnError, CyclicLineageError) as e:
            logger.error(f"Lineage of {entity.name} skipped: {e.message}")
            diagnostics.append(Diagnostic(entity.name, type(e).__name__, e.message))
            builder.add(entity)
            continue
        for kind in lineage.unsupported:
            diagnostics.append(Diagnostic(
                entity.name,
                UnsupportedOperatorError.__name__,
                f"operator '{kind}' treated as an opaque pass-through",
                fatal=False,
            ))
        builder.add(entity, lineage)

    graph = builder.build()
    logger.info(
        f"Analyzed {len(scan.entities)} entities: {len(graph.nodes)} nodes, {len(graph.edges)} edges, "
        f"{len(diagnostics)} diagnostics"
    )
    return LineageResult(graph=graph, diagnostics=diagnostics, skipped=scan.skipped)


def generate_lineage(
    catalog: Catalog,
    contracted: bool = False,
    include_column_types: bool = False,
    header: Optional[str] = None,
    config: Optional[FlowConfig] = None,
) -> Optional[str]:
    """DOT text of the catalog's lineage, or None when there is nothing to draw."""
    config = replace(config or FlowConfig(), contracted=contracted, include_column_types=include_column_types)
    result = analyze(catalog, config)
    if not result.graph.nodes:
        return None
    return result.render(header=header)

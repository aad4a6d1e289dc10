from .catalog import Catalog, CatalogScanner, Entity, InMemoryCatalog
from .config import FlowConfig
from .errors import (
    AmbiguousColumnError,
    CatalogError,
    CyclicLineageError,
    LineageError,
    UnresolvedPlanError,
    UnsupportedOperatorError,
)
from .flow import LineageResult, analyze, generate_lineage
from .graph import LineageGraph
from .session import SQLSession

__version__ = "0.1.0"

__all__ = [
    "AmbiguousColumnError",
    "Catalog",
    "CatalogError",
    "CatalogScanner",
    "CyclicLineageError",
    "Entity",
    "FlowConfig",
    "InMemoryCatalog",
    "LineageError",
    "LineageGraph",
    "LineageResult",
    "SQLSession",
    "UnresolvedPlanError",
    "UnsupportedOperatorError",
    "analyze",
    "generate_lineage",
]

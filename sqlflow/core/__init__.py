from .column_resolver import ColumnResolver
from .walker import EntityLineage, LineageWalker, walk_entity

__all__ = ["ColumnResolver", "EntityLineage", "LineageWalker", "walk_entity"]

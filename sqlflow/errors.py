from __future__ import annotations

from typing import Optional


class LineageError(Exception):
    """Base class for lineage analysis failures, optionally tied to one entity."""

    def __init__(self, message: str, entity: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity

    def with_entity(self, entity: str) -> "LineageError":
        if self.entity is None:
            self.entity = entity
        return self

    def __str__(self) -> str:
        if self.entity:
            return f"{self.entity}: {self.message}"
        return self.message


class CatalogError(LineageError):
    """The catalog could not be read; the whole run is aborted."""


class UnresolvedPlanError(LineageError):
    """The plan references a relation or column that does not exist."""


class AmbiguousColumnError(LineageError):
    """A column reference binds to more than one input column."""


class CyclicLineageError(LineageError):
    """A view references itself, directly or through other views."""


class UnsupportedOperatorError(LineageError):
    """A plan node outside the known taxonomy; reported, never fatal."""

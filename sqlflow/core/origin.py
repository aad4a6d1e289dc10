from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional


def _norm(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    return str(name).strip().strip('`').strip('"').lower()


@dataclass(frozen=True, order=True)
class NodeRef:
    """A lineage graph vertex: a column of an entity/plan node, or the owner itself.

    ``owner`` is an entity name or an intermediate plan node id; ``column`` is
    None for the owner node.
    """
    owner: str
    column: Optional[str] = None

    @property
    def node_id(self) -> str:
        if self.column is None:
            return self.owner
        return f"{self.owner}.{self.column}"

    @property
    def is_column(self) -> bool:
        return self.column is not None


ColumnId = NodeRef


@dataclass(frozen=True)
class Attribute:
    """One output column of a plan node as seen by its parent."""
    name: str
    qualifier: Optional[str] = None
    data_type: Optional[str] = None

    def matches(self, qualifier: Optional[str]) -> bool:
        if qualifier is None:
            return True
        if self.qualifier is None:
            return False
        return self.qualifier.split('.')[-1] == qualifier.split('.')[-1]


@dataclass(frozen=True, order=True)
class InputRef:
    """Position ``index`` in the output of child number ``child``."""
    child: int
    index: int


@dataclass(frozen=True)
class Derivation:
    """How one output column is computed from the node's immediate inputs.

    ``identity`` marks columns that keep the identity of their single input
    (filters, aliases, join sides, group keys).
    """
    inputs: FrozenSet[InputRef]
    via: Optional[str] = None
    identity: bool = False


@dataclass(frozen=True)
class LineageEdge:
    source: NodeRef
    target: NodeRef
    via: Optional[str] = None
    condition: bool = False

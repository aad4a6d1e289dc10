from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Diagnostic:
    entity: str
    kind: str
    message: str
    fatal: bool = True


@dataclass(frozen=True)
class EdgeRecord:
    source: str
    target: str
    kind: str
    label: Optional[str]
    source_entity: str
    target_entity: str

    def as_csv_row(self) -> List[str]:
        return [
            self.source_entity,
            self.source,
            self.kind,
            self.label or "",
            self.target,
            self.target_entity,
        ]


CSV_HEADER = [
    "source_entity",
    "source",
    "kind",
    "label",
    "target",
    "target_entity",
]

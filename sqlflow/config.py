from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE = {"1", "true", "yes", "on"}


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE


@dataclass(frozen=True)
class FlowConfig:
    """Options of a lineage run.

    ``contracted`` selects entity-level output; ``include_column_types``
    annotates column nodes with data types when the catalog knows them.
    """
    contracted: bool = False
    include_column_types: bool = False
    dialect: str = "spark"
    image_format: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FlowConfig":
        env = os.environ if environ is None else environ
        return cls(
            contracted=_flag(env.get("SQLFLOW_CONTRACTED"), False),
            include_column_types=_flag(env.get("SQLFLOW_COLUMN_TYPES"), False),
            dialect=env.get("SQLFLOW_DIALECT") or "spark",
            image_format=env.get("SQLFLOW_IMAGE_FORMAT") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

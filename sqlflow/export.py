from __future__ import annotations

import csv
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import graphviz

from .graph import LineageGraph
from .models import CSV_HEADER, EdgeRecord


@dataclass(frozen=True)
class ExportResult:
    text_path: str
    image_path: Optional[str] = None


def export_graph(
    text: str,
    path: str,
    image_format: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> ExportResult:
    """Write DOT text to ``<path>.gv`` and optionally render ``<path>.<format>``.

    A missing Graphviz installation only skips the image.
    """
    logger = logger or logging.getLogger(__name__)
    base = path[:-3] if path.endswith(".gv") else path
    text_path = f"{base}.gv"
    parent = os.path.dirname(text_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(text_path, "w", encoding="utf-8") as f:
        f.write(text)
    logger.info(f"Wrote lineage graph to {text_path}")

    if not image_format:
        return ExportResult(text_path)
    image_path = f"{base}.{image_format}"
    try:
        graphviz.render("dot", format=image_format, filepath=text_path, outfile=image_path)
    except graphviz.ExecutableNotFound as e:
        logger.warning(f"Graphviz executable not found, skipping {image_path}: {e}")
        return ExportResult(text_path)
    logger.info(f"Rendered lineage image {image_path}")
    return ExportResult(text_path, image_path)


def edge_records(graph: LineageGraph) -> List[EdgeRecord]:
    rows: List[EdgeRecord] = []
    for edge in graph.sorted_edges():
        rows.append(EdgeRecord(
            source=edge.source,
            target=edge.target,
            kind=edge.kind.value,
            label=edge.label,
            source_entity=graph.nodes[edge.source].entity,
            target_entity=graph.nodes[edge.target].entity,
        ))
    return rows


def write_edges_csv(graph: LineageGraph, path: str) -> int:
    rows = edge_records(graph)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for r in rows:
            writer.writerow(r.as_csv_row())
    return len(rows)

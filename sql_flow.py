import argparse
import glob
import os
import sys
from typing import List, Optional

from sqlglot.errors import ParseError

from sqlflow import FlowConfig, SQLSession
from sqlflow.errors import LineageError
from sqlflow.export import export_graph, write_edges_csv
from sqlflow.logger import get_logger


def find_sql_files(folder: str) -> List[str]:
	pattern = os.path.join(folder, "**", "*.sql")
	return sorted(glob.glob(pattern, recursive=True))


def output_base(sql_folder: str, output_dir: str, path: str) -> str:
	rel = os.path.relpath(path, sql_folder)
	return os.path.join(output_dir, os.path.splitext(rel)[0])


def check_golden(path: str, text: Optional[str]) -> bool:
	"""True when ``path`` holds exactly ``text`` (or is absent and there is no text)."""
	if not os.path.exists(path):
		return text is None
	with open(path, "r", encoding="utf-8") as f:
		return f.read() == (text or "")


def build_parser(defaults: FlowConfig) -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Column lineage graphs for SQL views using sqlglot")
	parser.add_argument("--sql-folder", default="sql", help="Folder containing .sql files")
	parser.add_argument("--output-dir", default="out", help="Folder receiving one .gv file per .sql file")
	parser.add_argument(
		"--contracted",
		action="store_true",
		default=defaults.contracted,
		help="Only draw entity-to-entity edges",
	)
	parser.add_argument(
		"--column-types",
		action="store_true",
		default=defaults.include_column_types,
		help="Annotate column nodes with their data types",
	)
	parser.add_argument(
		"--format",
		default=defaults.image_format,
		help="Also render an image in this Graphviz format (e.g., png, svg)",
	)
	parser.add_argument("--dialect", default=defaults.dialect, help="sqlglot dialect of the input files")
	parser.add_argument("--edges-csv", action="store_true", help="Also write the edge list as CSV")
	parser.add_argument(
		"--check",
		action="store_true",
		help="Compare against existing .gv files instead of writing them",
	)
	parser.add_argument("--log-level", default=defaults.log_level, help="Logging level")
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	defaults = FlowConfig.from_env()
	args = build_parser(defaults).parse_args(argv)
	logger = get_logger(level=args.log_level)
	config = FlowConfig(
		contracted=args.contracted,
		include_column_types=args.column_types,
		dialect=args.dialect,
		image_format=args.format,
		log_level=args.log_level,
	)

	sql_files = find_sql_files(args.sql_folder)
	if not sql_files:
		logger.error(f"No SQL files found in {args.sql_folder}")
		return 2

	failures = 0
	for path in sql_files:
		base = output_base(args.sql_folder, args.output_dir, path)
		session = SQLSession(dialect=config.dialect, logger=logger)
		try:
			session.execute_file(path)
			result = session.lineage(config)
		except (LineageError, ParseError) as e:
			logger.error(f"Failed to analyze {path}: {e}")
			failures += 1
			continue

		header = f"Automatically generated by sql_flow.py from {os.path.relpath(path, args.sql_folder)}"
		text = result.render(header=header) if result.graph.nodes else None
		for d in result.diagnostics:
			logger.warning(f"{path}: {d.entity}: {d.message}")

		if args.check:
			if check_golden(f"{base}.gv", text):
				logger.info(f"{path}: matches {base}.gv")
			else:
				logger.error(f"{path}: lineage differs from {base}.gv")
				failures += 1
			continue

		if text is None:
			logger.warning(f"{path}: no tables or views, nothing written")
			continue
		export_graph(text, base, image_format=config.image_format, logger=logger)
		if args.edges_csv:
			count = write_edges_csv(result.graph, f"{base}.csv")
			logger.info(f"Wrote {count} edges to {base}.csv")

	if failures:
		logger.error(f"{failures} of {len(sql_files)} files failed")
		return 1
	return 0


if __name__ == "__main__":
	sys.exit(main())

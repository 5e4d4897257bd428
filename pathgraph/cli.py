"""
Command-line access to the path store and the graph checks.

Usage:
    python -m pathgraph.cli node-types
    python -m pathgraph.cli list
    python -m pathgraph.cli import path.json
    python -m pathgraph.cli export <path-id> [--out path.json]
    python -m pathgraph.cli validate <path-id | path.json>
    python -m pathgraph.cli order <path-id | path.json>
    python -m pathgraph.cli metrics <path-id | path.json>

``--db`` and ``--config`` override :func:`pathgraph.config.load_settings`.
Exit code is 1 when a path is missing or fails validation.
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from pydantic import ValidationError

from pathgraph.config import Settings, load_settings
from pathgraph.models import LearningPath
from pathgraph.node_types import CATEGORY_LABELS, default_registry
from pathgraph.storage import PathNotFound, PathStore
from pathgraph.traversal import build_play_order
from pathgraph.utils import setup_logging, truncate
from pathgraph.validator import GraphValidator, compute_metrics

logger = logging.getLogger(__name__)


class PathSourceError(Exception):
    """A path argument resolved to neither a stored id nor a readable file."""


def _resolve_path(ref: str, settings: Settings) -> LearningPath:
    """Load *ref* as a JSON file if one exists there, else as a stored id."""
    if os.path.isfile(ref):
        try:
            with open(ref, "r", encoding="utf-8") as fh:
                return LearningPath.model_validate(json.load(fh))
        except (ValueError, ValidationError) as exc:
            raise PathSourceError(f"Cannot read {ref}: {exc}") from exc
    try:
        return PathStore(settings.db_path).load(ref)
    except PathNotFound as exc:
        raise PathSourceError(str(exc)) from exc


# =========================================================================
# Commands
# =========================================================================


def cmd_node_types(args: argparse.Namespace, settings: Settings) -> int:
    for section in default_registry().palette():
        print(f"{section['label']}:")
        for item in section["items"]:
            print(f"  {item['icon']} {item['type']:<10} {item['label']}")
    return 0


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    rows = PathStore(settings.db_path).list()
    if not rows:
        print("No learning paths stored.")
        return 0
    for row in rows:
        print(
            f"{row['id']}  {row['status']:<9} {row['nodeCount']:>3} node(s)  "
            f"{truncate(row['title'], 48)}"
        )
    return 0


def cmd_import(args: argparse.Namespace, settings: Settings) -> int:
    try:
        with open(args.file, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        logger.error("Cannot read %s: %s", args.file, exc)
        return 1
    try:
        doc = PathStore(settings.db_path).create(data)
    except ValidationError as exc:
        logger.error("Invalid learning path in %s: %s", args.file, exc)
        return 1
    print(doc["id"])
    return 0


def cmd_export(args: argparse.Namespace, settings: Settings) -> int:
    try:
        doc = PathStore(settings.db_path).get(args.path_id)
    except PathNotFound as exc:
        logger.error("%s", exc)
        return 1
    text = json.dumps(doc, indent=2, ensure_ascii=False)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        logger.info("Exported %s → %s", args.path_id, args.out)
    else:
        print(text)
    return 0


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    path = _resolve_path(args.path, settings)
    result = GraphValidator().validate(path)
    if result.valid:
        print(f"✅ {path.title}: valid")
        return 0
    print(f"❌ {path.title}: {len(result.errors)} error(s)")
    for err in result.errors:
        print(f"  - {err}")
    return 1


def cmd_order(args: argparse.Namespace, settings: Settings) -> int:
    path = _resolve_path(args.path, settings)
    registry = default_registry()
    validator = GraphValidator(registry)
    for idx, node in enumerate(build_play_order(path, registry), start=1):
        print(f"{idx:>3}. [{registry.label_for(node.type)}] {validator.display_title(node)}")
    return 0


def cmd_metrics(args: argparse.Namespace, settings: Settings) -> int:
    path = _resolve_path(args.path, settings)
    metrics = compute_metrics(path)
    print(json.dumps(metrics, indent=2))
    return 0


# =========================================================================
# CLI
# =========================================================================


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m pathgraph.cli",
        description="Learning Path Graph Engine: store, validate and linearize paths.",
    )
    parser.add_argument("--db", default=None, help="SQLite path store (overrides config).")
    parser.add_argument("--config", default=None, help="JSON settings file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("node-types", help=f"List node types ({', '.join(CATEGORY_LABELS.values())}).")
    p.set_defaults(func=cmd_node_types)

    p = sub.add_parser("list", help="List stored learning paths.")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("import", help="Store a learning path from a JSON file.")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("export", help="Print (or write) a stored learning path as JSON.")
    p.add_argument("path_id")
    p.add_argument("--out", default=None)
    p.set_defaults(func=cmd_export)

    for name, func, help_text in (
        ("validate", cmd_validate, "Validate a stored path or a JSON file."),
        ("order", cmd_order, "Print the linear play order."),
        ("metrics", cmd_metrics, "Print graph metrics."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("path", help="Stored path id or JSON file.")
        p.set_defaults(func=func)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry-point."""
    args = _parse_args(argv)
    settings = load_settings(args.config)
    if args.db:
        settings.db_path = args.db

    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    setup_logging(level)

    try:
        code = args.func(args, settings)
    except PathSourceError as exc:
        logger.error("%s", exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()

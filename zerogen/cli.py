"""Command line entry point.

Usage:
    zerogen [--config zerogen.yaml] [--database-url URL] [--force] [--dry-run | --check]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from .config import load_config
from .errors import ZeroGenError
from .pipeline import build_registry, run


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a Zero schema and typed mutation modules from a live database")
    parser.add_argument("--config", default="zerogen.yaml", help="YAML configuration file (default: zerogen.yaml)")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (overrides the config and DATABASE_URL)")
    parser.add_argument("--force", action="store_true", help="Regenerate every table and overwrite foreign files")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Generate and validate without writing")
    mode.add_argument("--check", action="store_true", help="Verify outputs are up-to-date without writing")
    parser.add_argument("--patterns", action="store_true", help="Print the detected pattern report")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(Path(args.config))
        if args.database_url:
            config.database_url = args.database_url
        registry = build_registry(config)
        report = run(config, registry, force=args.force, dry_run=args.dry_run, check=args.check)
    except (ZeroGenError, SQLAlchemyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.patterns:
        print(report.pattern_report)

    if args.check:
        return 0 if not report.drift else 1

    if args.dry_run:
        for artifact in report.artifacts:
            print(f"Would generate {artifact.path}")
    for path in report.written:
        print(f"Generated {path}")
    for table in report.skipped_tables:
        print(f"Unchanged {table}")
    for path in report.protected:
        print(f"Skipped {path} (not generated by zerogen)")
    for note in report.changes.migration_notes():
        print(note)
    if report.warnings:
        print(f"{len(report.warnings)} warning(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Legacy cache import

One-shot migration of data written by older Gyazo tools into the gyazocli
cache layout.

Usage:
    python scripts/import_legacy.py json DIR      # per-image <id>.json files (any depth)
    python scripts/import_legacy.py hourly DIR    # yyyy/mm/dd/hh/image_ids.txt indexes
    python scripts/import_legacy.py json DIR --cache-dir ~/.cache/gyazocli

Exit codes:
    0 - Import finished
    1 - Bad arguments or missing source directory
"""

import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

# Add project root to path so the script runs from a source checkout
SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from gyazocli.cache_manager import BucketKey, CacheManager  # noqa: E402
from gyazocli.config import load_config  # noqa: E402

logger = logging.getLogger("import_legacy")

YEAR_RE = re.compile(r"^[0-9]{4}$")
PART_RE = re.compile(r"^[0-9]{2}$")
HOURLY_IDS_FILE = "image_ids.txt"


@dataclass
class ImportReport:
    """Outcome of one import run."""
    kind: str
    imported: int = 0
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "imported": self.imported, "skipped": self.skipped}


def import_json(source: Path, cache: CacheManager) -> ImportReport:
    """Merge every ``<id>.json`` under ``source`` into the image store."""
    report = ImportReport(kind="json")

    for path in sorted(source.rglob("*.json")):
        image_id = path.stem
        try:
            with open(path, 'r', encoding='utf-8') as f:
                record = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping {path}: {e}")
            report.skipped.append(str(path))
            continue

        if not isinstance(record, dict):
            report.skipped.append(str(path))
            continue

        record.setdefault("image_id", image_id)
        try:
            cache.images.merge(image_id, record)
        except ValueError as e:
            logger.warning(f"Skipping {path}: {e}")
            report.skipped.append(str(path))
            continue

        report.imported += 1
        if report.imported % 100 == 0:
            logger.info(f"Imported {report.imported} records")

    return report


def _numbered_dirs(parent: Path, pattern: re.Pattern) -> List[Path]:
    return sorted(p for p in parent.iterdir() if p.is_dir() and pattern.match(p.name))


def import_hourly(source: Path, cache: CacheManager) -> ImportReport:
    """Union legacy ``yyyy/mm/dd/hh/image_ids.txt`` lists into the hourly index."""
    report = ImportReport(kind="hourly")

    for year in _numbered_dirs(source, YEAR_RE):
        for month in _numbered_dirs(year, PART_RE):
            for day in _numbered_dirs(month, PART_RE):
                for hour in _numbered_dirs(day, PART_RE):
                    ids_file = hour / HOURLY_IDS_FILE
                    if not ids_file.exists():
                        continue
                    try:
                        key = BucketKey.parse(f"{year.name}-{month.name}-{day.name}-{hour.name}")
                    except ValueError:
                        report.skipped.append(str(ids_file))
                        continue

                    with open(ids_file, 'r', encoding='utf-8') as f:
                        ids = [line.strip() for line in f if line.strip()]
                    cache.hourly.add_ids(key, ids)
                    report.imported += 1
        logger.info(f"Finished year {year.name}")

    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import legacy Gyazo cache data")
    parser.add_argument("kind", help="json or hourly")
    parser.add_argument("source", help="Legacy data directory")
    parser.add_argument("--cache-dir", help="Target cache directory (default: configured)")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--json", action="store_true", help="JSON output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    if args.kind not in ("json", "hourly"):
        print('Error: type must be "json" or "hourly"', file=sys.stderr)
        return 1

    source = Path(args.source).expanduser().resolve()
    if not source.is_dir():
        print(f"Error: Source directory {source} does not exist.", file=sys.stderr)
        return 1

    config = load_config(args.config)
    if args.cache_dir:
        config.cache.directory = str(Path(args.cache_dir).expanduser())
    cache = CacheManager(config)

    if args.kind == "json":
        report = import_json(source, cache)
        noun = "files"
    else:
        report = import_hourly(source, cache)
        noun = "hourly index files"

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Import complete. Copied {report.imported} {noun}.")
        if report.skipped:
            print(f"Skipped {len(report.skipped)} unreadable files.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

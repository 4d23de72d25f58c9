#!/usr/bin/env python3
# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Command-line interface for gyazocli.
Lists, searches and syncs Gyazo images and prints rankings and stats from
the local cache.
"""

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from . import __version__, credentials
from .api_client import GyazoApiError, GyazoClient, UploadRequest, validate_upload_timestamp
from .cache_manager import BucketKey, CacheManager, is_valid_image_id
from .config import GyazoConfig, load_config, validate_config
from .date_range import (
    DateRange,
    Granularity,
    InvalidDateError,
    days_ending,
    parse_date_option,
    rolling_window,
    today_range,
)
from .metadata import (
    clean_text,
    extract_values,
    format_created_at,
    resolve_location,
    summarize_for_list,
    top_objects,
)
from .models import Dimension, ImageRecord
from .ranking import WEEKDAY_NAMES, RankingAggregator
from .warmer import CacheWarmer

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

OCR_PREVIEW_LINES = 5


class CliError(Exception):
    """User-facing error; printed as ``Error: <message>`` with exit status 1."""


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Log to stderr so stdout stays clean for command output."""
    level = logging.WARNING
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def _positive_int(value: Any, option: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise CliError(f"{option} must be a positive integer")
    if number < 1:
        raise CliError(f"{option} must be a positive integer")
    return number


def _max_pages(args, config: GyazoConfig) -> int:
    value = args.max_pages if args.max_pages is not None else config.sync.max_pages
    return _positive_int(value, "--max-pages")


def _parse_date(text: str) -> DateRange:
    try:
        return parse_date_option(text)
    except InvalidDateError as e:
        raise CliError(str(e))


def _load(args) -> GyazoConfig:
    config = load_config(getattr(args, "config", None))
    problems = validate_config(config)
    if problems:
        raise CliError("Invalid configuration: " + "; ".join(problems))
    return config


def _require_token(config: GyazoConfig) -> str:
    token = credentials.resolve_access_token(config, credentials.DEFAULT_CREDENTIALS_PATH)
    if not token:
        raise CliError(
            "Gyazo Access Token is not set.\n"
            "Run `gyazo config set token <your_access_token>` or set GYAZO_ACCESS_TOKEN."
        )
    return token


def _warmer(config: GyazoConfig, cache: CacheManager, progress_callback=None) -> CacheWarmer:
    _require_token(config)
    return CacheWarmer(config, GyazoClient(config.api), cache, progress_callback=progress_callback)


def _display_value(dimension: Dimension, value: str) -> str:
    return f"#{value}" if dimension == Dimension.TAGS else value


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


# --- config -----------------------------------------------------------------

def cmd_config(args):
    """Get or set stored settings."""
    if args.key != "token":
        raise CliError(f"Config key '{args.key}' not found.")

    if args.action == "set":
        if not args.value:
            raise CliError("A value is required: gyazo config set token <value>")
        credentials.set_stored_token(args.value.strip(), credentials.DEFAULT_CREDENTIALS_PATH)
        print("Access token saved.")
        return

    token = credentials.get_stored_token(credentials.DEFAULT_CREDENTIALS_PATH)
    if not token:
        raise CliError(f"Config key '{args.key}' not found.")
    print(credentials.mask_token(token))


# --- list / get / search ----------------------------------------------------

def _print_records(records: List[Dict[str, Any]], as_json: bool) -> None:
    if as_json:
        _print_json(records)
        return
    for record in records:
        print(summarize_for_list(record))


def cmd_list(args):
    """List recent images, or the cached images of one hour."""
    if args.hour:
        try:
            key = BucketKey.parse(args.hour)
        except ValueError:
            raise CliError("hour format must be yyyy-mm-dd-hh")

        cache = CacheManager(_load(args))
        ids = cache.ids_for_buckets([key])
        records = cache.load_records(ids)
        if not records:
            print(f"No images found for {args.hour} in cache.")
            return
        _print_records(records, args.json)
        return

    page = _positive_int(args.page, "--page")
    limit = _positive_int(args.limit, "--limit")
    config = _load(args)
    warmer = _warmer(config, CacheManager(config))
    _print_records(warmer.list_recent(page=page, per_page=limit), args.json)


def _image_markdown(record: Dict[str, Any]) -> List[str]:
    image = ImageRecord.from_dict(record)
    meta = image.metadata
    lines = ["## Gyazo Image", ""]

    fields: List[Tuple[str, Optional[str]]] = [
        ("ID", image.image_id),
        ("URL", f"<{image.permalink_url}>" if image.permalink_url else None),
        ("Created at", format_created_at(image)),
    ]
    if meta is not None:
        tags = extract_values(image, Dimension.TAGS)
        fields += [
            ("App", meta.app),
            ("Title", clean_text(meta.title)),
            ("Source", f"<{meta.url}>" if meta.url else None),
            ("Description", clean_text(meta.desc)),
            ("Address", resolve_location(meta.exif_address)),
            ("Tags", " ".join(f"#{tag}" for tag in tags)),
        ]
    fields.append(("Alt text", clean_text(image.alt_text)))

    for name, value in fields:
        if value:
            lines.append(f"- {name}: {value}")

    objects = top_objects(image)
    if objects:
        lines += ["", "### Objects"]
        lines += [f"- {obj.name} ({obj.score * 100:.1f}%)" for obj in objects]

    ocr_lines = (image.ocr_text or "").strip().splitlines()
    if ocr_lines:
        lines += ["", "### OCR"]
        lines += ocr_lines[:OCR_PREVIEW_LINES]
        if len(ocr_lines) > OCR_PREVIEW_LINES:
            lines += ["...", f"(Full text: `gyazo get --ocr {image.image_id}`)"]

    return lines


def cmd_get(args):
    """Show one image."""
    if args.json and (args.ocr or args.objects):
        raise CliError("--json cannot be used with --ocr or --objects")
    if args.ocr and args.objects:
        raise CliError("--ocr and --objects cannot be used together")
    if not is_valid_image_id(args.image_id):
        raise CliError(f"Invalid image id: {args.image_id}")

    config = _load(args)
    cache = CacheManager(config)
    use_cache = not args.no_cache
    if use_cache and cache.images.exists(args.image_id):
        warmer = CacheWarmer(config, GyazoClient(config.api), cache)
    else:
        warmer = _warmer(config, cache)

    record = warmer.get_image(args.image_id, use_cache=use_cache)

    if args.json:
        _print_json(record)
    elif args.ocr:
        print((ImageRecord.from_dict(record).ocr_text or "").strip())
    elif args.objects:
        for obj in top_objects(record):
            print(f"{obj.name} ({obj.score * 100:.1f}%)")
    else:
        print("\n".join(_image_markdown(record)))


def cmd_search(args):
    """Search images."""
    if not args.query:
        raise CliError("Query is required\nRun `gyazo search -h` for usage")
    page = _positive_int(args.page, "--page")
    per_page = _positive_int(args.per_page, "--per-page")

    config = _load(args)
    warmer = _warmer(config, CacheManager(config))
    _print_records(warmer.search(args.query, page=page, per_page=per_page), args.json)


# --- sync -------------------------------------------------------------------

def _print_page_progress(stage: str, current: int, total: int) -> None:
    if stage == "page":
        print(f"Page {current} processed.", file=sys.stderr)


def cmd_sync(args):
    """Bulk-sync image details for a past window."""
    if args.date and args.days is not None:
        raise CliError("--date and --days cannot be used together")

    if args.date:
        date_range = _parse_date(args.date)
    else:
        days = _positive_int(args.days if args.days is not None else 1, "--days")
        date_range = days_ending(date.today() - timedelta(days=1), days)

    config = _load(args)
    max_pages = _max_pages(args, config)
    warmer = _warmer(config, CacheManager(config), progress_callback=_print_page_progress)

    print(f"Syncing images between {date_range.start.isoformat()} and {date_range.end.isoformat()}...")
    stats = warmer.sync(date_range, max_pages=max_pages)
    print(
        f"Sync complete. Indexed {stats.indexed}, fetched {stats.fetched}, "
        f"skipped {stats.skipped}, failed {stats.failed} ({stats.pages} pages)."
    )


# --- rankings ---------------------------------------------------------------

def _ranking_range(args, config: GyazoConfig) -> DateRange:
    if args.today and args.date:
        raise CliError("--today and --date cannot be used together")
    if args.today:
        return today_range()
    if args.date:
        return _parse_date(args.date)
    try:
        return rolling_window(config.ranking.default_days)
    except InvalidDateError as e:
        raise CliError(str(e))


def cmd_ranking(args):
    """Rank apps, domains, tags or locations over a date range."""
    dimension = Dimension(args.command)
    config = _load(args)
    date_range = _ranking_range(args, config)
    limit = _positive_int(args.limit if args.limit is not None else config.ranking.limit, "--limit")
    max_pages = _max_pages(args, config)

    cache = CacheManager(config)
    use_cache = not args.no_cache
    aggregator = RankingAggregator(cache)

    if args.refresh or not use_cache:
        _warmer(config, cache).warm_date_cache_for_ranking(date_range, max_pages, use_cache, dimension)
    else:
        warmer = CacheWarmer(config, GyazoClient(config.api), cache)
        if not warmer.has_cached_coverage(date_range, dimension):
            _warmer(config, cache).warm_date_cache_for_ranking(date_range, max_pages, True, dimension)

    summary = aggregator.aggregate(date_range, dimension)

    if args.json:
        data = summary.to_dict()
        data["range"] = date_range.key
        data["dimension"] = dimension.value
        _print_json(data)
        return

    print(f"{dimension.label} on {date_range.key}")
    print()
    if not summary.ranking:
        print(f"No {dimension.singular} metadata found.")
    for rank, (value, count) in enumerate(summary.top(limit), start=1):
        print(f"{rank}. {_display_value(dimension, value)}: {count}")
    print()
    print(f"Total images: {summary.total_images}")
    print(f"Total images with {dimension.singular} metadata: {summary.image_count_with_values}")


# --- stats ------------------------------------------------------------------

def _stats_range(args, config: GyazoConfig) -> DateRange:
    if args.days is not None:
        days = _positive_int(args.days, "--days")
    else:
        days = config.ranking.default_days

    if args.date:
        day = _parse_date(args.date)
        if day.granularity != Granularity.DAY:
            raise CliError("--date must be yyyy-mm-dd for stats")
        return days_ending(day.start.date(), days)

    if args.days is not None:
        return days_ending(date.today() - timedelta(days=1), days)
    return rolling_window(days)


def _section(title: str, rows: List[str]) -> List[str]:
    return ["", f"### {title}"] + (rows or ["- (none)"])


def cmd_stats(args):
    """Print a Markdown summary of a window."""
    config = _load(args)
    date_range = _stats_range(args, config)
    top = _positive_int(args.top if args.top is not None else config.ranking.limit, "--top")
    cache = CacheManager(config)

    if args.refresh:
        warmer = _warmer(config, cache)
        max_pages = config.sync.max_pages
        for dimension in Dimension:
            warmer.warm_date_cache_for_ranking(date_range, max_pages, True, dimension)

    aggregator = RankingAggregator(cache)
    histograms = aggregator.upload_time_histograms(date_range)
    daily = aggregator.daily_upload_counts(date_range)

    first = date_range.start.date().isoformat()
    last = date_range.end.date().isoformat()
    lines = [
        "## Gyazo Stats",
        "",
        f"Window: {first} to {last} ({date_range.day_count} days)",
        f"Total images: {histograms.total_images}",
    ]
    lines += _section("Upload Time (Hour)", [f"- {hour:02d}:00: {n}" for hour, n in histograms.by_hour])
    lines += _section("Upload Time (Weekday)", [f"- {WEEKDAY_NAMES[wd]}: {n}" for wd, n in histograms.by_weekday])
    lines += _section("Daily Uploads", [f"- {day.isoformat()}: {n}" for day, n in daily])

    for dimension in Dimension:
        summary = aggregator.aggregate(date_range, dimension)
        rows = [f"- {_display_value(dimension, value)}: {count}" for value, count in summary.top(top)]
        lines += _section(dimension.label, rows)

    print("\n".join(lines))


# --- upload / me ------------------------------------------------------------

def cmd_upload(args):
    """Upload an image file (or stdin)."""
    timestamp = None
    if args.timestamp is not None:
        try:
            timestamp = validate_upload_timestamp(args.timestamp)
        except ValueError as e:
            raise CliError(str(e))

    config = _load(args)
    warmer = _warmer(config, CacheManager(config))

    if args.file:
        try:
            with open(args.file, 'rb') as f:
                image_data = f.read()
        except OSError as e:
            raise CliError(f"Cannot read {args.file}: {e}")
        filename = args.file
    else:
        image_data = sys.stdin.buffer.read()
        filename = "stdin"
    if not image_data:
        raise CliError("No image data to upload")

    created = warmer.upload(UploadRequest(
        image_data=image_data,
        filename=filename,
        title=args.title,
        app=args.app,
        referer_url=args.url,
        desc=args.desc,
        timestamp=timestamp,
    ))

    if args.json:
        _print_json(created)
    else:
        print(created.get("permalink_url") or created.get("url") or created.get("image_id", ""))


def cmd_me(args):
    """Show the authenticated user."""
    config = _load(args)
    _require_token(config)
    user = GyazoClient(config.api).get_current_user()
    user = user.get("user", user) if isinstance(user.get("user"), dict) else user

    if args.json:
        _print_json(user)
        return
    for key in ("name", "email", "uid", "profile_image"):
        if user.get(key):
            print(f"{key}: {user[key]}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gyazo",
        description="gyazocli - Gyazo image cache and rankings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gyazo config set token TOKEN   Store your access token
  gyazo ls --hour 2026-02-20-02  List cached images of one hour
  gyazo get IMAGE_ID             Show one image
  gyazo sync --days 7            Fetch details for the last 7 days
  gyazo apps --date 2026-01      Rank source apps for a month
  gyazo stats --top 5            Weekly summary

Environment:
  GYAZO_ACCESS_TOKEN   Access token (overrides the stored one)
  GYAZO_CACHE_DIR      Cache directory (default: ~/.cache/gyazocli)
  GYAZO_CONFIG         Config file path
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")
    parser.add_argument("--debug", action="store_true", help="Log debug detail to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Config
    config_parser = subparsers.add_parser("config", help="Get or set stored settings")
    config_parser.add_argument("action", choices=["get", "set"])
    config_parser.add_argument("key", help="Setting name (token)")
    config_parser.add_argument("value", nargs="?", help="New value (for set)")

    # Listing
    list_parser = subparsers.add_parser("list", aliases=["ls"], help="List images")
    list_parser.add_argument("--hour", help="Cached hour bucket (yyyy-mm-dd-hh)")
    list_parser.add_argument("--page", default=1, help="Page number")
    list_parser.add_argument("--limit", default=20, help="Images per page")
    list_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    get_parser = subparsers.add_parser("get", help="Show one image")
    get_parser.add_argument("image_id", help="Image id")
    get_parser.add_argument("--json", action="store_true", help="Print raw JSON")
    get_parser.add_argument("--ocr", action="store_true", help="Print the full OCR text only")
    get_parser.add_argument("--objects", action="store_true", help="Print detected objects only")
    get_parser.add_argument("--no-cache", action="store_true", help="Fetch from the API")

    search_parser = subparsers.add_parser("search", help="Search images")
    search_parser.add_argument("query", nargs="?", help="Search query")
    search_parser.add_argument("--page", default=1, help="Page number")
    search_parser.add_argument("--per-page", default=20, help="Results per page")
    search_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    # Sync
    sync_parser = subparsers.add_parser("sync", help="Fetch image details for a past window")
    sync_parser.add_argument("--days", type=int, help="Days back from yesterday (default: 1)")
    sync_parser.add_argument("--date", help="yyyy, yyyy-mm or yyyy-mm-dd")
    sync_parser.add_argument("--max-pages", type=int, help="Maximum list pages to scan")

    # Rankings
    for dimension in Dimension:
        rank_parser = subparsers.add_parser(dimension.value, help=f"Rank {dimension.value}")
        rank_parser.add_argument("--date", help="yyyy, yyyy-mm or yyyy-mm-dd")
        rank_parser.add_argument("--today", action="store_true", help="Rank today's images")
        rank_parser.add_argument("--limit", type=int, help="Rows to print")
        rank_parser.add_argument("--max-pages", type=int, help="Maximum list pages to scan")
        rank_parser.add_argument("--refresh", action="store_true", help="Fetch new images first")
        rank_parser.add_argument("--no-cache", action="store_true",
                                 help="Re-extract values instead of reusing cached ones")
        rank_parser.add_argument("--json", action="store_true", help="Print JSON")

    stats_parser = subparsers.add_parser("stats", help="Markdown summary of a window")
    stats_parser.add_argument("--date", help="Last day of the window (yyyy-mm-dd)")
    stats_parser.add_argument("--days", type=int, help="Window length in days")
    stats_parser.add_argument("--top", type=int, help="Rows per ranking")
    stats_parser.add_argument("--refresh", action="store_true", help="Fetch new images first")

    # Upload / user
    upload_parser = subparsers.add_parser("upload", help="Upload an image")
    upload_parser.add_argument("file", nargs="?", help="Image file (default: stdin)")
    upload_parser.add_argument("--title", help="Page title")
    upload_parser.add_argument("--app", help="Source application")
    upload_parser.add_argument("--url", help="Source page URL")
    upload_parser.add_argument("--desc", help="Description")
    upload_parser.add_argument("--timestamp", help="Creation time (unix seconds)")
    upload_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    me_parser = subparsers.add_parser("me", help="Show the current user")
    me_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose, args.debug)

    commands = {
        "config": cmd_config,
        "list": cmd_list,
        "ls": cmd_list,
        "get": cmd_get,
        "search": cmd_search,
        "sync": cmd_sync,
        "stats": cmd_stats,
        "upload": cmd_upload,
        "me": cmd_me,
    }
    commands.update({dimension.value: cmd_ranking for dimension in Dimension})

    try:
        commands[args.command](args)
    except CliError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except GyazoApiError as e:
        logger.error(f"API request failed: {e}")
        print(f"Error talking to Gyazo: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Cache manager for gyazocli.
Handles the on-disk layout of image records, search hits, hourly id indexes
and hourly per-dimension metadata.

Layout under the cache directory::

    images/<c1>/<c2>/<id>.json           full image records (merged)
    search_images/<c1>/<c2>/<id>.json    raw search hits (alt text recovery)
    hourly/<yyyy>/<mm>/<dd>/<hh>.json    ids observed in that hour
    hourly/<yyyy>/<mm>/<dd>/<hh>-<dimension>.json   id -> values
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import GyazoConfig
from .models import Dimension

logger = logging.getLogger(__name__)


class CacheCorruptError(ValueError):
    """A cache file exists but does not hold valid JSON of the expected shape."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Corrupt cache file {path}: {reason}")
        self.path = path


@dataclass(frozen=True, order=True)
class BucketKey:
    """Hour partition key in the local calendar."""
    year: int
    month: int
    day: int
    hour: int

    @classmethod
    def from_datetime(cls, dt: datetime) -> "BucketKey":
        return cls(dt.year, dt.month, dt.day, dt.hour)

    @classmethod
    def parse(cls, text: str) -> "BucketKey":
        """
        Parse ``yyyy-mm-dd-hh``.

        Raises:
            ValueError: If the text is not a valid hour key.
        """
        parts = text.split("-")
        if len(parts) != 4 or not all(p.isdigit() for p in parts):
            raise ValueError("hour format must be yyyy-mm-dd-hh")
        year, month, day, hour = (int(p) for p in parts)
        # Let the datetime constructor validate ranges
        datetime(year, month, day, hour)
        return cls(year, month, day, hour)

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def parts(self) -> Tuple[str, str, str, str]:
        return (f"{self.year:04d}", f"{self.month:02d}", f"{self.day:02d}", f"{self.hour:02d}")

    def __str__(self) -> str:
        return "-".join(self.parts)


def _read_json(path: Path) -> Optional[Any]:
    """
    Read a JSON file.

    Returns:
        Parsed data, or None if the file does not exist.

    Raises:
        CacheCorruptError: If the file cannot be parsed.
    """
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (ValueError, UnicodeDecodeError) as e:
        raise CacheCorruptError(path, str(e)) from e


def _write_json(path: Path, data: Any) -> None:
    """Write JSON atomically.

    Writes to a temp file first, then renames to prevent corruption
    if the write is interrupted.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + '.tmp')
    with open(temp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(temp_path, path)


def merge_image_records(base: Optional[Dict[str, Any]], incoming: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge two image records without losing data.

    Fields of ``incoming`` win field-by-field, except that a missing or null
    field never erases one present in ``base``. The ``metadata`` block is
    merged the same way one level down, and ``ocr`` from ``incoming`` only
    wins when it actually carries data.
    """
    base = base or {}
    incoming = incoming or {}

    merged = dict(base)
    for key, value in incoming.items():
        if value is None or key in ("metadata", "ocr"):
            continue
        merged[key] = value

    base_meta = base.get("metadata")
    incoming_meta = incoming.get("metadata")
    if isinstance(base_meta, dict) and isinstance(incoming_meta, dict):
        meta = dict(base_meta)
        meta.update({k: v for k, v in incoming_meta.items() if v is not None})
        merged["metadata"] = meta
    elif isinstance(incoming_meta, dict):
        merged["metadata"] = dict(incoming_meta)

    if incoming.get("ocr"):
        merged["ocr"] = incoming["ocr"]

    return merged


def is_valid_image_id(image_id: Any) -> bool:
    """True if the id can name a file inside the fan-out layout."""
    return (
        isinstance(image_id, str)
        and bool(image_id)
        and "/" not in image_id
        and "\\" not in image_id
        and not image_id.startswith(".")
    )


class ImageStore:
    """One JSON record per image id, fanned out over two directory levels."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, image_id: str) -> Path:
        if not is_valid_image_id(image_id):
            raise ValueError(f"Invalid image id: {image_id!r}")
        prefix1 = image_id[0]
        prefix2 = image_id[1] if len(image_id) > 1 else "_"
        return self.root / prefix1 / prefix2 / f"{image_id}.json"

    def exists(self, image_id: str) -> bool:
        return self.path_for(image_id).exists()

    def get(self, image_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a record.

        Raises:
            CacheCorruptError: If the stored file is malformed.
        """
        path = self.path_for(image_id)
        data = _read_json(path)
        if data is not None and not isinstance(data, dict):
            raise CacheCorruptError(path, "expected a JSON object")
        return data

    def put(self, image_id: str, record: Dict[str, Any]) -> None:
        _write_json(self.path_for(image_id), record)

    def merge(
        self,
        image_id: str,
        incoming: Dict[str, Any],
        prefer_existing: bool = False
    ) -> Dict[str, Any]:
        """
        Merge a record into the store and return the stored result.

        Args:
            image_id: Image id.
            incoming: Newly received (possibly partial) record.
            prefer_existing: If True, the cached record is laid over the
                incoming one instead (used when the incoming record is a
                thin list/search hit and the cache may hold a full detail).
        """
        try:
            existing = self.get(image_id)
        except CacheCorruptError as e:
            logger.warning(f"{e}; replacing it")
            existing = None

        if prefer_existing:
            merged = merge_image_records(incoming, existing)
        else:
            merged = merge_image_records(existing, incoming)

        self.put(image_id, merged)
        return merged


class HourlyIndex:
    """Set of image ids observed in each hour bucket."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: BucketKey) -> Path:
        year, month, day, hour = key.parts
        return self.root / year / month / day / f"{hour}.json"

    def read_ids(self, key: BucketKey) -> Optional[List[str]]:
        """
        Return the ids for a bucket, or None if the bucket was never written.

        Raises:
            CacheCorruptError: If the stored file is malformed.
        """
        path = self.path_for(key)
        data = _read_json(path)
        if data is None:
            return None
        if not isinstance(data, list):
            raise CacheCorruptError(path, "expected a JSON array")
        return [str(image_id) for image_id in data if image_id]

    def add_ids(self, key: BucketKey, ids: Iterable[str]) -> List[str]:
        """Union ids into a bucket, keeping first-seen order. Returns the stored list."""
        try:
            existing = self.read_ids(key) or []
        except CacheCorruptError as e:
            logger.warning(f"{e}; rebuilding it")
            existing = []

        merged = list(dict.fromkeys([*existing, *ids]))
        _write_json(self.path_for(key), merged)
        return merged


def normalize_values(values: Any) -> List[str]:
    """
    Coerce stored values to a list of strings.

    Values are stripped, empties dropped and duplicates removed
    case-insensitively, keeping the first-seen casing.
    """
    if values is None:
        return []
    if not isinstance(values, list):
        values = [values]

    result = []
    seen = set()
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            continue
        folded = text.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        result.append(text)
    return result


def normalize_entries(mapping: Any) -> Dict[str, List[str]]:
    """Normalize an id -> values mapping (see normalize_values)."""
    if not isinstance(mapping, dict):
        return {}
    return {str(image_id): normalize_values(values) for image_id, values in mapping.items()}


class HourlyMetadataCache:
    """Per-bucket, per-dimension mapping of image id -> extracted values."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, dimension: Union[Dimension, str], key: BucketKey) -> Path:
        year, month, day, hour = key.parts
        return self.root / year / month / day / f"{hour}-{Dimension(dimension).value}.json"

    def read_entries(
        self,
        dimension: Union[Dimension, str],
        key: BucketKey
    ) -> Optional[Dict[str, List[str]]]:
        """
        Return the normalized entries for a bucket, or None if absent.

        Raises:
            CacheCorruptError: If the stored file is malformed.
        """
        path = self.path_for(dimension, key)
        data = _read_json(path)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise CacheCorruptError(path, "expected a JSON object")
        return normalize_entries(data)

    def write_entries(
        self,
        dimension: Union[Dimension, str],
        key: BucketKey,
        mapping: Dict[str, Any]
    ) -> None:
        """Overwrite a bucket's entries. Callers merge with prior content first."""
        _write_json(self.path_for(dimension, key), normalize_entries(mapping))


class CacheManager:
    """
    Entry point to the local cache.

    Groups the image store, the search shadow store, the hourly index and
    the hourly metadata cache under one directory.
    """

    def __init__(self, config: GyazoConfig):
        """
        Initialize the cache manager.

        Args:
            config: gyazocli configuration.
        """
        self.config = config
        self.cache_dir = Path(config.cache.directory)

        self.images = ImageStore(self.cache_dir / "images")
        self.search_images = ImageStore(self.cache_dir / "search_images")
        self.hourly = HourlyIndex(self.cache_dir / "hourly")
        self.metadata = HourlyMetadataCache(self.cache_dir / "hourly")

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def supplement_alt_text(self, record: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """
        Fill in missing alt text from the search shadow store.

        Returns:
            (record, needs_write) - a new record when alt text was recovered,
            with needs_write True so the caller persists it.
        """
        if record.get("alt_text"):
            return record, False

        image_id = record.get("image_id")
        if not image_id:
            return record, False

        try:
            hit = self.search_images.get(image_id)
        except CacheCorruptError as e:
            logger.warning(str(e))
            return record, False

        alt_text = hit.get("alt_text") if hit else None
        if not isinstance(alt_text, str) or not alt_text.strip():
            return record, False

        supplemented = dict(record)
        supplemented["alt_text"] = alt_text
        return supplemented, True

    def ids_for_buckets(self, keys: Iterable[BucketKey]) -> List[str]:
        """Collect ids already indexed for the given buckets (corrupt buckets skipped)."""
        ids: List[str] = []
        for key in keys:
            try:
                ids.extend(self.hourly.read_ids(key) or [])
            except CacheCorruptError as e:
                logger.warning(str(e))
        return list(dict.fromkeys(ids))

    def load_records(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Load cached records for ids, skipping missing and corrupt ones."""
        records = []
        for image_id in ids:
            try:
                record = self.images.get(image_id)
            except CacheCorruptError as e:
                logger.warning(str(e))
                continue
            if record is not None:
                records.append(record)
        return records

# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Cache warmer for gyazocli.
Fetches list pages from the Gyazo API and merges them into the local cache:
hourly id indexes, image records and (for rankings) hourly metadata.

The feed is newest-first, so pages are walked strictly in order and the scan
stops as soon as an image older than the range start is met.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from .api_client import GyazoApiError, GyazoClient, UploadRequest
from .cache_manager import BucketKey, CacheCorruptError, CacheManager, is_valid_image_id
from .config import GyazoConfig
from .date_range import DateRange
from .metadata import extract_values
from .models import Dimension, parse_created_at

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


def _valid_items(items: List[Any], source: str) -> List[Dict[str, Any]]:
    """Dict items of a listing. Anything else is logged and dropped."""
    valid = [item for item in items if isinstance(item, dict)]
    if len(valid) < len(items):
        logger.warning(f"Dropped {len(items) - len(valid)} malformed items from {source}")
    return valid


@dataclass
class SyncStats:
    """Counters for a bulk historical sync."""
    pages: int = 0
    indexed: int = 0
    fetched: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "pages": self.pages,
            "indexed": self.indexed,
            "fetched": self.fetched,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class CacheWarmer:
    """
    Populates the cache from the remote API.

    Handles:
    - Incremental warms over a date range (optionally computing one
      ranking dimension with on-demand detail backfill)
    - Bulk historical sync of image details
    - Caching of search hits and single-image lookups
    """

    def __init__(
        self,
        config: GyazoConfig,
        client: GyazoClient,
        cache: CacheManager,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """
        Initialize the warmer.

        Args:
            config: gyazocli configuration.
            client: Remote API client.
            cache: Local cache.
            progress_callback: Optional callback(stage, current, total).
                stage: "page", "indexed", "fetched", "skipped", "failed"
        """
        self.config = config
        self.client = client
        self.cache = cache
        self._progress_callback = progress_callback

    def _report_progress(self, stage: str, current: int = 0, total: int = 0) -> None:
        """Report progress via callback if set."""
        if self._progress_callback:
            try:
                self._progress_callback(stage, current, total)
            except Exception as e:
                logger.debug(f"Progress callback failed: {e}")

    def _scan(
        self,
        date_range: DateRange,
        max_pages: int,
        stats: Optional[SyncStats] = None
    ) -> Iterator[Tuple[BucketKey, str, Dict[str, Any]]]:
        """
        Walk list pages newest-first, yielding in-range images.

        Yields:
            (bucket key, image id, listed record)

        Raises:
            GyazoApiError: If a list page cannot be fetched.
        """
        per_page = self.config.sync.per_page

        for page in range(1, max_pages + 1):
            try:
                images = self.client.list_images(page=page, per_page=per_page)
            except GyazoApiError as e:
                logger.error(f"Failed to fetch page {page}: {e}")
                raise

            if stats is not None:
                stats.pages += 1
            if not images:
                logger.debug(f"Page {page} is empty, stopping")
                break

            reached_limit = False
            for listed in _valid_items(images, f"page {page}"):
                image_id = listed.get("image_id")
                created = parse_created_at(listed.get("created_at"))
                if not is_valid_image_id(image_id) or created is None:
                    logger.debug(f"Skipping image without id or creation time on page {page}")
                    continue

                # Newer than the window: keep scanning
                if created > date_range.end:
                    continue

                # Older than the window: nothing earlier can be in range
                if created < date_range.start:
                    reached_limit = True
                    break

                yield BucketKey.from_datetime(created), image_id, listed

            logger.info(f"Page {page} processed")
            self._report_progress("page", page, max_pages)

            if reached_limit or len(images) < per_page:
                break

    def _read_existing(self, dimension: Dimension, key: BucketKey) -> Optional[Dict[str, List[str]]]:
        try:
            return self.cache.metadata.read_entries(dimension, key)
        except CacheCorruptError as e:
            logger.warning(f"{e}; rebuilding it")
            return None

    def _backfill(self, image_id: str) -> Optional[Dict[str, Any]]:
        """Fetch and merge a full detail record. Failures degrade to None."""
        try:
            detail = self.client.get_image_detail(image_id)
        except GyazoApiError as e:
            logger.warning(f"Detail fetch failed for {image_id}: {e}")
            return None
        return self.cache.images.merge(image_id, detail)

    def _resolve_values(
        self,
        dimension: Dimension,
        image_id: str,
        record: Dict[str, Any],
        existing: Optional[Dict[str, List[str]]],
        use_cache: bool
    ) -> List[str]:
        recorded = existing is not None and image_id in existing
        if use_cache and recorded:
            return existing[image_id]

        values = extract_values(record, dimension)
        if values or recorded:
            return values

        detailed = self._backfill(image_id)
        if detailed is None:
            return []
        return extract_values(detailed, dimension)

    def warm(
        self,
        date_range: DateRange,
        max_pages: Optional[int] = None,
        use_cache: bool = True,
        dimension: Optional[Union[Dimension, str]] = None
    ) -> List[str]:
        """
        Fetch list pages and merge the in-range images into the cache.

        Args:
            date_range: Range to cover.
            max_pages: Page limit (defaults to config.sync.max_pages).
            use_cache: Reuse recorded metadata entries and report ids
                already cached for the range.
            dimension: Ranking dimension to compute, or None for a plain warm.

        Returns:
            Ids observed in range (plus cached ids when use_cache is True).

        Raises:
            GyazoApiError: If a list page cannot be fetched.
        """
        max_pages = max_pages or self.config.sync.max_pages
        dimension = Dimension(dimension) if dimension is not None else None

        bucket_ids: Dict[BucketKey, Dict[str, None]] = {}
        bucket_values: Dict[BucketKey, Dict[str, List[str]]] = {}
        existing_entries: Dict[BucketKey, Optional[Dict[str, List[str]]]] = {}
        observed: Dict[str, None] = {}

        logger.info(f"Warming {date_range.key} (max {max_pages} pages, dimension={dimension and dimension.value})")

        for key, image_id, listed in self._scan(date_range, max_pages):
            # Pagination can shift while scanning; handle each id once
            if image_id in observed:
                continue
            observed[image_id] = None
            bucket_ids.setdefault(key, {})[image_id] = None

            record = self.cache.images.merge(image_id, listed, prefer_existing=True)

            if dimension is None:
                continue
            if key not in existing_entries:
                existing_entries[key] = self._read_existing(dimension, key)
            values = self._resolve_values(dimension, image_id, record, existing_entries[key], use_cache)
            bucket_values.setdefault(key, {})[image_id] = values

        for key, ids in bucket_ids.items():
            self.cache.hourly.add_ids(key, ids)
            if dimension is not None:
                merged = dict(existing_entries.get(key) or {})
                merged.update(bucket_values.get(key, {}))
                self.cache.metadata.write_entries(dimension, key, merged)

        logger.info(f"Warm of {date_range.key} touched {len(bucket_ids)} buckets, {len(observed)} images")

        result = list(observed)
        if use_cache:
            result = list(dict.fromkeys([*result, *self.cache.ids_for_buckets(date_range.iter_buckets())]))
        return result

    def warm_date_cache_for_ranking(
        self,
        date_range: DateRange,
        max_pages: Optional[int],
        use_cache: bool,
        dimension: Union[Dimension, str]
    ) -> List[str]:
        """Warm a range and its hourly metadata for one ranking dimension."""
        return self.warm(date_range, max_pages=max_pages, use_cache=use_cache, dimension=dimension)

    def has_cached_coverage(
        self,
        date_range: DateRange,
        dimension: Optional[Union[Dimension, str]] = None
    ) -> bool:
        """True if any bucket in range has an index (or the dimension's metadata) on disk."""
        for key in date_range.iter_buckets():
            if self.cache.hourly.path_for(key).exists():
                return True
            if dimension is not None and self.cache.metadata.path_for(dimension, key).exists():
                return True
        return False

    def sync(self, date_range: DateRange, max_pages: Optional[int] = None) -> SyncStats:
        """
        Bulk historical sync: index every in-range image and fetch details
        for those whose cached record has no OCR yet.

        Raises:
            GyazoApiError: If a list page cannot be fetched.
        """
        max_pages = max_pages or self.config.sync.max_pages
        delay = self.config.sync.detail_delay_seconds
        stats = SyncStats()
        bucket_ids: Dict[BucketKey, Dict[str, None]] = {}

        logger.info(f"Syncing images between {date_range.start.isoformat()} and {date_range.end.isoformat()}")

        for key, image_id, listed in self._scan(date_range, max_pages, stats):
            if any(image_id in ids for ids in bucket_ids.values()):
                continue
            bucket_ids.setdefault(key, {})[image_id] = None
            stats.indexed += 1

            record = self.cache.images.merge(image_id, listed, prefer_existing=True)
            if record.get("ocr"):
                stats.skipped += 1
                self._report_progress("skipped", stats.indexed)
                continue

            if self._backfill(image_id) is None:
                stats.failed += 1
                self._report_progress("failed", stats.indexed)
            else:
                stats.fetched += 1
                self._report_progress("fetched", stats.indexed)
            if delay > 0:
                time.sleep(delay)

        logger.info("Updating hourly indices...")
        for key, ids in bucket_ids.items():
            self.cache.hourly.add_ids(key, ids)

        logger.info(f"Sync complete: {stats.to_dict()}")
        return stats

    def list_recent(self, page: int = 1, per_page: int = 20) -> List[Dict[str, Any]]:
        """Fetch one list page, merging each image into the store."""
        images = self.client.list_images(page=page, per_page=per_page)
        merged = []
        for listed in _valid_items(images, f"page {page}"):
            image_id = listed.get("image_id")
            if not is_valid_image_id(image_id):
                continue
            merged.append(self.cache.images.merge(image_id, listed, prefer_existing=True))
        return merged

    def search(self, query: str, page: int = 1, per_page: int = 20) -> List[Dict[str, Any]]:
        """
        Search remotely and cache the hits.

        Each hit is kept raw in the search shadow store and merged into the
        image store without overriding fuller cached fields.
        """
        raw_hits = self.client.search_images(query, page=page, per_page=per_page)
        hits = _valid_items(raw_hits, f"search '{query}'")
        for hit in hits:
            image_id = hit.get("image_id")
            if not is_valid_image_id(image_id):
                continue
            self.cache.search_images.put(image_id, hit)
            self.cache.images.merge(image_id, hit, prefer_existing=True)
        logger.info(f"Search '{query}' page {page}: {len(hits)} hits")
        return hits

    def get_image(self, image_id: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Return an image record, fetching its detail when not cached.

        Missing alt text is recovered from the search shadow store and
        written back.

        Raises:
            GyazoApiError: If the detail fetch fails.
        """
        record = None
        if use_cache:
            try:
                record = self.cache.images.get(image_id)
            except CacheCorruptError as e:
                logger.warning(f"{e}; refetching")

        if record is None:
            detail = self.client.get_image_detail(image_id)
            record = self.cache.images.merge(image_id, detail)

        record, needs_write = self.cache.supplement_alt_text(record)
        if needs_write:
            self.cache.images.put(image_id, record)
        return record

    def upload(self, upload: UploadRequest) -> Dict[str, Any]:
        """Upload an image, then cache and index the returned record."""
        created = self.client.upload_image(upload)
        image_id = created.get("image_id")
        if isinstance(image_id, str) and image_id:
            record = self.cache.images.merge(image_id, created)
            created_at = parse_created_at(record.get("created_at"))
            if created_at is not None:
                self.cache.hourly.add_ids(BucketKey.from_datetime(created_at), [image_id])
        return created

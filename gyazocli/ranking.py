# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Ranking aggregation over the hourly cache.

Walks a date range bucket by bucket, reads (or lazily builds) each bucket's
metadata for one dimension and counts values once per image.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from .cache_manager import BucketKey, CacheCorruptError, CacheManager
from .date_range import DateRange
from .metadata import extract_values
from .models import Dimension

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


@dataclass
class RankingSummary:
    """Result of aggregating one dimension over a range."""
    ranking: List[Tuple[str, int]] = field(default_factory=list)
    total_images: int = 0
    image_count_with_values: int = 0
    total_assignments: int = 0

    def top(self, limit: Optional[int]) -> List[Tuple[str, int]]:
        if limit is None or limit <= 0:
            return list(self.ranking)
        return self.ranking[:limit]

    def to_dict(self) -> dict:
        return {
            "ranking": [{"value": value, "count": count} for value, count in self.ranking],
            "totalImages": self.total_images,
            "imageCountWithValues": self.image_count_with_values,
            "totalAssignments": self.total_assignments,
        }


@dataclass
class UploadHistograms:
    """Upload counts by hour of day (0-23) and weekday (0 = Sunday)."""
    by_hour: List[Tuple[int, int]] = field(default_factory=list)
    by_weekday: List[Tuple[int, int]] = field(default_factory=list)
    total_images: int = 0


@dataclass
class DailySummary:
    """Per-day image count plus the ranking of each requested dimension."""
    day: date
    total_images: int = 0
    rankings: Dict[Dimension, List[Tuple[str, int]]] = field(default_factory=dict)


def sort_ranking(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    """Count descending, then value ascending (case-sensitive)."""
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def _sort_slots(counts: Dict[int, int]) -> List[Tuple[int, int]]:
    return sorted(((slot, n) for slot, n in counts.items() if n > 0), key=lambda item: (-item[1], item[0]))


def sunday_weekday(day: date) -> int:
    """Weekday index with Sunday as 0."""
    return (day.weekday() + 1) % 7


class RankingAggregator:
    """
    Computes rankings and upload statistics from the local cache.

    Never touches the network. Missing metadata files are rebuilt from the
    hourly index and the image store, then written back.
    """

    def __init__(self, cache: CacheManager):
        self.cache = cache

    def _read_index(self, key: BucketKey) -> Optional[List[str]]:
        try:
            return self.cache.hourly.read_ids(key)
        except CacheCorruptError as e:
            logger.warning(str(e))
            return None

    def _build_entries(self, dimension: Dimension, key: BucketKey) -> Optional[Dict[str, List[str]]]:
        """
        Rebuild a bucket's entries from its index and the image store.

        Ids without a cached record are left out of both the result and the
        persisted file, so a later warm can still backfill them.
        """
        ids = self._read_index(key)
        if ids is None:
            return None

        entries: Dict[str, List[str]] = {}
        for image_id in ids:
            try:
                record = self.cache.images.get(image_id)
            except CacheCorruptError as e:
                logger.warning(str(e))
                record = None
            if record is None:
                logger.debug(f"No cached record for {image_id} in {key}")
                continue
            entries[image_id] = extract_values(record, dimension)

        self.cache.metadata.write_entries(dimension, key, entries)
        logger.debug(f"Rebuilt {dimension.value} metadata for {key} ({len(entries)} images)")
        return entries

    def bucket_entries(
        self,
        dimension: Union[Dimension, str],
        key: BucketKey
    ) -> Optional[Dict[str, List[str]]]:
        """Entries for one bucket, building them lazily when absent."""
        dimension = Dimension(dimension)
        try:
            entries = self.cache.metadata.read_entries(dimension, key)
        except CacheCorruptError as e:
            logger.warning(f"{e}; rebuilding it")
            entries = None
        if entries is not None:
            return entries
        return self._build_entries(dimension, key)

    def _count(
        self,
        dimension: Dimension,
        keys: Iterable[BucketKey],
        seen: Set[str]
    ) -> RankingSummary:
        counts: Dict[str, int] = {}
        summary = RankingSummary()

        for key in keys:
            entries = self.bucket_entries(dimension, key)
            if not entries:
                continue
            for image_id, values in entries.items():
                if image_id in seen:
                    continue
                seen.add(image_id)
                summary.total_images += 1
                if not values:
                    continue
                summary.image_count_with_values += 1
                for value in values:
                    counts[value] = counts.get(value, 0) + 1
                    summary.total_assignments += 1

        summary.ranking = sort_ranking(counts)
        return summary

    def aggregate(self, date_range: DateRange, dimension: Union[Dimension, str]) -> RankingSummary:
        """
        Rank one dimension's values over a range.

        Each image contributes at most once, even if it is listed in
        several buckets.
        """
        dimension = Dimension(dimension)
        summary = self._count(dimension, date_range.iter_buckets(), set())
        logger.info(
            f"{dimension.label} on {date_range.key}: {len(summary.ranking)} values, "
            f"{summary.total_images} images"
        )
        return summary

    def aggregate_ranking_from_hourly_metadata_cache(
        self,
        date_range: DateRange,
        dimension: Union[Dimension, str]
    ) -> RankingSummary:
        return self.aggregate(date_range, dimension)

    def _bucket_ids(self, key: BucketKey) -> List[str]:
        """Ids of a bucket: the index, else the union of any metadata files."""
        ids = self._read_index(key)
        if ids is not None:
            return ids

        union: Dict[str, None] = {}
        for dimension in Dimension:
            try:
                entries = self.cache.metadata.read_entries(dimension, key)
            except CacheCorruptError as e:
                logger.warning(str(e))
                continue
            union.update(dict.fromkeys(entries or {}))
        return list(union)

    def upload_time_histograms(self, date_range: DateRange) -> UploadHistograms:
        """Upload counts per hour of day and per weekday, non-zero slots only."""
        by_hour: Counter = Counter()
        by_weekday: Counter = Counter()
        seen: Set[str] = set()

        for key in date_range.iter_buckets():
            for image_id in self._bucket_ids(key):
                if image_id in seen:
                    continue
                seen.add(image_id)
                by_hour[key.hour] += 1
                by_weekday[sunday_weekday(key.date)] += 1

        return UploadHistograms(
            by_hour=_sort_slots(by_hour),
            by_weekday=_sort_slots(by_weekday),
            total_images=len(seen),
        )

    def daily_upload_counts(self, date_range: DateRange) -> List[Tuple[date, int]]:
        """Image count per calendar day, chronological, zero days included."""
        counts: Dict[date, int] = {day: 0 for day in date_range.iter_days()}
        seen: Set[str] = set()

        for key in date_range.iter_buckets():
            for image_id in self._bucket_ids(key):
                if image_id in seen:
                    continue
                seen.add(image_id)
                counts[key.date] = counts.get(key.date, 0) + 1

        return sorted(counts.items())

    def daily_summaries(
        self,
        date_range: DateRange,
        dimensions: Iterable[Union[Dimension, str]]
    ) -> List[DailySummary]:
        """
        Group the bucket walk by calendar day.

        Every dimension keeps one seen-set across the whole range, so an
        image is counted on the first day it is met.
        """
        dimensions = [Dimension(d) for d in dimensions]
        seen_by_dimension: Dict[Dimension, Set[str]] = {d: set() for d in dimensions}
        seen_images: Set[str] = set()
        range_keys = set(date_range.iter_buckets())
        summaries = []

        for day in date_range.day_ranges():
            keys = [key for key in day.iter_buckets() if key in range_keys]
            summary = DailySummary(day=day.start.date())
            for key in keys:
                for image_id in self._bucket_ids(key):
                    if image_id not in seen_images:
                        seen_images.add(image_id)
                        summary.total_images += 1
            for dimension in dimensions:
                summary.rankings[dimension] = self._count(dimension, keys, seen_by_dimension[dimension]).ranking
            summaries.append(summary)

        return summaries

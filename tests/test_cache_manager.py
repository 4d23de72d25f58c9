# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for the on-disk cache: image store merges, fan-out paths, hourly
indexes and hourly metadata files.
"""

from datetime import datetime

import pytest

from gyazocli.cache_manager import (
    BucketKey,
    CacheCorruptError,
    merge_image_records,
    normalize_entries,
    normalize_values,
)


class TestBucketKey:
    """Test hour bucket keys."""

    def test_parse_and_str(self):
        key = BucketKey.parse("2026-02-20-02")
        assert key == BucketKey(2026, 2, 20, 2)
        assert str(key) == "2026-02-20-02"

    @pytest.mark.parametrize("text", ["2026-02-20", "2026-02-20-2x", "2026-13-01-00", "2026-02-20-24"])
    def test_parse_rejects_bad_keys(self, text):
        with pytest.raises(ValueError):
            BucketKey.parse(text)

    def test_from_datetime(self):
        assert BucketKey.from_datetime(datetime(2026, 1, 5, 23, 59)) == BucketKey(2026, 1, 5, 23)

    def test_keys_order_chronologically(self):
        assert BucketKey(2026, 1, 1, 23) < BucketKey(2026, 1, 2, 0)


class TestMergeImageRecords:
    """Test non-destructive record merges."""

    def test_partial_record_keeps_ocr(self):
        """A list-page record must not erase OCR from a detail fetch."""
        full = {
            "image_id": "abc",
            "ocr": {"description": "hello"},
            "metadata": {"title": "Old", "app": "Chrome"},
        }
        partial = {"image_id": "abc", "metadata": {"title": "New"}}

        merged = merge_image_records(full, partial)

        assert merged["ocr"] == {"description": "hello"}
        assert merged["metadata"] == {"title": "New", "app": "Chrome"}

    def test_null_fields_do_not_erase(self):
        merged = merge_image_records(
            {"alt_text": "kept", "metadata": {"url": "https://a"}},
            {"alt_text": None, "metadata": {"url": None}},
        )
        assert merged["alt_text"] == "kept"
        assert merged["metadata"]["url"] == "https://a"

    def test_empty_ocr_does_not_win(self):
        merged = merge_image_records({"ocr": {"description": "x"}}, {"ocr": None})
        assert merged["ocr"] == {"description": "x"}

    def test_newer_scalar_fields_win(self):
        merged = merge_image_records({"permalink_url": "old"}, {"permalink_url": "new"})
        assert merged["permalink_url"] == "new"


class TestImageStore:
    """Test the fan-out image store."""

    def test_fanout_path(self, cache):
        path = cache.images.path_for("e8dc3874")
        assert path.parts[-3:] == ("e", "8", "e8dc3874.json")

    def test_short_id_uses_placeholder(self, cache):
        assert cache.images.path_for("a").parts[-3:] == ("a", "_", "a.json")

    @pytest.mark.parametrize("image_id", ["", "../x", "a/b", ".hidden"])
    def test_rejects_unsafe_ids(self, cache, image_id):
        with pytest.raises(ValueError):
            cache.images.path_for(image_id)

    def test_missing_record_is_none(self, cache):
        assert cache.images.get("ab0001") is None
        assert not cache.images.exists("ab0001")

    def test_merge_writes_and_returns(self, cache, cache_files):
        cache_files.image("ab0001", {"image_id": "ab0001", "ocr": {"description": "text"}})

        merged = cache.images.merge("ab0001", {"image_id": "ab0001", "metadata": {"title": "T"}})

        assert merged["ocr"]["description"] == "text"
        assert cache_files.read_image("ab0001") == merged

    def test_prefer_existing_keeps_cached_fields(self, cache, cache_files):
        cache_files.image("ab0001", {"image_id": "ab0001", "metadata": {"title": "Detail"}})

        merged = cache.images.merge(
            "ab0001",
            {"image_id": "ab0001", "metadata": {"title": "List", "app": "Chrome"}},
            prefer_existing=True,
        )

        assert merged["metadata"] == {"title": "Detail", "app": "Chrome"}

    def test_corrupt_record_raises_on_read(self, cache, cache_files):
        cache_files.raw(cache.images.path_for("ab0001"), "{broken")
        with pytest.raises(CacheCorruptError):
            cache.images.get("ab0001")

    def test_corrupt_record_is_replaced_on_merge(self, cache, cache_files):
        cache_files.raw(cache.images.path_for("ab0001"), "[1, 2]")

        merged = cache.images.merge("ab0001", {"image_id": "ab0001"})

        assert merged == {"image_id": "ab0001"}
        assert cache.images.get("ab0001") == {"image_id": "ab0001"}

    def test_no_temp_file_left_behind(self, cache):
        cache.images.put("ab0001", {"image_id": "ab0001"})
        parent = cache.images.path_for("ab0001").parent
        assert [p.name for p in parent.iterdir()] == ["ab0001.json"]


class TestHourlyIndex:
    """Test hour bucket id lists."""

    def test_absent_bucket_is_none(self, cache):
        assert cache.hourly.read_ids(BucketKey(2026, 1, 1, 0)) is None

    def test_add_ids_unions_in_first_seen_order(self, cache, cache_files):
        key = BucketKey(2026, 2, 20, 2)
        cache_files.index("2026-02-20-02", ["b", "a"])

        stored = cache.hourly.add_ids(key, ["a", "c", "c"])

        assert stored == ["b", "a", "c"]
        assert cache_files.read_hourly("2026-02-20-02") == ["b", "a", "c"]

    def test_layout(self, cache):
        path = cache.hourly.path_for(BucketKey(2026, 2, 3, 4))
        assert path.parts[-5:] == ("hourly", "2026", "02", "03", "04.json")

    def test_corrupt_index_is_rebuilt(self, cache, cache_files):
        key = BucketKey(2026, 2, 20, 2)
        cache_files.raw(cache.hourly.path_for(key), "{}")

        with pytest.raises(CacheCorruptError):
            cache.hourly.read_ids(key)
        assert cache.hourly.add_ids(key, ["x"]) == ["x"]

    def test_ids_for_buckets_skips_corrupt(self, cache, cache_files):
        cache_files.index("2026-02-20-01", ["a", "b"])
        cache_files.raw(cache.hourly.path_for(BucketKey(2026, 2, 20, 2)), "oops")
        cache_files.index("2026-02-20-03", ["b", "c"])

        keys = [BucketKey(2026, 2, 20, h) for h in (1, 2, 3, 4)]

        assert cache.ids_for_buckets(keys) == ["a", "b", "c"]


class TestHourlyMetadata:
    """Test per-dimension hourly metadata files."""

    def test_normalize_values_dedupes_case_insensitively(self):
        assert normalize_values([" Chrome ", "chrome", "", None, "Safari"]) == ["Chrome", "Safari"]

    def test_normalize_values_wraps_scalars(self):
        assert normalize_values("x.com") == ["x.com"]
        assert normalize_values(42) == ["42"]

    def test_normalize_entries(self):
        assert normalize_entries({"a": ["B", "b"], "c": None}) == {"a": ["B"], "c": []}
        assert normalize_entries(["not", "a", "dict"]) == {}

    def test_write_then_read(self, cache, cache_files):
        key = BucketKey(2026, 2, 18, 9)
        cache.metadata.write_entries("tags", key, {"i1": ["beta", "Beta"], "i2": []})

        assert cache_files.read_hourly("2026-02-18-09", "tags") == {"i1": ["beta"], "i2": []}
        assert cache.metadata.read_entries("tags", key) == {"i1": ["beta"], "i2": []}

    def test_read_normalizes_legacy_values(self, cache, cache_files):
        cache_files.meta("2026-02-18-09", "apps", {"i1": "Chrome"})
        assert cache.metadata.read_entries("apps", BucketKey(2026, 2, 18, 9)) == {"i1": ["Chrome"]}

    def test_unknown_dimension_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.metadata.path_for("colors", BucketKey(2026, 1, 1, 0))


class TestAltTextSupplement:
    """Test alt text recovery from the search shadow store."""

    def test_recovers_from_search_hit(self, cache, cache_files):
        cache_files.search_image("dd01", {"image_id": "dd01", "alt_text": "Recovered"})

        record, needs_write = cache.supplement_alt_text({"image_id": "dd01", "alt_text": ""})

        assert needs_write
        assert record["alt_text"] == "Recovered"

    def test_existing_alt_text_untouched(self, cache, cache_files):
        cache_files.search_image("dd01", {"image_id": "dd01", "alt_text": "Other"})

        record, needs_write = cache.supplement_alt_text({"image_id": "dd01", "alt_text": "Mine"})

        assert not needs_write
        assert record["alt_text"] == "Mine"

    def test_no_search_hit(self, cache):
        record = {"image_id": "dd01"}
        assert cache.supplement_alt_text(record) == (record, False)

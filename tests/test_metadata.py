# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for metadata extraction and display summaries.
"""

from datetime import datetime, timedelta, timezone

import pytest

from gyazocli.metadata import (
    clean_japanese_address,
    clean_social_title,
    clean_text,
    extract_values,
    parse_hostname,
    summarize_for_list,
    summarize_text,
    top_objects,
)
from gyazocli.models import Dimension, ImageRecord, parse_created_at

from conftest import local_iso


def record_with(**metadata):
    return {"image_id": "ab000001", "metadata": metadata}


JA_COMPONENTS = [
    {"long_name": "竜泉", "short_name": "竜泉", "types": ["sublocality", "sublocality_level_2"]},
    {"long_name": "台東区", "short_name": "台東区", "types": ["locality", "political"]},
    {"long_name": "東京都", "short_name": "東京都", "types": ["administrative_area_level_1"]},
    {"long_name": "日本", "short_name": "JP", "types": ["country"]},
]


class TestApps:
    """Test app extraction."""

    def test_app_name(self):
        assert extract_values(record_with(app="  Google   Chrome "), "apps") == ["Google Chrome"]

    def test_missing_metadata(self):
        assert extract_values({"image_id": "x"}, Dimension.APPS) == []
        assert extract_values(None, Dimension.APPS) == []


class TestDomains:
    """Test domain extraction."""

    @pytest.mark.parametrize("url,expected", [
        ("https://www.example.com/page", ["example.com"]),
        ("https://X.com/user/status/1", ["x.com"]),
        ("example.org/path", ["example.org"]),
        ("", []),
        ("not a url", []),
    ])
    def test_hostnames(self, url, expected):
        assert extract_values(record_with(url=url), "domains") == expected

    def test_parse_hostname_retries_with_scheme(self):
        assert parse_hostname("gyazo.com/abc") == "gyazo.com"
        assert parse_hostname(None) is None


class TestTags:
    """Test tag extraction."""

    def test_markers_stripped_and_deduped(self):
        values = extract_values(record_with(links=["#alpha", "Alpha", "＃ beta", "beta"]), "tags")
        assert values == ["alpha", "beta"]

    def test_link_objects_and_scalar(self):
        assert extract_values(record_with(links={"tag": "#one"}), "tags") == ["one"]
        assert extract_values(record_with(links=[{"name": "two"}, {"url": "x"}, 3]), "tags") == ["two"]


class TestLocations:
    """Test location resolution priority."""

    def test_bare_string(self):
        assert extract_values(record_with(exif_address=" 東京都台東区竜泉 "), "locations") == ["東京都台東区竜泉"]

    def test_japanese_components(self):
        address = {"ja": {"address": "日本、〒110-0012 東京都台東区竜泉３丁目", "address_components": JA_COMPONENTS}}
        assert extract_values(record_with(exif_address=address), "locations") == ["東京都台東区竜泉"]

    def test_sublocality_priority(self):
        components = [
            {"long_name": "一丁目", "types": ["sublocality_level_3"]},
            {"long_name": "丸の内", "types": ["sublocality_level_1"]},
            {"long_name": "千代田区", "types": ["locality"]},
            {"long_name": "東京都", "types": ["administrative_area_level_1"]},
        ]
        address = {"ja": {"address_components": components}}
        assert extract_values(record_with(exif_address=address), "locations") == ["東京都千代田区丸の内"]

    def test_japanese_raw_address_cleanup(self):
        address = {"ja": {"address": "日本、〒110-0012 東京都台東区竜泉３丁目１５−２"}}
        assert extract_values(record_with(exif_address=address), "locations") == ["東京都台東区竜泉"]

    def test_japanese_preferred_over_english(self):
        address = {
            "en": {"address": "Ryusen, Taito City, Tokyo"},
            "ja": {"address_components": JA_COMPONENTS},
        }
        assert extract_values(record_with(exif_address=address), "locations") == ["東京都台東区竜泉"]

    def test_english_components_reversed(self):
        components = [
            {"long_name": "Ryusen", "types": ["sublocality_level_2"]},
            {"long_name": "Taito City", "types": ["locality"]},
            {"long_name": "Tokyo", "types": ["administrative_area_level_1"]},
        ]
        address = {"en": {"address": "ignored", "address_components": components}}
        assert extract_values(record_with(exif_address=address), "locations") == ["Ryusen, Taito City, Tokyo"]

    def test_english_raw_address(self):
        address = {"en": {"address": "  1 Main St,\n Springfield "}}
        assert extract_values(record_with(exif_address=address), "locations") == ["1 Main St, Springfield"]

    def test_other_locale_fallback(self):
        address = {"fr": {"address": "Paris"}}
        assert extract_values(record_with(exif_address=address), "locations") == ["Paris"]

    def test_clean_japanese_address(self):
        assert clean_japanese_address("〒100-0005 東京都千代田区丸の内1-9-1") == "東京都千代田区丸の内"


class TestText:
    """Test text helpers."""

    def test_clean_text_strips_urls(self):
        assert clean_text("see https://t.co/abc  and www.example.com now") == "see and now"

    def test_clean_social_title(self):
        assert clean_social_title("XユーザーのMagia Charmさん / X") == "Magia Charmさん"

    def test_parse_created_at_converts_to_local(self):
        parsed = parse_created_at(local_iso(2026, 2, 20, 2, 34))
        assert parsed.tzinfo is None
        assert (parsed.hour, parsed.minute) == (2, 34)

    def test_parse_created_at_compact_offset(self):
        expected = datetime(2014, 5, 21, 14, 23, 10, tzinfo=timezone(timedelta(hours=9)))
        parsed = parse_created_at("2014-05-21 14:23:10+0900")
        assert parsed == expected.astimezone().replace(tzinfo=None)

    def test_parse_created_at_fraction_and_zulu(self):
        expected = datetime(2026, 2, 20, 8, 0, 0, 123400, tzinfo=timezone.utc)
        parsed = parse_created_at("2026-02-20T08:00:00.1234Z")
        assert parsed == expected.astimezone().replace(tzinfo=None)

    def test_parse_created_at_rejects_garbage(self):
        assert parse_created_at("yesterday") is None
        assert parse_created_at(None) is None


class TestSummaries:
    """Test one-line list summaries."""

    def test_social_summary(self):
        record = {
            "image_id": "e8dc3874af069907bce5bd77fa33efd8",
            "created_at": local_iso(2026, 2, 20, 2, 34, 56),
            "metadata": {
                "url": "https://x.com/example/status/1",
                "title": "XユーザーのMagia Charmさん / X",
                "desc": "「重ね着風で一見ワンピースにも見えるロンT🎀」 https://t.co/Y9bxsrGaH7",
                "exif_address": "東京都台東区竜泉",
            },
        }

        line = summarize_for_list(record)

        assert line.startswith("[2026-02-20 02:34] [x.com] [東京都台東区竜泉] Magia Charmさん")
        assert line.endswith("(id: e8dc...)")
        assert "Xユーザーの" not in line
        assert "https://t.co/" not in line

    def test_falls_back_to_alt_text_then_ocr(self):
        alt = ImageRecord.from_dict({"image_id": "a", "alt_text": "A cat", "ocr": {"description": "OCR"}})
        ocr = ImageRecord.from_dict({"image_id": "a", "ocr": {"description": "\nfirst\nsecond"}})

        assert summarize_text(alt) == "A cat"
        assert summarize_text(ocr) == "first"

    def test_truncation(self):
        record = ImageRecord.from_dict(record_with(title="x" * 300))
        summary = summarize_text(record, max_length=20)
        assert len(summary) == 20
        assert summary.endswith("…")


class TestObjects:
    """Test object annotation ordering."""

    def test_dedupe_and_sort(self):
        record = {
            "image_id": "cc01",
            "localized_object_annotations": [
                {"name": "cat", "score": 0.6},
                {"name": "cat", "score": 0.8},
                {"name": "dog", "score": 0.7},
                {"name": "ant", "score": 0.7},
                {"score": 0.9},
            ],
        }

        assert [(o.name, o.score) for o in top_objects(record)] == [
            ("cat", 0.8), ("ant", 0.7), ("dog", 0.7),
        ]

# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Metadata extraction for Gyazo images.
Turns an image record into normalized value lists per ranking dimension
(app, domain, tag, location) and builds one-line display summaries.

All extractors are pure and total: they never raise and return an empty
list when the record carries no usable value.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

from .cache_manager import normalize_values
from .models import AddressEntry, Dimension, ExifAddress, ImageRecord, ObjectAnnotation

WHITESPACE_RE = re.compile(r"\s+")
INLINE_URL_RE = re.compile(r"https?://\S+|(?<!\S)www\.\S+")
TAG_MARKER_RE = re.compile(r"^[#＃\s]+")

# Japanese raw address cleanup
JA_COUNTRY_RE = re.compile(r"^\s*日本[、,\s]*")
JA_POSTAL_RE = re.compile(
    r"^(?:〒\s*[0-9０-９]{3}[-‐－−]?[0-9０-９]{4}|[0-9０-９]{3}[-‐－−][0-9０-９]{4})\s*"
)
JA_HOUSE_NUMBER_RE = re.compile(r"(?:[\s0-9０-９\-‐－−―]|丁目|番地|番|号)+$")

# Social page titles: "Xユーザーの<name>さん / X"
SOCIAL_HOSTS = ("x.com", "twitter.com")
SOCIAL_PREFIX_RE = re.compile(r"^(?:X|Twitter)\s*ユーザーの\s*")
SOCIAL_SUFFIX_RE = re.compile(r"\s*/\s*(?:X|Twitter)\s*$")

# Sublocality levels tried for the finest Japanese label, first hit wins
SUBLOCALITY_TYPES = ("sublocality_level_2", "sublocality_level_1", "sublocality_level_3")
PREFECTURE_TYPE = "administrative_area_level_1"
LOCALITY_TYPE = "locality"


def collapse_whitespace(text: Optional[str]) -> str:
    """Trim and collapse runs of whitespace to single spaces."""
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip()


def strip_inline_urls(text: Optional[str]) -> str:
    """Remove http(s) URLs and bare www. tokens."""
    if not text:
        return ""
    return INLINE_URL_RE.sub(" ", text)


def clean_text(text: Optional[str]) -> str:
    """Strip inline URLs and collapse whitespace, for display summaries."""
    return collapse_whitespace(strip_inline_urls(text))


def _as_record(record: Union[ImageRecord, Dict[str, Any], None]) -> ImageRecord:
    if isinstance(record, ImageRecord):
        return record
    return ImageRecord.from_dict(record)


# --- Apps -------------------------------------------------------------------

def extract_apps(record: ImageRecord) -> List[str]:
    """Source application name."""
    if record.metadata is None:
        return []
    return normalize_values([collapse_whitespace(record.metadata.app)])


# --- Domains ----------------------------------------------------------------

def parse_hostname(url: Optional[str]) -> Optional[str]:
    """
    Return the hostname of a URL, retrying with an https:// prefix.

    Returns:
        Lower-case hostname or None if the text does not look like a URL.
    """
    text = (url or "").strip()
    if not text:
        return None

    for candidate in (text, f"https://{text}"):
        try:
            hostname = urlparse(candidate).hostname
        except ValueError:
            continue
        if hostname and not WHITESPACE_RE.search(hostname):
            return hostname
    return None


def extract_domains(record: ImageRecord) -> List[str]:
    """Hostname of the originating page, without a leading www."""
    if record.metadata is None:
        return []
    hostname = parse_hostname(record.metadata.url)
    if not hostname:
        return []
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return normalize_values([hostname])


# --- Tags -------------------------------------------------------------------

def normalize_tag(text: Optional[str]) -> str:
    """Strip leading #/＃ markers and normalize whitespace."""
    return collapse_whitespace(TAG_MARKER_RE.sub("", text or ""))


def extract_tags(record: ImageRecord) -> List[str]:
    """Tags carried by the metadata links."""
    if record.metadata is None:
        return []
    return normalize_values([normalize_tag(link) for link in record.metadata.links])


# --- Locations --------------------------------------------------------------

def clean_japanese_address(address: Optional[str]) -> str:
    """Drop the country marker, postal code and trailing house numbers."""
    text = collapse_whitespace(address)
    text = JA_COUNTRY_RE.sub("", text)
    text = JA_POSTAL_RE.sub("", text)
    text = JA_HOUSE_NUMBER_RE.sub("", text)
    return text.strip()


def _finest_sublocality(entry: AddressEntry) -> Optional[str]:
    for component_type in SUBLOCALITY_TYPES:
        name = entry.find(component_type)
        if name:
            return name
    return None


def _component_parts(entry: AddressEntry) -> List[str]:
    """Prefecture, locality, finest sublocality (coarse to fine)."""
    parts = [
        entry.find(PREFECTURE_TYPE),
        entry.find(LOCALITY_TYPE),
        _finest_sublocality(entry),
    ]
    return [part for part in parts if part]


def _japanese_label(entry: AddressEntry) -> str:
    parts = _component_parts(entry)
    if parts:
        return "".join(parts)
    return clean_japanese_address(entry.address)


def _english_label(entry: AddressEntry) -> str:
    parts = _component_parts(entry)
    if parts:
        return ", ".join(reversed(parts))
    return collapse_whitespace(entry.address)


def resolve_location(address: Optional[ExifAddress]) -> Optional[str]:
    """
    Resolve an address block to a single location label.

    Priority: bare string label, then the Japanese entry, then the English
    entry, then any other locale's raw address.
    """
    if address is None:
        return None

    if address.label is not None:
        return address.label.strip() or None

    ja = address.locales.get("ja")
    if ja is not None:
        label = _japanese_label(ja)
        if label:
            return label

    en = address.locales.get("en")
    if en is not None:
        label = _english_label(en)
        if label:
            return label

    for locale, entry in address.locales.items():
        if locale in ("ja", "en"):
            continue
        label = collapse_whitespace(entry.address)
        if label:
            return label

    return None


def extract_locations(record: ImageRecord) -> List[str]:
    """Location label from the address block."""
    if record.metadata is None:
        return []
    return normalize_values([resolve_location(record.metadata.exif_address)])


EXTRACTORS: Dict[Dimension, Callable[[ImageRecord], List[str]]] = {
    Dimension.APPS: extract_apps,
    Dimension.DOMAINS: extract_domains,
    Dimension.TAGS: extract_tags,
    Dimension.LOCATIONS: extract_locations,
}


def extract_values(
    record: Union[ImageRecord, Dict[str, Any], None],
    dimension: Union[Dimension, str]
) -> List[str]:
    """
    Extract one dimension's values from a typed or raw record.

    Args:
        record: ImageRecord or raw cached JSON.
        dimension: Dimension to extract.

    Returns:
        Normalized values (empty if none).
    """
    return EXTRACTORS[Dimension(dimension)](_as_record(record))


# --- Display summaries ------------------------------------------------------

def is_social_host(hostname: Optional[str]) -> bool:
    """True for x.com / twitter.com and their subdomains."""
    if not hostname:
        return False
    return any(hostname == host or hostname.endswith("." + host) for host in SOCIAL_HOSTS)


def clean_social_title(text: Optional[str]) -> str:
    """Strip the "<service> user's" prefix and " / X" suffix of social page titles."""
    text = collapse_whitespace(text)
    text = SOCIAL_PREFIX_RE.sub("", text)
    text = SOCIAL_SUFFIX_RE.sub("", text)
    return text.strip()


def summarize_text(record: ImageRecord, max_length: int = 120) -> str:
    """
    Build a short human-readable description of an image.

    Uses the page title and description, falling back to alt text and
    then the first OCR line.
    """
    meta = record.metadata
    title = meta.title if meta else None
    desc = meta.desc if meta else None

    if meta and is_social_host(parse_hostname(meta.url)):
        title = clean_social_title(title)
        desc = clean_social_title(desc)

    parts: List[str] = []
    for text in (title, desc):
        cleaned = clean_text(text)
        if cleaned and cleaned not in parts:
            parts.append(cleaned)

    if not parts:
        ocr_lines = (record.ocr_text or "").strip().splitlines()
        for text in (record.alt_text, ocr_lines[0] if ocr_lines else None):
            cleaned = clean_text(text)
            if cleaned:
                parts.append(cleaned)
                break

    summary = " ".join(parts)
    if len(summary) > max_length:
        summary = summary[:max_length - 1].rstrip() + "…"
    return summary


def format_created_at(record: ImageRecord) -> str:
    """Local creation time as ``yyyy-mm-dd HH:MM`` (empty if unknown)."""
    created = record.created
    if created is None:
        return ""
    return created.strftime("%Y-%m-%d %H:%M")


def short_id(image_id: str) -> str:
    return f"{image_id[:4]}..." if len(image_id) > 4 else image_id


def summarize_for_list(record: Union[ImageRecord, Dict[str, Any]]) -> str:
    """
    One-line list entry:
    ``[yyyy-mm-dd HH:MM] [domain] [location] summary (id: abcd...)``.
    """
    record = _as_record(record)
    fields = []

    created = format_created_at(record)
    if created:
        fields.append(f"[{created}]")

    for values in (extract_domains(record), extract_locations(record)):
        if values:
            fields.append(f"[{values[0]}]")

    summary = summarize_text(record)
    if summary:
        fields.append(summary)

    fields.append(f"(id: {short_id(record.image_id)})")
    return " ".join(fields)


def top_objects(record: Union[ImageRecord, Dict[str, Any]]) -> List[ObjectAnnotation]:
    """Object annotations deduplicated by name (max score), score-desc then name-asc."""
    record = _as_record(record)
    best: Dict[str, float] = {}
    for annotation in record.objects:
        if annotation.score > best.get(annotation.name, float("-inf")):
            best[annotation.name] = annotation.score
    return [
        ObjectAnnotation(name=name, score=score)
        for name, score in sorted(best.items(), key=lambda item: (-item[1], item[0]))
    ]

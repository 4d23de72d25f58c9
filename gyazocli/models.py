# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Typed views over Gyazo image payloads.

The cache stores raw API JSON so that no field is ever lost; these dataclasses
are built from that JSON on demand for extraction and display. Every
``from_dict`` is total: unexpected shapes become empty/None fields, never
exceptions.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

# Keys of a "links" object that can carry the tag text, in priority order
LINK_TEXT_KEYS = ("tag", "name", "title", "text", "keyword")


def _str_or_none(value: Any) -> Optional[str]:
    """Return value if it is a string, else None."""
    return value if isinstance(value, str) else None


_COMPACT_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")
_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_created_at(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 creation timestamp into a naive local datetime.

    Timestamps with an offset are converted to the local timezone first so
    that bucketing follows the local calendar.

    Returns:
        datetime or None if the value is missing or malformed.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 wants "+HH:MM" and 3 or 6 fraction digits
    text = _COMPACT_OFFSET_RE.sub(r"\1:\2", text)
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass
class AddressComponent:
    """One structured address component (Google geocoder style)."""
    long_name: str = ""
    short_name: str = ""
    types: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return (self.long_name or self.short_name).strip()

    @classmethod
    def from_dict(cls, data: Any) -> Optional["AddressComponent"]:
        if not isinstance(data, dict):
            return None
        types = data.get("types")
        return cls(
            long_name=_str_or_none(data.get("long_name")) or "",
            short_name=_str_or_none(data.get("short_name")) or "",
            types=[t for t in types if isinstance(t, str)] if isinstance(types, list) else [],
        )


@dataclass
class AddressEntry:
    """Address for a single locale: free text plus optional components."""
    address: Optional[str] = None
    components: List[AddressComponent] = field(default_factory=list)

    def find(self, component_type: str) -> Optional[str]:
        """Return the first component name carrying the given type."""
        for component in self.components:
            if component_type in component.types and component.name:
                return component.name
        return None

    @classmethod
    def from_value(cls, value: Any) -> Optional["AddressEntry"]:
        if isinstance(value, str):
            return cls(address=value)
        if not isinstance(value, dict):
            return None
        raw_components = value.get("address_components")
        components = []
        if isinstance(raw_components, list):
            for raw in raw_components:
                component = AddressComponent.from_dict(raw)
                if component is not None:
                    components.append(component)
        return cls(address=_str_or_none(value.get("address")), components=components)


@dataclass
class ExifAddress:
    """
    Address block of an image.

    Either a bare string label or a mapping of locale -> AddressEntry.
    """
    label: Optional[str] = None
    locales: Dict[str, AddressEntry] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> Optional["ExifAddress"]:
        if isinstance(value, str):
            return cls(label=value)
        if not isinstance(value, dict):
            return None
        locales = {}
        for locale, raw in value.items():
            entry = AddressEntry.from_value(raw)
            if entry is not None:
                locales[str(locale)] = entry
        return cls(locales=locales)


@dataclass
class ImageMetadata:
    """Structured metadata block attached to an image."""
    app: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    desc: Optional[str] = None
    links: List[str] = field(default_factory=list)  # Raw tag-carrier texts
    exif_address: Optional[ExifAddress] = None

    @staticmethod
    def _link_text(link: Any) -> Optional[str]:
        if isinstance(link, str):
            return link
        if isinstance(link, dict):
            for key in LINK_TEXT_KEYS:
                text = link.get(key)
                if isinstance(text, str) and text.strip():
                    return text
        return None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ImageMetadata"]:
        if not isinstance(data, dict):
            return None

        raw_links = data.get("links")
        if isinstance(raw_links, (str, dict)):
            raw_links = [raw_links]
        links = []
        if isinstance(raw_links, list):
            for link in raw_links:
                text = cls._link_text(link)
                if text is not None:
                    links.append(text)

        return cls(
            app=_str_or_none(data.get("app")),
            title=_str_or_none(data.get("title")),
            url=_str_or_none(data.get("url")),
            desc=_str_or_none(data.get("desc")),
            links=links,
            exif_address=ExifAddress.from_value(data.get("exif_address")),
        )


@dataclass
class ObjectAnnotation:
    """Object detected in an image."""
    name: str
    score: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ObjectAnnotation"]:
        if not isinstance(data, dict):
            return None
        name = None
        for key in ("name", "name_ja", "name_en"):
            name = _str_or_none(data.get(key))
            if name and name.strip():
                break
        if not name or not name.strip():
            return None
        try:
            score = float(data.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        return cls(name=name.strip(), score=score)


@dataclass
class ImageRecord:
    """Typed view of a cached Gyazo image."""
    image_id: str
    created_at: Optional[str] = None
    permalink_url: Optional[str] = None
    url: Optional[str] = None
    type: Optional[str] = None
    alt_text: Optional[str] = None
    ocr_text: Optional[str] = None
    metadata: Optional[ImageMetadata] = None
    objects: List[ObjectAnnotation] = field(default_factory=list)

    @property
    def created(self) -> Optional[datetime]:
        """Creation time as a naive local datetime."""
        return parse_created_at(self.created_at)

    @classmethod
    def from_dict(cls, data: Any) -> "ImageRecord":
        if not isinstance(data, dict):
            return cls(image_id="")

        ocr = data.get("ocr")
        ocr_text = _str_or_none(ocr.get("description")) if isinstance(ocr, dict) else None

        raw_objects = data.get("localized_object_annotations")
        if raw_objects is None:
            raw_objects = data.get("localizedObjectAnnotations")
        objects = []
        if isinstance(raw_objects, list):
            for raw in raw_objects:
                annotation = ObjectAnnotation.from_dict(raw)
                if annotation is not None:
                    objects.append(annotation)

        return cls(
            image_id=_str_or_none(data.get("image_id")) or "",
            created_at=_str_or_none(data.get("created_at")),
            permalink_url=_str_or_none(data.get("permalink_url")),
            url=_str_or_none(data.get("url")),
            type=_str_or_none(data.get("type")),
            alt_text=_str_or_none(data.get("alt_text")),
            ocr_text=ocr_text,
            metadata=ImageMetadata.from_dict(data.get("metadata")),
            objects=objects,
        )


class Dimension(str, Enum):
    """Ranking facet; the value doubles as the hourly cache file suffix."""
    APPS = "apps"
    DOMAINS = "domains"
    TAGS = "tags"
    LOCATIONS = "locations"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def singular(self) -> str:
        return self.value[:-1]

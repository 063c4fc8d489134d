"""Utilities for turning raw catalog and scrape payloads into canonical records."""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

import phonenumbers

from poi_catalog.core.models import (
    DEFAULT_CURRENCY,
    DEFAULT_PRICE_RANGE,
    Business,
    CatalogRecord,
    Contact,
    Location,
    Media,
    Ratings,
    ScrapedCandidate,
)
from poi_catalog.reconcile.categories import infer_category, is_valid_category

logger = logging.getLogger(__name__)

PRICE_MAP = {0: "$", 1: "$", 2: "$$", 3: "$$$", 4: "$$$$", 5: "$$$$$"}
PRICE_LEVEL_NAMES = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}

SHORT_DESCRIPTION_CHARS = 150
PLACEHOLDER_IMAGE_RX = re.compile(r"unsplash\.com|placehold|placeholder|no-image|default", re.IGNORECASE)
_SLUG_RX = re.compile(r"[^a-z0-9]+")

# Keys of the canonical record shape that are mapped onto dataclass fields.
_RECORD_KEYS = {
    "id", "name", "category", "subcategory", "description", "shortDescription",
    "location", "contact", "business", "ratings", "media", "tags", "keywords",
    "isActive", "isCurated", "createdAt", "updatedAt",
}


class RecordValidationError(ValueError):
    """Raised for a single malformed record; the record is skipped, the run continues."""


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            try:
                return int(digits)
            except ValueError:
                return None
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def sanitize_website(raw_url: Any) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""
    url = _strip_or_none(raw_url)
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    return urlunparse(parsed._replace(path=normalized_path, fragment=""))


def normalize_phone(raw_phone: Any, default_region: Optional[str] = None) -> Optional[str]:
    """Return an E.164 phone string, or the trimmed input when it cannot be parsed."""
    phone = _strip_or_none(raw_phone)
    if not phone:
        return None
    try:
        parsed = phonenumbers.parse(phone, default_region)
    except phonenumbers.NumberParseException:
        logger.debug("Unable to parse phone number %r", phone)
        return phone
    if not phonenumbers.is_possible_number(parsed):
        return phone
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def is_placeholder_image(url: Optional[str]) -> bool:
    if not url:
        return True
    return bool(PLACEHOLDER_IMAGE_RX.search(url))


def price_range_for(price_level: Optional[int]) -> str:
    if price_level is None:
        return DEFAULT_PRICE_RANGE
    return PRICE_MAP.get(price_level, DEFAULT_PRICE_RANGE)


def slugify(name: str, max_length: int = 30) -> str:
    slug = _SLUG_RX.sub("-", (name or "").lower()).strip("-")
    return slug[:max_length].strip("-") or "place"


def make_record_id(category: str, name: str, seed: str) -> str:
    """Build `<prefix>-<slug>-<suffix>`; the suffix is a stable hash of `seed`."""
    suffix = hashlib.sha1(seed.encode("utf-8")).hexdigest()[:6]
    return f"{category[:4]}-{slugify(name)}-{suffix}"


def candidate_seed(candidate: ScrapedCandidate) -> str:
    return "|".join([
        candidate.external_place_id or "",
        candidate.name.strip().lower(),
        f"{candidate.latitude}" if candidate.latitude is not None else "",
        f"{candidate.longitude}" if candidate.longitude is not None else "",
    ])


def default_description(name: str, category: str, district: str, island: str) -> str:
    parts = [district] if district else []
    if island and island != district:
        parts.append(island)
    place = ", ".join(parts) or "the Cayman Islands"
    return f"{name} is a {category.replace('_', ' ')} located in {place}."


def short_description_for(description: str) -> str:
    return (description or "")[:SHORT_DESCRIPTION_CHARS]


# ---------------------------------------------------------------------------
# Scraped candidates
# ---------------------------------------------------------------------------


def _extract_coordinates(raw: Dict[str, Any]) -> Tuple[Any, Any]:
    """Return the raw (lat, lng) pair from any of the supported source shapes."""
    geometry_location = _as_dict(_as_dict(raw.get("geometry")).get("location"))
    gps = _as_dict(raw.get("gps_coordinates"))
    location = _as_dict(raw.get("location"))
    coordinates = _as_dict(location.get("coordinates"))

    lat = _first(
        geometry_location.get("lat"),
        gps.get("latitude"),
        location.get("latitude"),
        location.get("lat"),
        coordinates.get("lat"),
        raw.get("latitude"),
        raw.get("lat"),
    )
    lng = _first(
        geometry_location.get("lng"),
        gps.get("longitude"),
        location.get("longitude"),
        location.get("lng"),
        coordinates.get("lng"),
        raw.get("longitude"),
        raw.get("lng"),
    )
    return lat, lng


def _parse_coordinates(raw: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    raw_lat, raw_lng = _extract_coordinates(raw)
    if raw_lat is None and raw_lng is None:
        return None, None
    lat = _safe_float(raw_lat)
    lng = _safe_float(raw_lng)
    if lat is None or lng is None:
        raise RecordValidationError(f"unparseable coordinates ({raw_lat!r}, {raw_lng!r})")
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise RecordValidationError(f"coordinates out of range ({lat}, {lng})")
    return lat, lng


def _extract_name(raw: Dict[str, Any]) -> Optional[str]:
    display_name = raw.get("displayName")
    if isinstance(display_name, dict):
        display_name = display_name.get("text")
    return _strip_or_none(_first(raw.get("name"), raw.get("title"), display_name))


def _extract_hours(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    legacy = _as_dict(raw.get("opening_hours"))
    new = _as_dict(raw.get("regularOpeningHours"))
    weekday_text = _as_str_list(legacy.get("weekday_text")) or _as_str_list(new.get("weekdayDescriptions"))
    if weekday_text:
        return {"weekdayText": weekday_text}
    hours = raw.get("hours") or raw.get("operating_hours")
    if isinstance(hours, dict) and hours:
        return dict(hours)
    return None


def _extract_price_level(raw: Dict[str, Any]) -> Optional[int]:
    value = _first(raw.get("price_level"), raw.get("priceLevel"))
    if isinstance(value, str) and value in PRICE_LEVEL_NAMES:
        return PRICE_LEVEL_NAMES[value]
    if isinstance(value, str) and value and set(value) == {"$"}:
        return len(value)
    return _safe_int(value)


def _extract_images(raw: Dict[str, Any]) -> Tuple[Optional[str], List[str]]:
    media = _as_dict(raw.get("media"))
    images = _as_str_list(raw.get("images")) or _as_str_list(media.get("images"))
    if not images and isinstance(raw.get("photos"), list):
        images = [
            photo["url"].strip()
            for photo in raw["photos"]
            if isinstance(photo, dict) and isinstance(photo.get("url"), str) and photo["url"].strip()
        ]
    thumbnail = _strip_or_none(_first(raw.get("thumbnail"), media.get("thumbnail")))
    if not thumbnail and images:
        thumbnail = images[0]
    return thumbnail, images


def _extract_types(raw: Dict[str, Any]) -> List[str]:
    types = _as_str_list(raw.get("types"))
    if not types and isinstance(raw.get("type"), str):
        types = [raw["type"].strip().lower().replace(" ", "_")]
    primary = _strip_or_none(raw.get("primaryType"))
    if primary and primary not in types:
        types.insert(0, primary)
    return types


def to_candidate(raw: Any, default_phone_region: Optional[str] = None, source: str = "scrape") -> ScrapedCandidate:
    """Normalize one raw scraped place (Google Places, SerpAPI or catalog shaped)."""
    if not isinstance(raw, dict):
        raise RecordValidationError(f"expected an object, got {type(raw).__name__}")

    name = _extract_name(raw)
    if not name:
        raise RecordValidationError("missing name")

    latitude, longitude = _parse_coordinates(raw)
    location = _as_dict(raw.get("location"))
    contact = _as_dict(raw.get("contact"))
    ratings = _as_dict(raw.get("ratings"))
    editorial = raw.get("editorial_summary") or raw.get("editorialSummary")
    if isinstance(editorial, dict):
        editorial = _first(editorial.get("overview"), editorial.get("text"))
    thumbnail, images = _extract_images(raw)

    rating = _safe_float(_first(raw.get("rating"), ratings.get("overall"), ratings.get("externalRating")))
    review_count = _safe_int(_first(
        raw.get("user_ratings_total"),
        raw.get("userRatingCount"),
        raw.get("reviews_count"),
        raw.get("reviews"),
        ratings.get("reviewCount"),
    ))

    return ScrapedCandidate(
        name=name,
        address=_strip_or_none(_first(
            raw.get("formatted_address"),
            raw.get("formattedAddress"),
            raw.get("address") if not isinstance(raw.get("address"), dict) else None,
            location.get("address"),
        )),
        latitude=latitude,
        longitude=longitude,
        external_place_id=_strip_or_none(_first(
            raw.get("place_id"),
            raw.get("placeId"),
            raw.get("id") if "displayName" in raw else None,
            location.get("externalPlaceId"),
            location.get("googlePlaceId"),
        )),
        phone=normalize_phone(
            _first(
                raw.get("international_phone_number"),
                raw.get("formatted_phone_number"),
                raw.get("internationalPhoneNumber"),
                raw.get("nationalPhoneNumber"),
                raw.get("phone"),
                contact.get("phone"),
            ),
            default_phone_region,
        ),
        website=sanitize_website(_first(raw.get("website"), raw.get("websiteUri"), contact.get("website"))),
        rating=rating if rating and rating > 0 else None,
        review_count=review_count,
        price_level=_extract_price_level(raw),
        types=_extract_types(raw),
        category=_strip_or_none(raw.get("category")),
        description=_strip_or_none(_first(raw.get("description"), editorial)),
        hours=_extract_hours(raw),
        thumbnail=thumbnail,
        images=images,
        source=source,
        raw_snapshot=raw,
    )


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------


def to_record(raw: Any) -> CatalogRecord:
    """Parse one canonical catalog entry, filling explicit defaults for optional fields.

    Contact values are kept verbatim; curated formatting is never rewritten.
    """
    if not isinstance(raw, dict):
        raise RecordValidationError(f"expected an object, got {type(raw).__name__}")

    name = _strip_or_none(raw.get("name"))
    if not name:
        raise RecordValidationError("missing name")

    latitude, longitude = _parse_coordinates(raw)
    location = _as_dict(raw.get("location"))
    contact = _as_dict(raw.get("contact"))
    business = _as_dict(raw.get("business"))
    ratings = _as_dict(raw.get("ratings"))
    media = _as_dict(raw.get("media"))

    category = _strip_or_none(raw.get("category")) or ""
    if not is_valid_category(category):
        inferred = infer_category([category] if category else [], name)
        logger.warning("Record %r has unknown category %r; using %r", name, category, inferred)
        category = inferred

    record_id = _strip_or_none(raw.get("id"))
    if not record_id:
        seed = f"{name.lower()}|{latitude}|{longitude}"
        record_id = make_record_id(category, name, seed)
        logger.warning("Record %r has no id; assigned %s", name, record_id)

    hours = business.get("hours", business.get("openingHours"))
    created_at = _strip_or_none(raw.get("createdAt")) or ""

    return CatalogRecord(
        id=record_id,
        name=name,
        category=category,
        subcategory=_strip_or_none(raw.get("subcategory")),
        description=_strip_or_none(raw.get("description")) or "",
        short_description=_strip_or_none(raw.get("shortDescription")) or "",
        location=Location(
            address=_strip_or_none(location.get("address")) or "",
            district=_strip_or_none(location.get("district")) or "",
            island=_strip_or_none(location.get("island")) or "",
            latitude=latitude,
            longitude=longitude,
            external_place_id=_strip_or_none(_first(location.get("externalPlaceId"), location.get("googlePlaceId"))),
        ),
        contact=Contact(
            phone=_strip_or_none(contact.get("phone")),
            website=_strip_or_none(contact.get("website")),
            email=_strip_or_none(contact.get("email")),
        ),
        business=Business(
            price_range=_strip_or_none(business.get("priceRange")) or DEFAULT_PRICE_RANGE,
            currency=_strip_or_none(business.get("currency")) or DEFAULT_CURRENCY,
            hours=dict(hours) if isinstance(hours, dict) and hours else None,
        ),
        ratings=Ratings(
            overall=_safe_float(ratings.get("overall")) or 0.0,
            review_count=_safe_int(ratings.get("reviewCount")) or 0,
            external_rating=_safe_float(_first(ratings.get("externalRating"), ratings.get("googleRating"))),
        ),
        media=Media(
            thumbnail=_strip_or_none(media.get("thumbnail")) or "",
            images=_as_str_list(media.get("images")),
        ),
        tags=_as_str_list(raw.get("tags")),
        keywords=_as_str_list(raw.get("keywords")),
        is_active=raw.get("isActive") is not False,
        is_curated=raw.get("isCurated") is True,
        created_at=created_at,
        updated_at=_strip_or_none(raw.get("updatedAt")) or created_at,
        extra={key: value for key, value in raw.items() if key not in _RECORD_KEYS},
    )


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def to_record_dict(record: CatalogRecord) -> Dict[str, Any]:
    """Serialize a record into the camelCase catalog shape."""
    data: Dict[str, Any] = {
        "id": record.id,
        "name": record.name,
        "category": record.category,
    }
    if record.subcategory:
        data["subcategory"] = record.subcategory
    data.update({
        "description": record.description,
        "shortDescription": record.short_description,
        "location": _drop_none({
            "address": record.location.address,
            "district": record.location.district,
            "island": record.location.island,
            "latitude": record.location.latitude,
            "longitude": record.location.longitude,
            "externalPlaceId": record.location.external_place_id,
        }),
        "contact": _drop_none({
            "phone": record.contact.phone,
            "website": record.contact.website,
            "email": record.contact.email,
        }),
        "business": _drop_none({
            "priceRange": record.business.price_range,
            "currency": record.business.currency,
            "hours": record.business.hours,
        }),
        "ratings": _drop_none({
            "overall": record.ratings.overall,
            "reviewCount": record.ratings.review_count,
            "externalRating": record.ratings.external_rating,
        }),
        "media": {
            "thumbnail": record.media.thumbnail,
            "images": list(record.media.images),
        },
        "tags": list(record.tags),
        "keywords": list(record.keywords),
        "isActive": record.is_active,
        "isCurated": record.is_curated,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    })
    for key, value in record.extra.items():
        data.setdefault(key, value)
    return data


def summarize(records: Iterable[CatalogRecord]) -> List[Dict[str, str]]:
    return [{"id": r.id, "name": r.name, "category": r.category} for r in records]

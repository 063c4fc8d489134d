"""Core data models shared by the reconciliation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_PRICE_RANGE = "$$"
DEFAULT_CURRENCY = "USD"


@dataclass(slots=True)
class Location:
    address: str = ""
    district: str = ""
    island: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    external_place_id: Optional[str] = None

    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class Contact:
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None


@dataclass(slots=True)
class Business:
    price_range: str = DEFAULT_PRICE_RANGE
    currency: str = DEFAULT_CURRENCY
    hours: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class Ratings:
    overall: float = 0.0
    review_count: int = 0
    external_rating: Optional[float] = None


@dataclass(slots=True)
class Media:
    thumbnail: str = ""
    images: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CatalogRecord:
    """Canonical point of interest as stored in the catalog file."""

    id: str
    name: str
    category: str
    subcategory: Optional[str] = None
    description: str = ""
    short_description: str = ""
    location: Location = field(default_factory=Location)
    contact: Contact = field(default_factory=Contact)
    business: Business = field(default_factory=Business)
    ratings: Ratings = field(default_factory=Ratings)
    media: Media = field(default_factory=Media)
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    is_active: bool = True
    is_curated: bool = False
    created_at: str = ""
    updated_at: str = ""
    # Unknown keys from the source file, written back untouched.
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ScrapedCandidate:
    """Normalized snapshot of a place returned by an external scrape."""

    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    external_place_id: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[int] = None
    types: List[str] = field(default_factory=list)
    category: Optional[str] = None
    description: Optional[str] = None
    hours: Optional[Dict[str, Any]] = None
    thumbnail: Optional[str] = None
    images: List[str] = field(default_factory=list)
    source: str = "scrape"
    raw_snapshot: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class MatchEvidence:
    """Why a candidate was judged to be the same place as an existing record."""

    record_id: str
    record_name: str
    rule: str
    similarity: float
    distance_meters: Optional[float] = None


@dataclass(slots=True)
class MergeDecision:
    candidate: ScrapedCandidate
    existing_id: Optional[str] = None
    evidence: Optional[MatchEvidence] = None

    @property
    def is_new(self) -> bool:
        return self.existing_id is None

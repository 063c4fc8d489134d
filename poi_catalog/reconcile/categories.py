"""Category, subcategory, tag and keyword inference.

All rules are ordered data evaluated top to bottom so they can be tested and
tuned without touching the pipeline.
"""

import re
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

DEFAULT_CATEGORY = "attraction"

CATEGORIES = frozenset({
    "hotel", "restaurant", "bar", "beach", "attraction", "activity", "transport",
    "nightlife", "shopping", "spa_wellness", "diving_snorkeling", "water_sports",
    "golf", "real_estate", "investment", "villa_rental", "boat_charter",
    "private_jet", "chauffeur", "concierge", "history", "culture", "wildlife",
    "weather", "visa_travel", "emergency", "general_info", "service",
    "financial_services", "legal_services",
})

TYPE_CATEGORY_RULES: Sequence[Tuple[str, str]] = (
    # accommodation
    ("lodging", "hotel"),
    ("hotel", "hotel"),
    ("resort", "hotel"),
    ("motel", "hotel"),
    ("guest_house", "villa_rental"),
    ("vacation_rental", "villa_rental"),
    # dining
    ("restaurant", "restaurant"),
    ("food", "restaurant"),
    ("cafe", "restaurant"),
    ("bakery", "restaurant"),
    ("bar", "bar"),
    ("night_club", "nightlife"),
    # beaches & water
    ("beach", "beach"),
    ("natural_feature", "beach"),
    ("diving", "diving_snorkeling"),
    ("scuba_diving", "diving_snorkeling"),
    ("park", "attraction"),
    # shopping
    ("shopping_mall", "shopping"),
    ("store", "shopping"),
    ("clothing_store", "shopping"),
    ("jewelry_store", "shopping"),
    # activities
    ("tourist_attraction", "attraction"),
    ("museum", "attraction"),
    ("art_gallery", "attraction"),
    ("amusement_park", "activity"),
    ("aquarium", "activity"),
    ("zoo", "activity"),
    ("spa", "spa_wellness"),
    ("gym", "activity"),
    ("golf_course", "golf"),
    # transportation
    ("car_rental", "transport"),
    ("taxi_stand", "transport"),
    ("airport", "transport"),
    ("travel_agency", "service"),
    # services
    ("bank", "financial_services"),
    ("atm", "financial_services"),
    ("lawyer", "legal_services"),
    ("real_estate_agency", "real_estate"),
    ("hospital", "emergency"),
    ("pharmacy", "emergency"),
    ("police", "emergency"),
)

NAME_CATEGORY_RULES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("hotel", "resort", "inn"), "hotel"),
    (("restaurant", "grill", "cafe"), "restaurant"),
    (("bar", "pub"), "bar"),
    (("beach",), "beach"),
    (("dive", "snorkel"), "diving_snorkeling"),
    (("spa", "wellness"), "spa_wellness"),
    (("yacht", "boat", "charter"), "boat_charter"),
    (("tour", "excursion"), "activity"),
    (("shop", "store", "boutique"), "shopping"),
)

_GENERIC_TYPES = {"point_of_interest", "establishment", "political", "premise"}

TAG_RULES: Sequence[Tuple[Pattern[str], str]] = tuple(
    (re.compile(pattern, re.IGNORECASE), tag)
    for pattern, tag in (
        (r"luxury|premium|five star|5 star", "luxury"),
        (r"family|kid|child", "family-friendly"),
        (r"beach|beachfront|oceanfront", "beachfront"),
        (r"romantic|honeymoon|couples", "romantic"),
        (r"dive|diving|scuba", "diving"),
        (r"snorkel", "snorkeling"),
        (r"spa|wellness|massage", "spa"),
        (r"pool", "pool"),
        (r"restaurant|dining|food", "dining"),
        (r"seafood|fish", "seafood"),
        (r"caribbean", "caribbean"),
        (r"local|authentic", "local"),
        (r"sunset", "sunset-views"),
        (r"water sport", "water-sports"),
        (r"golf", "golf"),
        (r"pet friendly|pet-friendly", "pet-friendly"),
        (r"all.?inclusive", "all-inclusive"),
    )
)

STOP_WORDS = frozenset({
    "the", "and", "for", "with", "from", "this", "that", "have", "are",
    "located", "into", "your", "their", "there", "which", "where", "while",
})
MAX_KEYWORDS = 15

_WORD_SPLIT = re.compile(r"\W+")


def is_valid_category(category: Optional[str]) -> bool:
    return category in CATEGORIES


def infer_category(source_types: Iterable[str], name: str) -> str:
    """Map source types first, then name keywords; never fails."""
    types = [str(t).strip().lower() for t in source_types or [] if t]
    for source_type in types:
        if source_type in CATEGORIES and source_type not in _GENERIC_TYPES:
            # Already in our vocabulary, e.g. a candidate tagged "beach".
            return source_type
        for type_name, category in TYPE_CATEGORY_RULES:
            if source_type == type_name:
                return category

    name_lower = (name or "").lower()
    for needles, category in NAME_CATEGORY_RULES:
        if any(needle in name_lower for needle in needles):
            return category
    return DEFAULT_CATEGORY


def infer_subcategory(source_types: Iterable[str]) -> Optional[str]:
    for type_name in source_types or []:
        if type_name and type_name not in _GENERIC_TYPES:
            return type_name
    return None


def infer_tags(category: str, name: str, description: str = "") -> List[str]:
    tags = [category]
    text = f"{name or ''} {description or ''}"
    for pattern, tag in TAG_RULES:
        if pattern.search(text) and tag not in tags:
            tags.append(tag)
    return tags


def infer_keywords(name: str, description: str = "", category: str = "", limit: int = MAX_KEYWORDS) -> List[str]:
    text = f"{name or ''} {description or ''} {category or ''}".lower()
    keywords: List[str] = []
    for word in _WORD_SPLIT.split(text):
        if len(word) <= 3 or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords

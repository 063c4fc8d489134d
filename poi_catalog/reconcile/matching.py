"""Identity matching between scraped candidates and catalog records."""

import logging
import math
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from poi_catalog.core.models import CatalogRecord, MatchEvidence, ScrapedCandidate

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000
DEFAULT_SIMILARITY_THRESHOLD = 0.85
DEFAULT_PROXIMITY_METERS = 100.0
PROXIMITY_MIN_SIMILARITY = 0.5

RULE_EXTERNAL_ID = "external_id"
RULE_NAME = "name"
RULE_PROXIMITY = "proximity"


def similarity(a: str, b: str) -> float:
    """1 - levenshtein(lower(a), lower(b)) / max length, in [0, 1]."""
    a_lower = (a or "").lower()
    b_lower = (b or "").lower()
    max_len = max(len(a_lower), len(b_lower))
    if max_len == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a_lower, b_lower) / max_len


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


class DuplicateResolver:
    """First-match-wins scan over existing records using id, name and proximity rules."""

    def __init__(
        self,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        proximity_meters: float = DEFAULT_PROXIMITY_METERS,
    ) -> None:
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        if proximity_meters < 0:
            raise ValueError("proximity_meters must not be negative")
        self.similarity_threshold = similarity_threshold
        self.proximity_meters = proximity_meters

    def evaluate(self, candidate: ScrapedCandidate, record: CatalogRecord) -> Optional[MatchEvidence]:
        candidate_pid = candidate.external_place_id
        record_pid = record.location.external_place_id
        score = similarity(candidate.name, record.name)

        distance = None
        if candidate.has_coordinates() and record.location.has_coordinates():
            distance = haversine_meters(
                candidate.latitude,
                candidate.longitude,
                record.location.latitude,
                record.location.longitude,
            )

        def evidence(rule: str) -> MatchEvidence:
            return MatchEvidence(
                record_id=record.id,
                record_name=record.name,
                rule=rule,
                similarity=round(score, 4),
                distance_meters=round(distance, 1) if distance is not None else None,
            )

        if candidate_pid and record_pid:
            # Two different provider ids are two different places.
            return evidence(RULE_EXTERNAL_ID) if candidate_pid == record_pid else None

        if score >= self.similarity_threshold:
            return evidence(RULE_NAME)
        if distance is not None and distance <= self.proximity_meters and score >= PROXIMITY_MIN_SIMILARITY:
            return evidence(RULE_PROXIMITY)
        return None

    def find_match(self, candidate: ScrapedCandidate, existing: Iterable[CatalogRecord]) -> Optional[MatchEvidence]:
        for record in existing:
            match = self.evaluate(candidate, record)
            if match is not None:
                logger.debug(
                    "Matched %r -> %s (%s, similarity=%.2f, distance=%s)",
                    candidate.name,
                    record.id,
                    match.rule,
                    match.similarity,
                    match.distance_meters,
                )
                return match
        return None

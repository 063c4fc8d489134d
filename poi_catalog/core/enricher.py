"""Places-backed enrichment of catalog records with resumable progress."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from poi_catalog.core.checkpoint import CheckpointStore, JobState
from poi_catalog.core.models import CatalogRecord
from poi_catalog.core.rate_limit import RateLimiter
from poi_catalog.etl.transform import RecordValidationError, now_iso, to_candidate
from poi_catalog.reconcile.matching import haversine_meters, similarity
from poi_catalog.reconcile.merge import MergeEngine
from poi_catalog.vendors import google_places
from poi_catalog.vendors.google_places import EnrichmentAPIError

logger = logging.getLogger(__name__)

RETRY_DELAYS = (1.0, 2.0, 5.0, 10.0)
DEFAULT_MAX_RETRIES = 4
SEARCH_RADIUS_METERS = 500
MIN_MATCH_CONFIDENCE = 60.0
NAME_WEIGHT = 0.7
LOCATION_WEIGHT = 0.3

STATUS_ENRICHED = "enriched"
STATUS_ALREADY_ENRICHED = "already_enriched"
STATUS_NOT_FOUND = "not_found"
STATUS_FAILED = "failed"


class PlacesClient:
    """Rate-limited, retrying facade over `poi_catalog.vendors.google_places`."""

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self._sleep = sleep

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            attempt += 1
            self.rate_limiter.acquire()
            try:
                return func(*args, **kwargs)
            except EnrichmentAPIError as exc:
                if not exc.retryable or attempt > self.max_retries:
                    logger.error("%s failed after %d attempt(s): %s", operation, attempt, exc)
                    raise
                delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    operation,
                    attempt,
                    self.max_retries + 1,
                    exc,
                    delay,
                )
                self._sleep(delay)

    def search(
        self,
        query: str,
        location: Optional[Tuple[float, float]] = None,
        radius: Optional[int] = None,
        pagetoken: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._call(
            "text_search",
            google_places.text_search,
            query=query,
            api_key=self.api_key,
            location=location,
            radius=radius,
            pagetoken=pagetoken,
        )

    def details(self, place_id: str) -> Dict[str, Any]:
        return self._call("place_details", google_places.place_details, place_id=place_id, api_key=self.api_key)

    def photo(self, photo_reference: str, max_width: int = 1200) -> Optional[str]:
        return self._call(
            "photo_url",
            google_places.photo_url,
            photo_reference=photo_reference,
            api_key=self.api_key,
            max_width=max_width,
        )


def _result_coordinates(result: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    location = (result.get("geometry") or {}).get("location") or {}
    lat, lng = location.get("lat"), location.get("lng")
    if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
        return float(lat), float(lng)
    return None, None


def score_result(
    name: str,
    latitude: Optional[float],
    longitude: Optional[float],
    result: Dict[str, Any],
) -> float:
    """Confidence 0-100 that a search result is the named place.

    Without coordinates on either side only the name counts.
    """
    name_score = similarity(name, str(result.get("name") or "")) * 100
    lat, lng = _result_coordinates(result)
    if latitude is None or longitude is None or lat is None or lng is None:
        return name_score
    distance = haversine_meters(latitude, longitude, lat, lng)
    location_score = max(0.0, 100 - distance / 10)
    return NAME_WEIGHT * name_score + LOCATION_WEIGHT * location_score


def find_best_match(
    name: str,
    latitude: Optional[float],
    longitude: Optional[float],
    results: Sequence[Dict[str, Any]],
    min_confidence: float = MIN_MATCH_CONFIDENCE,
) -> Optional[Dict[str, Any]]:
    best, best_score = None, -1.0
    for result in results:
        if not isinstance(result, dict) or not result.get("place_id"):
            continue
        score = score_result(name, latitude, longitude, result)
        if score > best_score:
            best, best_score = result, score
    if best is None or best_score < min_confidence:
        return None
    logger.debug("Best match for %r: %s (confidence %.1f)", name, best.get("place_id"), best_score)
    return best


@dataclass
class EnrichmentOutcome:
    record: CatalogRecord
    status: str
    changes: List[str] = field(default_factory=list)
    error: Optional[str] = None


class PlacesEnricher:
    def __init__(
        self,
        client: PlacesClient,
        engine: MergeEngine,
        default_phone_region: Optional[str] = None,
        max_photos: int = 5,
        search_radius: int = SEARCH_RADIUS_METERS,
    ) -> None:
        self.client = client
        self.engine = engine
        self.default_phone_region = default_phone_region
        self.max_photos = max_photos
        self.search_radius = search_radius

    @staticmethod
    def needs_enrichment(record: CatalogRecord) -> bool:
        return not (record.ratings.review_count > 0 and record.media.images)

    def _resolve_place_id(self, record: CatalogRecord) -> Optional[str]:
        if record.location.external_place_id:
            return record.location.external_place_id
        loc = record.location
        query = f"{record.name} {loc.island or 'Cayman Islands'}"
        bias = (loc.latitude, loc.longitude) if loc.has_coordinates() else None
        payload = self.client.search(query, location=bias, radius=self.search_radius if bias else None)
        best = find_best_match(record.name, loc.latitude, loc.longitude, payload.get("results") or [])
        return best.get("place_id") if best else None

    def _photo_urls(self, details: Dict[str, Any]) -> List[str]:
        urls = []
        for photo in (details.get("photos") or [])[: self.max_photos]:
            reference = photo.get("photo_reference") if isinstance(photo, dict) else None
            if not reference:
                continue
            url = self.client.photo(reference)
            if url:
                urls.append(url)
        return urls

    def enrich(self, record: CatalogRecord) -> EnrichmentOutcome:
        """Fetch place details for one record and merge them under the engine's policy.

        API failures leave the record untouched and come back as `failed`.
        """
        if not self.needs_enrichment(record):
            return EnrichmentOutcome(record, STATUS_ALREADY_ENRICHED)

        try:
            place_id = self._resolve_place_id(record)
            if not place_id:
                logger.info("No confident places match for %s (%s)", record.id, record.name)
                return EnrichmentOutcome(record, STATUS_NOT_FOUND)

            details = self.client.details(place_id)
            if not details:
                return EnrichmentOutcome(record, STATUS_NOT_FOUND)
            details = dict(details, place_id=place_id, images=self._photo_urls(details))
        except EnrichmentAPIError as exc:
            logger.error("Enrichment failed for %s (%s): %s", record.id, record.name, exc)
            return EnrichmentOutcome(record, STATUS_FAILED, error=str(exc))

        try:
            candidate = to_candidate(details, self.default_phone_region, source="google_places")
        except RecordValidationError as exc:
            logger.warning("Unusable place details for %s: %s", record.id, exc)
            return EnrichmentOutcome(record, STATUS_FAILED, error=str(exc))

        merged, changes = self.engine.merge(record, candidate)
        logger.info("Enriched %s: %s", record.id, ", ".join(changes) or "no changes")
        return EnrichmentOutcome(merged, STATUS_ENRICHED, changes)


@dataclass
class EnrichmentSummary:
    counts: Dict[str, int] = field(
        default_factory=lambda: {
            STATUS_ENRICHED: 0,
            STATUS_ALREADY_ENRICHED: 0,
            STATUS_NOT_FOUND: 0,
            STATUS_FAILED: 0,
            "resumed": 0,
            "filtered": 0,
        }
    )
    changes: List[Dict[str, Any]] = field(default_factory=list)
    completed: bool = False


def run_enrichment(
    records: List[CatalogRecord],
    enricher: PlacesEnricher,
    store: Optional[CheckpointStore] = None,
    batch_size: int = 50,
    limit: Optional[int] = None,
    persist: Optional[Callable[[List[CatalogRecord]], None]] = None,
    fresh: bool = False,
    category: Optional[str] = None,
    working_path: Optional[str] = None,
) -> Tuple[List[CatalogRecord], EnrichmentSummary]:
    """Enrich `records` in order, checkpointing every `batch_size` records.

    The working catalog is persisted before the checkpoint so a resumed run
    never skips a record whose enrichment was lost.

    Records outside `category`, when given, are left alone and do not count
    against `limit`. `working_path` is remembered in the checkpoint so a
    resumed run can pick up records persisted there.
    """
    records = list(records)
    summary = EnrichmentSummary()
    if store is not None and fresh:
        store.clear()
    state = store.load_or_new() if store is not None else JobState(started_at=now_iso())
    if working_path:
        state.output_path = working_path
    wanted = category.strip().lower() if category else None

    def checkpoint() -> None:
        if persist is not None:
            persist(records)
        if store is not None:
            store.save(state)

    sent = 0
    pending = 0
    stopped = False
    for index, record in enumerate(records):
        if state.is_processed(record.id):
            summary.counts["resumed"] += 1
            continue
        if wanted and record.category.lower() != wanted:
            summary.counts["filtered"] += 1
            continue
        if enricher.needs_enrichment(record):
            if limit is not None and sent >= limit:
                logger.info("Reached limit of %d records sent to the places service", limit)
                stopped = True
                break
            sent += 1

        outcome = enricher.enrich(record)
        records[index] = outcome.record
        summary.counts[outcome.status] += 1
        if outcome.status == STATUS_FAILED:
            state.mark_failed(record.id, index)
        else:
            state.mark_processed(record.id, index)
        if outcome.changes:
            summary.changes.append({"id": record.id, "name": record.name, "changes": outcome.changes})

        pending += 1
        if pending >= batch_size:
            checkpoint()
            pending = 0
            logger.info("Progress: %d/%d records processed", index + 1, len(records))

    summary.completed = not stopped
    if persist is not None:
        persist(records)
    if store is not None:
        if summary.completed:
            store.clear()
        else:
            store.save(state)

    logger.info(
        "Enrichment finished: enriched=%d already=%d not_found=%d failed=%d resumed=%d filtered=%d",
        summary.counts[STATUS_ENRICHED],
        summary.counts[STATUS_ALREADY_ENRICHED],
        summary.counts[STATUS_NOT_FOUND],
        summary.counts[STATUS_FAILED],
        summary.counts["resumed"],
        summary.counts["filtered"],
    )
    return records, summary

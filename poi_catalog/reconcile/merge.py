"""Field-level merge of scraped candidates into catalog records."""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set, Tuple

from poi_catalog.core.models import (
    DEFAULT_PRICE_RANGE,
    Business,
    CatalogRecord,
    Contact,
    Location,
    Media,
    MergeDecision,
    Ratings,
    ScrapedCandidate,
)
from poi_catalog.etl.transform import (
    candidate_seed,
    default_description,
    is_placeholder_image,
    make_record_id,
    now_iso,
    price_range_for,
    short_description_for,
)
from poi_catalog.reconcile.categories import (
    DEFAULT_CATEGORY,
    infer_category,
    infer_keywords,
    infer_subcategory,
    infer_tags,
    is_valid_category,
)
from poi_catalog.reconcile.geofence import Geofence
from poi_catalog.reconcile.matching import DuplicateResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergePolicy:
    """Which existing values a scrape may replace.

    Empty values are always filled. Non-empty values are replaced only when
    `preserve_curated` is off and the record is not curated, unless the
    operator opted into `overwrite_curated`.
    """

    preserve_curated: bool = False
    overwrite_curated: bool = False

    def may_overwrite(self, record: CatalogRecord) -> bool:
        if self.preserve_curated:
            return False
        return not record.is_curated or self.overwrite_curated


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, set, tuple)):
        return len(value) == 0
    return False


@dataclass
class ReconcileResult:
    records: List[CatalogRecord]
    decisions: List[MergeDecision] = field(default_factory=list)
    added: List[CatalogRecord] = field(default_factory=list)
    updated: List[Tuple[CatalogRecord, List[str]]] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)


class MergeEngine:
    def __init__(
        self,
        geofence: Geofence,
        policy: MergePolicy = MergePolicy(),
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.geofence = geofence
        self.policy = policy
        self.clock = clock

    # -- matched pairs -----------------------------------------------------

    def merge(self, existing: CatalogRecord, candidate: ScrapedCandidate) -> Tuple[CatalogRecord, List[str]]:
        """Return a merged copy of `existing` plus the names of the fields that changed."""
        merged = copy.deepcopy(existing)
        overwrite = self.policy.may_overwrite(existing)
        changes: List[str] = []

        def take(name: str, current: Any, new: Any, empty: bool = False) -> Any:
            if is_empty(new) or new == current:
                return current
            if empty or is_empty(current) or overwrite:
                changes.append(name)
                return new
            return current

        loc = merged.location
        generated = default_description(existing.name, existing.category, loc.district, loc.island)

        loc.address = take("location.address", loc.address, candidate.address)
        if not loc.external_place_id and candidate.external_place_id:
            loc.external_place_id = candidate.external_place_id
            changes.append("location.externalPlaceId")
        if not loc.has_coordinates() and candidate.has_coordinates():
            loc.latitude = candidate.latitude
            loc.longitude = candidate.longitude
            changes.append("location.coordinates")
            region = self.geofence.locate(loc.latitude, loc.longitude)
            if region is not None:
                loc.district, loc.island = region.name, region.island

        merged.contact.phone = take("contact.phone", merged.contact.phone, candidate.phone)
        merged.contact.website = take("contact.website", merged.contact.website, candidate.website)

        description = take(
            "description",
            merged.description,
            candidate.description,
            empty=merged.description == generated,
        )
        if description != merged.description:
            merged.description = description
            merged.short_description = short_description_for(description)

        if candidate.price_level is not None:
            merged.business.price_range = take(
                "business.priceRange",
                merged.business.price_range,
                price_range_for(candidate.price_level),
                empty=merged.business.price_range == DEFAULT_PRICE_RANGE,
            )
        merged.business.hours = take("business.hours", merged.business.hours, candidate.hours)
        merged.subcategory = take("subcategory", merged.subcategory, infer_subcategory(candidate.types))

        if (
            merged.category == DEFAULT_CATEGORY
            and not merged.is_curated
            and (candidate.types or candidate.category)
        ):
            inferred = self._candidate_category(candidate)
            merged.category = take("category", merged.category, inferred, empty=True)

        self._merge_ratings(merged, candidate, changes)
        self._merge_media(merged, candidate, overwrite, changes)

        for tag in infer_tags(merged.category, candidate.name, candidate.description or ""):
            if tag not in merged.tags:
                merged.tags.append(tag)
                if "tags" not in changes:
                    changes.append("tags")
        if not merged.keywords:
            merged.keywords = infer_keywords(merged.name, merged.description, merged.category)
            if merged.keywords:
                changes.append("keywords")

        merged.updated_at = self.clock()
        return merged, changes

    def _merge_ratings(self, merged: CatalogRecord, candidate: ScrapedCandidate, changes: List[str]) -> None:
        ratings = merged.ratings
        if candidate.rating:
            # Live signal: always refreshed.
            if ratings.external_rating != candidate.rating:
                ratings.external_rating = candidate.rating
                changes.append("ratings.externalRating")
            if (not self.policy.preserve_curated or not ratings.overall) and ratings.overall != candidate.rating:
                ratings.overall = candidate.rating
                changes.append("ratings.overall")
        if candidate.review_count and ratings.review_count != candidate.review_count:
            ratings.review_count = candidate.review_count
            changes.append("ratings.reviewCount")

    def _merge_media(
        self,
        merged: CatalogRecord,
        candidate: ScrapedCandidate,
        overwrite: bool,
        changes: List[str],
    ) -> None:
        if not candidate.images:
            return
        media = merged.media
        replace = overwrite or not media.images or all(is_placeholder_image(url) for url in media.images)
        if replace and media.images != candidate.images:
            media.images = list(candidate.images)
            media.thumbnail = candidate.thumbnail or candidate.images[0]
            changes.append("media")
        elif is_placeholder_image(media.thumbnail):
            # Real images stay; only the missing thumbnail is filled.
            media.thumbnail = candidate.thumbnail or candidate.images[0]
            changes.append("media.thumbnail")

    # -- unmatched candidates ----------------------------------------------

    @staticmethod
    def _candidate_category(candidate: ScrapedCandidate) -> str:
        if is_valid_category(candidate.category):
            return candidate.category
        types = list(candidate.types)
        if candidate.category:
            types.append(candidate.category)
        return infer_category(types, candidate.name)

    def create(self, candidate: ScrapedCandidate, taken_ids: Set[str]) -> CatalogRecord:
        """Convert an unmatched candidate into a new, non-curated catalog record."""
        region = self.geofence.locate(candidate.latitude, candidate.longitude)
        district = region.name if region else ""
        island = region.island if region else ""

        category = self._candidate_category(candidate)
        description = candidate.description or default_description(candidate.name, category, district, island)

        base_id = make_record_id(category, candidate.name, candidate_seed(candidate))
        record_id = base_id
        counter = 2
        while record_id in taken_ids:
            record_id = f"{base_id}-{counter}"
            counter += 1

        images = list(candidate.images)
        timestamp = self.clock()
        return CatalogRecord(
            id=record_id,
            name=candidate.name,
            category=category,
            subcategory=infer_subcategory(candidate.types),
            description=description,
            short_description=short_description_for(description),
            location=Location(
                address=candidate.address or "",
                district=district,
                island=island,
                latitude=candidate.latitude,
                longitude=candidate.longitude,
                external_place_id=candidate.external_place_id,
            ),
            contact=Contact(phone=candidate.phone, website=candidate.website),
            business=Business(price_range=price_range_for(candidate.price_level), hours=candidate.hours),
            ratings=Ratings(
                overall=candidate.rating or 0.0,
                review_count=candidate.review_count or 0,
                external_rating=candidate.rating,
            ),
            media=Media(thumbnail=candidate.thumbnail or (images[0] if images else ""), images=images),
            tags=infer_tags(category, candidate.name, description),
            keywords=infer_keywords(candidate.name, description, category),
            is_active=True,
            is_curated=False,
            created_at=timestamp,
            updated_at=timestamp,
        )

    # -- whole run -----------------------------------------------------------

    def reconcile(
        self,
        records: List[CatalogRecord],
        candidates: List[ScrapedCandidate],
        resolver: DuplicateResolver,
    ) -> ReconcileResult:
        """Merge every candidate into `records` (order preserved, new records appended).

        Each candidate ends up in exactly one of `added`, `updated` or `skipped`.
        """
        result = ReconcileResult(records=list(records))
        index_by_id: Dict[str, int] = {record.id: i for i, record in enumerate(result.records)}

        for candidate in candidates:
            if candidate.has_coordinates() and self.geofence.locate(candidate.latitude, candidate.longitude) is None:
                logger.warning(
                    "Skipping %r: (%s, %s) is outside known regions",
                    candidate.name,
                    candidate.latitude,
                    candidate.longitude,
                )
                result.skipped.append({"name": candidate.name, "reason": "outside known regions"})
                continue

            evidence = resolver.find_match(candidate, result.records)
            if evidence is not None:
                position = index_by_id[evidence.record_id]
                merged, changes = self.merge(result.records[position], candidate)
                result.records[position] = merged
                result.decisions.append(MergeDecision(candidate, existing_id=merged.id, evidence=evidence))
                result.updated.append((merged, changes))
                continue

            if not candidate.has_coordinates():
                logger.warning("Skipping %r: no coordinates and no matching catalog record", candidate.name)
                result.skipped.append({"name": candidate.name, "reason": "missing coordinates"})
                continue

            record = self.create(candidate, set(index_by_id))
            index_by_id[record.id] = len(result.records)
            result.records.append(record)
            result.added.append(record)
            result.decisions.append(MergeDecision(candidate))

        # Later candidates may have merged into records added earlier in the run.
        result.added = [result.records[index_by_id[record.id]] for record in result.added]

        logger.info(
            "Reconciled %d candidates: added=%d updated=%d skipped=%d",
            len(candidates),
            len(result.added),
            len(result.updated),
            len(result.skipped),
        )
        return result

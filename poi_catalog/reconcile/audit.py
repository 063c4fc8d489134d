"""Coordinate audit: drop unplaceable records, fix stale regions, re-locate placeholders."""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from poi_catalog.core.models import CatalogRecord
from poi_catalog.etl.transform import now_iso
from poi_catalog.reconcile.geofence import Geofence, Region
from poi_catalog.vendors.google_places import EnrichmentAPIError

if TYPE_CHECKING:
    from poi_catalog.core.enricher import PlacesClient

logger = logging.getLogger(__name__)

# Coordinates scrapers fall back to when a place could not be geocoded.
SUSPICIOUS_COORDINATES = (
    (19.3133, -81.2546),
    (19.2866, -81.3744),
    (19.2956, -81.3812),
    (19.35, -81.39),
)
SUSPICIOUS_TOLERANCE = 0.001
REFERENCE_POINT = (19.3133, -81.2546)
DEFAULT_SEARCH_RADIUS_METERS = 5000

REASON_MISSING = "missing coordinates"
REASON_OUTSIDE = "outside known regions"
REASON_RELOOKUP_FAILED = "suspicious coordinates, re-lookup failed"


class CoordinateOutOfBoundsError(ValueError):
    """A record's coordinates fall outside every known region."""

    def __init__(self, record_id: str, latitude: float, longitude: float) -> None:
        super().__init__(f"{record_id} at ({latitude}, {longitude}) is outside known regions")
        self.record_id = record_id
        self.latitude = latitude
        self.longitude = longitude


def is_suspicious(latitude: float, longitude: float, tolerance: float = SUSPICIOUS_TOLERANCE) -> bool:
    return any(
        abs(latitude - lat) < tolerance and abs(longitude - lng) < tolerance
        for lat, lng in SUSPICIOUS_COORDINATES
    )


@dataclass
class AuditResult:
    records: List[CatalogRecord] = field(default_factory=list)
    removed: List[Dict[str, Any]] = field(default_factory=list)
    corrected: List[Dict[str, Any]] = field(default_factory=list)
    relocated: List[Dict[str, Any]] = field(default_factory=list)
    flagged: List[Dict[str, Any]] = field(default_factory=list)


class CoordinateAuditor:
    def __init__(
        self,
        geofence: Geofence,
        client: Optional["PlacesClient"] = None,
        search_radius: int = DEFAULT_SEARCH_RADIUS_METERS,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.geofence = geofence
        self.client = client
        self.search_radius = search_radius
        self.clock = clock

    def _require_region(self, record: CatalogRecord) -> Region:
        loc = record.location
        region = self.geofence.locate(loc.latitude, loc.longitude)
        if region is None:
            raise CoordinateOutOfBoundsError(record.id, loc.latitude, loc.longitude)
        return region

    def _relookup(self, record: CatalogRecord) -> Optional[CatalogRecord]:
        """One biased text search; returns a relocated copy or None when nothing in-region came back."""
        query = f"{record.name} Cayman Islands"
        payload = self.client.search(query, location=REFERENCE_POINT, radius=self.search_radius)
        for result in payload.get("results") or []:
            location = (result.get("geometry") or {}).get("location") or {}
            lat, lng = location.get("lat"), location.get("lng")
            if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
                continue
            region = self.geofence.locate(float(lat), float(lng))
            if region is None or is_suspicious(float(lat), float(lng)):
                continue
            fixed = copy.deepcopy(record)
            fixed.location.latitude = float(lat)
            fixed.location.longitude = float(lng)
            fixed.location.address = result.get("formatted_address") or fixed.location.address
            fixed.location.external_place_id = result.get("place_id") or fixed.location.external_place_id
            fixed.location.district = region.name
            fixed.location.island = region.island
            fixed.updated_at = self.clock()
            return fixed
        return None

    def audit(self, records: List[CatalogRecord]) -> AuditResult:
        result = AuditResult()
        for record in records:
            loc = record.location
            if not loc.has_coordinates():
                logger.warning("Removing %s (%s): %s", record.id, record.name, REASON_MISSING)
                result.removed.append({"id": record.id, "name": record.name, "reason": REASON_MISSING})
                continue

            if is_suspicious(loc.latitude, loc.longitude):
                if self.client is None:
                    logger.warning("Flagging %s (%s): suspicious coordinates, no places client", record.id, record.name)
                    result.flagged.append({
                        "id": record.id,
                        "name": record.name,
                        "reason": "suspicious coordinates",
                        "latitude": loc.latitude,
                        "longitude": loc.longitude,
                    })
                else:
                    try:
                        fixed = self._relookup(record)
                    except EnrichmentAPIError as exc:
                        logger.error("Re-lookup failed for %s (%s): %s", record.id, record.name, exc)
                        result.flagged.append({
                            "id": record.id,
                            "name": record.name,
                            "reason": f"suspicious coordinates, re-lookup error: {exc}",
                            "latitude": loc.latitude,
                            "longitude": loc.longitude,
                        })
                    else:
                        if fixed is None:
                            logger.warning("Removing %s (%s): %s", record.id, record.name, REASON_RELOOKUP_FAILED)
                            result.removed.append({
                                "id": record.id,
                                "name": record.name,
                                "reason": REASON_RELOOKUP_FAILED,
                                "latitude": loc.latitude,
                                "longitude": loc.longitude,
                            })
                            continue
                        logger.info(
                            "Relocated %s (%s) to (%s, %s)",
                            record.id,
                            record.name,
                            fixed.location.latitude,
                            fixed.location.longitude,
                        )
                        result.relocated.append({
                            "id": record.id,
                            "name": record.name,
                            "from": [loc.latitude, loc.longitude],
                            "to": [fixed.location.latitude, fixed.location.longitude],
                            "externalPlaceId": fixed.location.external_place_id,
                        })
                        record = fixed
                        loc = record.location

            try:
                region = self._require_region(record)
            except CoordinateOutOfBoundsError as exc:
                logger.warning("Removing record: %s", exc)
                result.removed.append({
                    "id": record.id,
                    "name": record.name,
                    "reason": REASON_OUTSIDE,
                    "latitude": exc.latitude,
                    "longitude": exc.longitude,
                })
                continue

            if (loc.district, loc.island) != (region.name, region.island):
                logger.info(
                    "Correcting region of %s: %s/%s -> %s/%s",
                    record.id,
                    loc.district,
                    loc.island,
                    region.name,
                    region.island,
                )
                result.corrected.append({
                    "id": record.id,
                    "name": record.name,
                    "from": {"district": loc.district, "island": loc.island},
                    "to": {"district": region.name, "island": region.island},
                })
                record = copy.deepcopy(record)
                record.location.district = region.name
                record.location.island = region.island
                record.updated_at = self.clock()

            result.records.append(record)

        logger.info(
            "Audit complete: kept=%d removed=%d corrected=%d relocated=%d flagged=%d",
            len(result.records),
            len(result.removed),
            len(result.corrected),
            len(result.relocated),
            len(result.flagged),
        )
        return result

"""Named rectangular regions used to place and validate catalog coordinates."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from poi_catalog.core.config import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Region:
    name: str
    island: str
    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lng_min <= lng <= self.lng_max


# First match wins: districts must come before the island box that encloses them.
DEFAULT_REGIONS: Sequence[Region] = (
    Region("Camana Bay", "Grand Cayman", 19.32, 19.34, -81.38, -81.37),
    Region("Seven Mile Beach", "Grand Cayman", 19.32, 19.36, -81.40, -81.37),
    Region("George Town", "Grand Cayman", 19.28, 19.32, -81.40, -81.37),
    Region("West Bay", "Grand Cayman", 19.36, 19.41, -81.42, -81.38),
    Region("Bodden Town", "Grand Cayman", 19.27, 19.31, -81.28, -81.22),
    Region("East End", "Grand Cayman", 19.27, 19.35, -81.18, -81.08),
    Region("North Side", "Grand Cayman", 19.33, 19.40, -81.30, -81.18),
    Region("Grand Cayman", "Grand Cayman", 19.25, 19.42, -81.45, -81.05),
    Region("Cayman Brac", "Cayman Brac", 19.68, 19.76, -79.95, -79.70),
    Region("Little Cayman", "Little Cayman", 19.65, 19.72, -80.15, -79.95),
)


class Geofence:
    """Ordered region table; `classify` answers with the first region that contains a point."""

    def __init__(self, regions: Iterable[Region] = DEFAULT_REGIONS) -> None:
        self._regions: List[Region] = list(regions)
        if not self._regions:
            raise ValueError("At least one region is required")

    @property
    def regions(self) -> List[Region]:
        return list(self._regions)

    def locate(self, lat: Optional[float], lng: Optional[float]) -> Optional[Region]:
        if lat is None or lng is None:
            return None
        for region in self._regions:
            if region.contains(lat, lng):
                return region
        return None

    def classify(self, lat: Optional[float], lng: Optional[float]) -> Optional[str]:
        region = self.locate(lat, lng)
        return region.name if region else None

    @classmethod
    def from_file(cls, path: str) -> "Geofence":
        """Load a region table from a JSON array of {name, island, latMin, latMax, lngMin, lngMax}."""
        with Path(path).open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, list):
            raise ValueError(f"Region file {path} must contain a JSON array")
        regions = [
            Region(
                name=str(item["name"]),
                island=str(item.get("island") or item["name"]),
                lat_min=float(item["latMin"]),
                lat_max=float(item["latMax"]),
                lng_min=float(item["lngMin"]),
                lng_max=float(item["lngMax"]),
            )
            for item in data
        ]
        logger.info("Loaded %d regions from %s", len(regions), path)
        return cls(regions)


def build_geofence(regions_file: Optional[str]) -> Geofence:
    if not regions_file:
        return Geofence()
    try:
        return Geofence.from_file(regions_file)
    except (OSError, KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid REGIONS_FILE {regions_file}: {exc}") from exc

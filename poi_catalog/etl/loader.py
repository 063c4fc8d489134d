"""Readers for the curated catalog and scraped-candidate files."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

from poi_catalog.core.models import CatalogRecord, ScrapedCandidate
from poi_catalog.etl.transform import RecordValidationError, to_candidate, to_record

logger = logging.getLogger(__name__)

_WRAPPER_KEYS = ("results", "places", "local_results", "items")

T = TypeVar("T")


class InputParseError(RuntimeError):
    """Raised when an input file cannot be read as an array of records; aborts the run."""


@dataclass
class LoadResult(Generic[T]):
    records: List[T] = field(default_factory=list)
    rejected: List[Dict[str, str]] = field(default_factory=list)


def read_record_array(path: str) -> List[Any]:
    """Return the top-level record array of a JSON file, unwrapping common envelopes."""
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise InputParseError(f"Input file not found: {path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InputParseError(f"Failed to parse {path}: {exc}") from exc

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    raise InputParseError(f"Unrecognized data structure in {path}: expected a record array")


def _label(raw: Any) -> str:
    if isinstance(raw, dict):
        for key in ("name", "title", "id", "place_id"):
            if raw.get(key):
                return str(raw[key])
    return "Unknown"


def load_catalog(path: str) -> LoadResult[CatalogRecord]:
    result: LoadResult[CatalogRecord] = LoadResult()
    seen_ids = set()
    for index, raw in enumerate(read_record_array(path)):
        try:
            record = to_record(raw)
            if record.id in seen_ids:
                raise RecordValidationError(f"duplicate id {record.id}")
        except RecordValidationError as exc:
            logger.warning("Skipping catalog entry #%d (%s): %s", index, _label(raw), exc)
            result.rejected.append({"name": _label(raw), "reason": f"invalid record: {exc}"})
            continue
        seen_ids.add(record.id)
        result.records.append(record)

    logger.info("Loaded %d catalog records from %s (%d rejected)", len(result.records), path, len(result.rejected))
    return result


def load_candidates(paths: Iterable[str], default_phone_region: Optional[str] = None) -> LoadResult[ScrapedCandidate]:
    result: LoadResult[ScrapedCandidate] = LoadResult()
    for path in paths:
        source = Path(path).name
        items = read_record_array(path)
        loaded = 0
        for index, raw in enumerate(items):
            try:
                candidate = to_candidate(raw, default_phone_region, source=source)
            except RecordValidationError as exc:
                logger.warning("Skipping scraped entry #%d in %s (%s): %s", index, source, _label(raw), exc)
                result.rejected.append({"name": _label(raw), "reason": str(exc)})
                continue
            result.records.append(candidate)
            loaded += 1
        logger.info("Loaded %d scraped candidates from %s", loaded, path)
    return result

"""CLI job to reconcile scraped place files into the catalog."""

import argparse
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from poi_catalog.core.checkpoint import CheckpointStore
from poi_catalog.core.config import ConfigError, Settings, get_settings, require_api_key
from poi_catalog.core.enricher import PlacesClient, PlacesEnricher, run_enrichment
from poi_catalog.core.models import CatalogRecord
from poi_catalog.core.rate_limit import RateLimiter
from poi_catalog.core.storage import WriteError, backup_file, write_catalog
from poi_catalog.etl.loader import InputParseError, LoadResult, load_candidates, load_catalog
from poi_catalog.etl.report import RunReport, format_summary, report_path_for, write_report
from poi_catalog.etl.transform import now_iso, to_record_dict
from poi_catalog.reconcile.audit import CoordinateAuditor
from poi_catalog.reconcile.geofence import build_geofence
from poi_catalog.reconcile.matching import DEFAULT_PROXIMITY_METERS, DEFAULT_SIMILARITY_THRESHOLD, DuplicateResolver
from poi_catalog.reconcile.merge import MergeEngine, MergePolicy

logger = logging.getLogger(__name__)


def build_places_client(settings: Settings) -> PlacesClient:
    return PlacesClient(
        api_key=require_api_key(settings),
        rate_limiter=RateLimiter(settings.requests_per_second),
        max_retries=settings.max_retries,
    )


def load_existing_catalog(path: str) -> LoadResult[CatalogRecord]:
    """Load the catalog, starting empty when none has been written yet."""
    if not Path(path).exists():
        logger.warning("Catalog %s does not exist yet; starting from an empty catalog", path)
        return LoadResult()
    return load_catalog(path)


def _same_file(a: str, b: str) -> bool:
    return Path(a).resolve() == Path(b).resolve()


def backup_targets(report: RunReport, catalog_path: str, output_path: str, backup_dir: str) -> None:
    """Back up the catalog and, when it is a different existing file, the output about to be replaced."""
    backup = backup_file(catalog_path, backup_dir)
    report.backup_path = str(backup) if backup else None
    if not _same_file(catalog_path, output_path):
        output_backup = backup_file(output_path, backup_dir)
        report.output_backup_path = str(output_backup) if output_backup else None


def restore_checkpointed(
    records: List[CatalogRecord],
    store: CheckpointStore,
    source_path: str,
    fresh: bool = False,
) -> List[CatalogRecord]:
    """Take checkpointed records from the file an interrupted run persisted them to.

    Only applies when that file is not the one `records` were loaded from.
    """
    if fresh:
        return records
    state = store.load()
    if state is None or not state.processed_ids or not state.output_path:
        return records
    working = state.output_path
    if not Path(working).exists() or _same_file(working, source_path):
        return records

    previous = {r.id: r for r in load_catalog(working).records}
    restored = 0
    result = []
    for record in records:
        if state.is_processed(record.id) and record.id in previous:
            result.append(previous[record.id])
            restored += 1
        else:
            result.append(record)
    logger.info("Restored %d checkpointed record(s) from %s", restored, working)
    return result


def persist_catalog(path: str) -> Callable[[List[CatalogRecord]], None]:
    def persist(records: List[CatalogRecord]) -> None:
        write_catalog(path, (to_record_dict(r) for r in records))

    return persist


def run_merge_job(
    *,
    inputs: Sequence[str],
    catalog_path: str,
    output_path: Optional[str] = None,
    dry_run: bool = False,
    policy: MergePolicy = MergePolicy(),
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    proximity_meters: float = DEFAULT_PROXIMITY_METERS,
    enrich: bool = False,
    limit: Optional[int] = None,
    settings: Optional[Settings] = None,
    clock: Callable[[], str] = now_iso,
) -> RunReport:
    settings = settings or get_settings()
    output_path = output_path or catalog_path
    if enrich:
        require_api_key(settings)
    client = build_places_client(settings) if settings.google_api_key else None

    report = RunReport(
        job="merge",
        started_at=clock(),
        dry_run=dry_run,
        catalog_path=catalog_path,
        output_path=output_path,
    )
    geofence = build_geofence(settings.regions_file)
    catalog = load_existing_catalog(catalog_path)
    loaded = load_candidates(inputs, settings.default_phone_region)
    report.candidates = len(loaded.records) + len(loaded.rejected)
    report.removed.extend(catalog.rejected)
    report.skipped.extend(loaded.rejected)

    engine = MergeEngine(geofence, policy, clock=clock)
    resolver = DuplicateResolver(similarity_threshold, proximity_meters)
    result = engine.reconcile(catalog.records, loaded.records, resolver)
    report.record_reconcile(result)

    auditor = CoordinateAuditor(
        geofence,
        client=client,
        search_radius=settings.audit_search_radius_meters,
        clock=clock,
    )
    audit = auditor.audit(result.records)
    report.record_audit(audit)
    records = audit.records

    if not dry_run:
        backup_targets(report, catalog_path, output_path, settings.backup_dir)

    if enrich:
        enricher = PlacesEnricher(
            client,
            engine,
            default_phone_region=settings.default_phone_region,
            max_photos=settings.max_photos,
        )
        store = None if dry_run else CheckpointStore(settings.checkpoint_path)
        if store is not None:
            records = restore_checkpointed(records, store, catalog_path)
        records, summary = run_enrichment(
            records,
            enricher,
            store=store,
            batch_size=settings.batch_size,
            limit=limit,
            persist=None if dry_run else persist_catalog(output_path),
            working_path=output_path,
        )
        report.record_enrichment(summary)

    report.finalize(records)
    if dry_run:
        logger.info("Dry run: nothing written")
    else:
        persist_catalog(output_path)(records)
        write_report(report, report_path_for(output_path))
    return report


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Merge scraped place files into the POI catalog")
    parser.add_argument("--input", dest="inputs", nargs="+", required=True, help="Scraped candidate JSON file(s)")
    parser.add_argument("--catalog", default=settings.catalog_path, help="Curated catalog JSON file")
    parser.add_argument("--output", help="Where to write the merged catalog (defaults to --catalog)")
    parser.add_argument("--dry-run", action="store_true", help="Compute and print the report without writing")
    parser.add_argument(
        "--preserve-curated",
        action="store_true",
        help="Only fill empty fields on existing records",
    )
    parser.add_argument(
        "--overwrite-curated",
        action="store_true",
        help="Allow scraped values to replace non-empty fields on curated records",
    )
    parser.add_argument(
        "--similarity",
        type=float,
        default=DEFAULT_SIMILARITY_THRESHOLD,
        help="Name similarity threshold between 0 and 1",
    )
    parser.add_argument(
        "--proximity",
        type=float,
        default=DEFAULT_PROXIMITY_METERS,
        help="Distance in meters under which similar names are the same place",
    )
    parser.add_argument("--enrich", action="store_true", help="Enrich records from Google Places after merging")
    parser.add_argument("--limit", type=int, help="Maximum number of records sent for enrichment")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not 0.0 <= args.similarity <= 1.0:
        parser.error("--similarity must be between 0 and 1")
    if args.proximity < 0:
        parser.error("--proximity must not be negative")

    try:
        report = run_merge_job(
            inputs=args.inputs,
            catalog_path=args.catalog,
            output_path=args.output,
            dry_run=args.dry_run,
            policy=MergePolicy(preserve_curated=args.preserve_curated, overwrite_curated=args.overwrite_curated),
            similarity_threshold=args.similarity,
            proximity_meters=args.proximity,
            enrich=args.enrich,
            limit=args.limit,
            settings=settings,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    except (InputParseError, WriteError) as exc:
        logger.error("Merge aborted: %s", exc)
        return 1

    print(format_summary(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""CLI job to backfill catalog records from Google Places, resumably."""

import argparse
import logging
from typing import Callable, Optional, Sequence

from poi_catalog.core.checkpoint import CheckpointStore
from poi_catalog.core.config import ConfigError, Settings, get_settings
from poi_catalog.core.enricher import PlacesEnricher, run_enrichment
from poi_catalog.core.storage import WriteError
from poi_catalog.etl.loader import InputParseError, load_catalog
from poi_catalog.etl.report import RunReport, format_summary, report_path_for, write_report
from poi_catalog.etl.transform import now_iso
from poi_catalog.jobs.run_merge import backup_targets, build_places_client, persist_catalog, restore_checkpointed
from poi_catalog.reconcile.geofence import build_geofence
from poi_catalog.reconcile.merge import MergeEngine, MergePolicy

logger = logging.getLogger(__name__)


def run_enrich_job(
    *,
    catalog_path: str,
    output_path: Optional[str] = None,
    limit: Optional[int] = None,
    batch_size: Optional[int] = None,
    fresh: bool = False,
    category: Optional[str] = None,
    dry_run: bool = False,
    policy: MergePolicy = MergePolicy(),
    settings: Optional[Settings] = None,
    clock: Callable[[], str] = now_iso,
) -> RunReport:
    settings = settings or get_settings()
    output_path = output_path or catalog_path
    client = build_places_client(settings)

    report = RunReport(
        job="enrich",
        started_at=clock(),
        dry_run=dry_run,
        catalog_path=catalog_path,
        output_path=output_path,
    )
    catalog = load_catalog(catalog_path)
    report.removed.extend(catalog.rejected)

    engine = MergeEngine(build_geofence(settings.regions_file), policy, clock=clock)
    enricher = PlacesEnricher(
        client,
        engine,
        default_phone_region=settings.default_phone_region,
        max_photos=settings.max_photos,
    )

    records = catalog.records
    store = None if dry_run else CheckpointStore(settings.checkpoint_path)
    if store is not None:
        backup_targets(report, catalog_path, output_path, settings.backup_dir)
        records = restore_checkpointed(records, store, catalog_path, fresh=fresh)

    records, summary = run_enrichment(
        records,
        enricher,
        store=store,
        batch_size=batch_size or settings.batch_size,
        limit=limit,
        persist=None if dry_run else persist_catalog(output_path),
        fresh=fresh,
        category=category,
        working_path=output_path,
    )
    report.record_enrichment(summary)
    report.finalize(records)
    if not dry_run:
        write_report(report, report_path_for(output_path))
    return report


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Enrich POI catalog records from Google Places")
    parser.add_argument("--catalog", default=settings.catalog_path, help="Catalog JSON file")
    parser.add_argument("--output", help="Where to write the enriched catalog (defaults to --catalog)")
    parser.add_argument("--limit", type=int, help="Maximum number of records sent to the places service")
    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=settings.batch_size,
        help="Records processed between checkpoints",
    )
    parser.add_argument("--category", help="Only enrich records in this category, e.g. restaurant")
    parser.add_argument("--fresh", action="store_true", help="Ignore any saved checkpoint and start over")
    parser.add_argument("--dry-run", action="store_true", help="Call the API but write nothing")
    parser.add_argument("--preserve-curated", action="store_true", help="Only fill empty fields")
    parser.add_argument(
        "--overwrite-curated",
        action="store_true",
        help="Allow places data to replace non-empty fields on curated records",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.batch_size <= 0:
        parser.error("--batch-size must be positive")

    try:
        report = run_enrich_job(
            catalog_path=args.catalog,
            output_path=args.output,
            limit=args.limit,
            batch_size=args.batch_size,
            fresh=args.fresh,
            dry_run=args.dry_run,
            category=args.category,
            policy=MergePolicy(preserve_curated=args.preserve_curated, overwrite_curated=args.overwrite_curated),
            settings=settings,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    except (InputParseError, WriteError) as exc:
        logger.error("Enrichment aborted: %s", exc)
        return 1

    print(format_summary(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

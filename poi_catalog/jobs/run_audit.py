"""CLI job to validate catalog coordinates and regions."""

import argparse
import logging
from typing import Callable, Optional, Sequence

from poi_catalog.core.config import ConfigError, Settings, get_settings
from poi_catalog.core.storage import WriteError
from poi_catalog.etl.loader import InputParseError, load_catalog
from poi_catalog.etl.report import RunReport, format_summary, report_path_for, write_report
from poi_catalog.etl.transform import now_iso
from poi_catalog.jobs.run_merge import backup_targets, build_places_client, persist_catalog
from poi_catalog.reconcile.audit import CoordinateAuditor
from poi_catalog.reconcile.geofence import build_geofence

logger = logging.getLogger(__name__)


def run_audit_job(
    *,
    catalog_path: str,
    output_path: Optional[str] = None,
    dry_run: bool = False,
    settings: Optional[Settings] = None,
    clock: Callable[[], str] = now_iso,
) -> RunReport:
    settings = settings or get_settings()
    output_path = output_path or catalog_path
    client = build_places_client(settings) if settings.google_api_key else None
    if client is None:
        logger.info("No places API key; suspicious coordinates will only be flagged")

    report = RunReport(
        job="audit",
        started_at=clock(),
        dry_run=dry_run,
        catalog_path=catalog_path,
        output_path=output_path,
    )
    catalog = load_catalog(catalog_path)
    report.removed.extend(catalog.rejected)

    auditor = CoordinateAuditor(
        build_geofence(settings.regions_file),
        client=client,
        search_radius=settings.audit_search_radius_meters,
        clock=clock,
    )
    result = auditor.audit(catalog.records)
    report.record_audit(result)
    report.finalize(result.records)

    if dry_run:
        logger.info("Dry run: nothing written")
        return report

    backup_targets(report, catalog_path, output_path, settings.backup_dir)
    persist_catalog(output_path)(result.records)
    write_report(report, report_path_for(output_path))
    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audit POI catalog coordinates against known regions")
    parser.add_argument("--catalog", default=get_settings().catalog_path, help="Catalog JSON file")
    parser.add_argument("--output", help="Where to write the audited catalog (defaults to --catalog)")
    parser.add_argument("--dry-run", action="store_true", help="Report problems without writing")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        report = run_audit_job(
            catalog_path=args.catalog,
            output_path=args.output,
            dry_run=args.dry_run,
            settings=settings,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    except (InputParseError, WriteError) as exc:
        logger.error("Audit aborted: %s", exc)
        return 1

    print(format_summary(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

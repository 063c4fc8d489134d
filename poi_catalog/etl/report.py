"""Machine-readable change report and console summary for pipeline runs."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from poi_catalog.core.models import CatalogRecord
from poi_catalog.core.storage import atomic_write_json
from poi_catalog.etl.transform import summarize

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 50
PREVIEW_SIZE = 10

_SECTIONS = (
    "added",
    "updated",
    "skipped",
    "removed",
    "corrected",
    "relocated",
    "flagged",
    "duplicates",
    "enriched",
)


@dataclass
class RunReport:
    job: str
    started_at: str
    dry_run: bool = False
    catalog_path: Optional[str] = None
    output_path: Optional[str] = None
    backup_path: Optional[str] = None
    output_backup_path: Optional[str] = None
    candidates: int = 0
    total_records: int = 0
    added: List[Dict[str, Any]] = field(default_factory=list)
    updated: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[Dict[str, Any]] = field(default_factory=list)
    corrected: List[Dict[str, Any]] = field(default_factory=list)
    relocated: List[Dict[str, Any]] = field(default_factory=list)
    flagged: List[Dict[str, Any]] = field(default_factory=list)
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    enriched: List[Dict[str, Any]] = field(default_factory=list)
    enrichment: Dict[str, Any] = field(default_factory=dict)
    categories: Dict[str, int] = field(default_factory=dict)

    def record_reconcile(self, result: Any) -> None:
        """Copy the outcome of `MergeEngine.reconcile` into the report."""
        self.added.extend(summarize(result.added))
        self.updated.extend({"id": r.id, "name": r.name, "changes": list(changes)} for r, changes in result.updated)
        self.skipped.extend(result.skipped)
        for decision in result.decisions:
            evidence = decision.evidence
            if evidence is None:
                continue
            self.duplicates.append({
                "candidate": decision.candidate.name,
                "recordId": evidence.record_id,
                "recordName": evidence.record_name,
                "rule": evidence.rule,
                "similarity": evidence.similarity,
                "distanceMeters": evidence.distance_meters,
            })

    def record_audit(self, result: Any) -> None:
        self.removed.extend(result.removed)
        self.corrected.extend(result.corrected)
        self.relocated.extend(result.relocated)
        self.flagged.extend(result.flagged)

    def record_enrichment(self, summary: Any) -> None:
        self.enrichment = dict(summary.counts, completed=summary.completed)
        self.enriched.extend(summary.changes)

    def finalize(self, records: Iterable[CatalogRecord]) -> None:
        records = list(records)
        self.total_records = len(records)
        self.categories = dict(sorted(Counter(r.category for r in records).items()))

    def counts(self) -> Dict[str, int]:
        return {name: len(getattr(self, name)) for name in _SECTIONS}

    def to_dict(self, sample_size: int = SAMPLE_SIZE) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "job": self.job,
            "startedAt": self.started_at,
            "dryRun": self.dry_run,
            "catalogPath": self.catalog_path,
            "outputPath": self.output_path,
            "backupPath": self.backup_path,
            "outputBackupPath": self.output_backup_path,
            "summary": dict(self.counts(), candidates=self.candidates, totalRecords=self.total_records),
            "categories": self.categories,
            "enrichment": self.enrichment,
        }
        for name in _SECTIONS:
            data[name] = getattr(self, name)[:sample_size]
        return data


def report_path_for(output_path: str) -> Path:
    path = Path(output_path)
    return path.with_name(f"{path.stem}.report.json")


def write_report(report: RunReport, path: Path) -> None:
    atomic_write_json(path, report.to_dict())
    logger.info("Wrote run report to %s", path)


def _describe(entry: Dict[str, Any]) -> str:
    label = entry.get("name") or entry.get("candidate") or entry.get("id") or "?"
    if entry.get("reason"):
        return f"{label} ({entry['reason']})"
    if entry.get("changes"):
        return f"{label} [{', '.join(entry['changes'])}]"
    if entry.get("rule"):
        return f"{label} -> {entry.get('recordName')} ({entry['rule']}, similarity {entry.get('similarity')})"
    return str(label)


def format_summary(report: RunReport, preview: int = PREVIEW_SIZE) -> str:
    lines = [f"== {report.job} {'(dry run) ' if report.dry_run else ''}=="]
    if report.candidates:
        lines.append(f"Candidates: {report.candidates}")
    lines.append(f"Records in catalog: {report.total_records}")
    for name, count in report.counts().items():
        lines.append(f"{name.capitalize()}: {count}")
    if report.enrichment:
        lines.append("Enrichment: " + ", ".join(f"{k}={v}" for k, v in report.enrichment.items()))

    if report.categories:
        lines.append("")
        lines.append("By category:")
        for category, count in report.categories.items():
            lines.append(f"  {category}: {count}")

    for name in _SECTIONS:
        entries = getattr(report, name)
        if not entries:
            continue
        lines.append("")
        lines.append(f"{name.capitalize()} (first {min(preview, len(entries))} of {len(entries)}):")
        lines.extend(f"  - {_describe(entry)}" for entry in entries[:preview])
    return "\n".join(lines)

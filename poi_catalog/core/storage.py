"""Catalog file persistence: backups and crash-safe writes."""

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class WriteError(RuntimeError):
    """Raised when the catalog, backup or report cannot be written; aborts the run."""


def backup_file(path: PathLike, backup_dir: PathLike, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy `path` byte-for-byte to `<backup_dir>/<stem>.<UTC timestamp><suffix>`.

    Returns None when there is nothing to back up yet.
    """
    source = Path(path)
    if not source.exists():
        logger.info("No existing catalog at %s; skipping backup", source)
        return None

    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    target_dir = Path(backup_dir)
    target = target_dir / f"{source.stem}.{stamp}{source.suffix}"
    counter = 1
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        while target.exists():
            target = target_dir / f"{source.stem}.{stamp}-{counter}{source.suffix}"
            counter += 1
        shutil.copyfile(source, target)
    except OSError as exc:
        raise WriteError(f"Failed to back up {source} to {target_dir}: {exc}") from exc

    logger.info("Backed up %s to %s", source, target)
    return target


def atomic_write_json(path: PathLike, payload: Any) -> None:
    """Write JSON next to `path` in a temp file, fsync it, then rename over `path`."""
    target = Path(path)
    tmp_name = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_name = fh.name
            json.dump(payload, fh, ensure_ascii=False, indent=2)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except (OSError, TypeError, ValueError) as exc:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise WriteError(f"Failed to write {target}: {exc}") from exc


def write_catalog(path: PathLike, records: Iterable[dict]) -> None:
    items = list(records)
    atomic_write_json(path, items)
    logger.info("Wrote %d records to %s", len(items), path)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retention Rotator - delete the oldest backups beyond the retention count.

Backup root names start with a YYYY-MM-DD_HH-MM-SS timestamp, so lexical
order is chronological order. Rotation runs only after a backup has
succeeded and deletes without asking. Only complete roots count: the
name must be a backup root name and the manifest must be present.
"""

import shutil
from pathlib import Path
from typing import List

import structlog

from stackvault.layout import MANIFEST_FILE, ROOT_NAME

logger = structlog.get_logger()


def is_complete_root(path: Path) -> bool:
    """A finished backup: backup root name plus checksum manifest."""
    return (
        path.is_dir()
        and ROOT_NAME.match(path.name) is not None
        and (path / MANIFEST_FILE).is_file()
    )


def list_backup_roots(host_dir: Path, exclude: Path | None = None) -> List[Path]:
    """Complete backup roots under host_dir, oldest first."""
    if not host_dir.is_dir():
        return []
    excluded = exclude.resolve() if exclude else None
    return sorted(
        (d for d in host_dir.iterdir() if is_complete_root(d) and d.resolve() != excluded),
        key=lambda d: d.name,
    )


def rotate_backups(
    host_dir: Path,
    keep: int,
    current: Path | None = None,
) -> List[Path]:
    """
    Keep exactly `keep` backups in total, including current if given.

    Args:
        host_dir: Directory holding the backup roots
        keep: Total number of backups to keep; <= 0 disables rotation
        current: The backup just created (never deleted)

    Returns:
        Paths deleted, oldest first
    """
    if keep <= 0:
        return []

    others = list_backup_roots(host_dir, exclude=current)
    excess = len(others) - (keep - 1 if current is not None else keep)

    if excess <= 0:
        logger.info("rotation_not_needed", backups=len(others), keep=keep)
        return []

    doomed = others[:excess]
    for old_backup in doomed:
        shutil.rmtree(old_backup)
        logger.info("old_backup_deleted", backup=old_backup.name)

    logger.info("rotation_complete", deleted=len(doomed), keep=keep)
    return doomed

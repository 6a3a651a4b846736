# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore decisions - classification, gates and the restore state machine.

Everything here is pure except scan_backup(), which takes one snapshot of
which marker paths exist in a backup root. All decisions are derived
from that snapshot and locked into a RestorePlan before any service is
stopped.

States (linear):

    START -> SOURCE_ACQUIRED -> DATABASE_CLASSIFIED -> OBJECTS_CLASSIFIED
    -> INTEGRITY_CHECKED -> CONFIRMED -> SERVICES_STOPPED -> OBJECTS_RESTORED
    -> DATABASES_RESTORED -> SERVICES_STARTED -> HEALTH_CHECKED -> DONE
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Tuple

from stackvault.config import DEFAULT_BUCKETS, DatabaseBackupType, ObjectBackupType
from stackvault.exceptions import (
    ChecksumMismatch,
    ClassificationUnknown,
    RestoreError,
    UserAborted,
)
from stackvault.integrity.manifest import ManifestReport
from stackvault.integrity.provenance import Provenance
from stackvault.layout import (
    BACKUP_LOG,
    DB_VOLUMES_DIR,
    GEO_DB_DUMP,
    GEO_DB_VOLUME_DIR,
    MANIFEST_FILE,
    OBJECT_VOLUMES_DIR,
    PRIMARY_DB_DUMP,
    PRIMARY_DB_VOLUME_DIR,
    object_volume_dir,
)

CONFIRMATION_PHRASE = "RESTORE NOW"


class RestoreState(str, Enum):
    START = "start"
    SOURCE_ACQUIRED = "source_acquired"
    DATABASE_CLASSIFIED = "database_classified"
    OBJECTS_CLASSIFIED = "objects_classified"
    INTEGRITY_CHECKED = "integrity_checked"
    CONFIRMED = "confirmed"
    SERVICES_STOPPED = "services_stopped"
    OBJECTS_RESTORED = "objects_restored"
    DATABASES_RESTORED = "databases_restored"
    SERVICES_STARTED = "services_started"
    HEALTH_CHECKED = "health_checked"
    DONE = "done"


STATE_ORDER: Tuple[RestoreState, ...] = tuple(RestoreState)


def next_state(state: RestoreState) -> RestoreState:
    index = STATE_ORDER.index(state)
    if index + 1 >= len(STATE_ORDER):
        raise RestoreError(f"No state follows {state.value}")
    return STATE_ORDER[index + 1]


def advance(current: RestoreState, target: RestoreState) -> RestoreState:
    """
    Move to target, which must be current's immediate successor.

    Raises:
        RestoreError: On any other transition
    """
    if next_state(current) != target:
        raise RestoreError(
            f"Illegal restore transition {current.value} -> {target.value}",
            details={"current": current.value, "target": target.value},
        )
    return target


def is_destructive(state: RestoreState) -> bool:
    """True once live services or data have been touched."""
    return STATE_ORDER.index(state) >= STATE_ORDER.index(RestoreState.SERVICES_STOPPED)


class IntegrityOutcome(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"  # No manifest in the backup
    OVERRIDDEN = "overridden"  # Mismatch accepted by the operator


@dataclass(frozen=True)
class BackupContents:
    """Which marker paths a backup root contains."""

    has_db_volume: bool = False
    has_db_dump: bool = False
    has_geo_volume: bool = False
    has_geo_dump: bool = False
    has_object_volume: bool = False
    mirror_dirs: Tuple[str, ...] = ()
    has_manifest: bool = False
    has_log: bool = False


@dataclass(frozen=True)
class GeoDecision:
    """Whether the geo database is processed, and why not if it isn't."""

    process: bool
    skipped_because: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RestorePlan:
    """Decisions locked in before the first destructive step."""

    backup_root: Path
    database_backup_type: DatabaseBackupType
    object_backup_type: ObjectBackupType
    geo: GeoDecision
    integrity: IntegrityOutcome
    stack_dir: Path
    project_name: str
    provenance: Provenance = Provenance()

    @property
    def process_geodb(self) -> bool:
        return self.geo.process


def scan_backup(root: Path, mirror_dirs: Iterable[str] | None = None) -> BackupContents:
    """
    Snapshot the marker paths of a backup root.

    Args:
        root: Backup root
        mirror_dirs: Bucket directory names to look for (default buckets if None)
    """
    if mirror_dirs is None:
        mirror_dirs = DEFAULT_BUCKETS.values()
    db_volumes = root / DB_VOLUMES_DIR
    object_volumes = root / OBJECT_VOLUMES_DIR
    return BackupContents(
        has_db_volume=(db_volumes / PRIMARY_DB_VOLUME_DIR).is_dir(),
        has_db_dump=(root / PRIMARY_DB_DUMP).is_file(),
        has_geo_volume=(db_volumes / GEO_DB_VOLUME_DIR).is_dir(),
        has_geo_dump=(root / GEO_DB_DUMP).is_file(),
        has_object_volume=any(
            (object_volumes / object_volume_dir(i)).is_dir() for i in range(1, 5)
        ),
        mirror_dirs=tuple(d for d in mirror_dirs if (root / d).is_dir()),
        has_manifest=(root / MANIFEST_FILE).is_file(),
        has_log=(root / BACKUP_LOG).is_file(),
    )


def classify_database_backup(contents: BackupContents) -> DatabaseBackupType:
    """
    Volume tree wins over a dump file; neither is fatal.

    Raises:
        ClassificationUnknown: If no primary database backup exists
    """
    if contents.has_db_volume:
        return DatabaseBackupType.VOLUME
    if contents.has_db_dump:
        return DatabaseBackupType.DUMP
    raise ClassificationUnknown(
        "No valid main database backup found (neither volume nor dump)"
    )


def classify_object_backup(contents: BackupContents) -> ObjectBackupType:
    """
    Volume tree wins over mirror directories; neither is fatal.

    Raises:
        ClassificationUnknown: If no object store backup exists
    """
    if contents.has_object_volume:
        return ObjectBackupType.VOLUME
    if contents.mirror_dirs:
        return ObjectBackupType.MIRROR
    raise ClassificationUnknown(
        "No object store data found in backup (neither volume nor mirror)"
    )


def geo_data_present(contents: BackupContents, database_type: DatabaseBackupType) -> bool:
    if database_type == DatabaseBackupType.VOLUME:
        return contents.has_geo_volume
    return contents.has_geo_dump


def decide_geo(requested: bool, service_declared: bool, data_present: bool) -> GeoDecision:
    """
    Process the geo database only if requested, declared and backed up.
    """
    reasons = []
    if not requested:
        reasons.append("not requested")
    if not service_declared:
        reasons.append("service not defined")
    if not data_present:
        reasons.append("no data in backup")
    return GeoDecision(process=not reasons, skipped_because=tuple(reasons))


def needs_override(report: ManifestReport) -> bool:
    return report.manifest_present and not report.ok


def integrity_gate(report: ManifestReport, override: bool = False) -> IntegrityOutcome:
    """
    Decide how to proceed after manifest verification.

    Raises:
        ChecksumMismatch: On a mismatch without an operator override
    """
    if not report.manifest_present:
        return IntegrityOutcome.UNVERIFIED
    if report.ok:
        return IntegrityOutcome.VERIFIED
    if override:
        return IntegrityOutcome.OVERRIDDEN
    raise ChecksumMismatch(
        "Restore aborted due to failed checksum",
        details={
            "mismatched": report.mismatched[:10],
            "missing": report.missing[:10],
            "unexpected": report.unexpected[:10],
        },
    )


def check_confirmation(typed: str | None, expected: str = CONFIRMATION_PHRASE) -> None:
    """
    Require the exact, case-sensitive confirmation phrase.

    Raises:
        UserAborted: On anything else
    """
    if typed != expected:
        raise UserAborted("Restore cancelled by user")


def build_plan(
    backup_root: Path,
    contents: BackupContents,
    geo: GeoDecision,
    integrity: IntegrityOutcome,
    stack_dir: Path,
    project_name: str,
    provenance: Provenance | None = None,
) -> RestorePlan:
    """
    Lock in the restore decisions.

    Raises:
        ClassificationUnknown: If either backup type cannot be determined
    """
    return RestorePlan(
        backup_root=backup_root,
        database_backup_type=classify_database_backup(contents),
        object_backup_type=classify_object_backup(contents),
        geo=geo,
        integrity=integrity,
        stack_dir=stack_dir,
        project_name=project_name,
        provenance=provenance or Provenance(),
    )

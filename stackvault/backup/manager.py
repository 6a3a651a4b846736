# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault Backup Manager - One backup run, start to finish.

A run creates a timestamped backup root, captures both databases and the
object store the way the selected strategy prescribes, snapshots the
stack configuration, records provenance, writes the integrity manifest
and finally rotates old backups. Cold runs stop the stack first and
always try to bring it back up, also after a failure.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List

import structlog

from stackvault.backup.plan import (
    classify_database_backup,
    classify_object_backup,
    geo_data_present,
    scan_backup,
)
from stackvault.backup.retention import list_backup_roots, rotate_backups
from stackvault.config import (
    GEO_DB_SERVICE,
    GEO_DB_VOLUME,
    OBJECT_STORE_VOLUMES,
    PRIMARY_DB_VOLUME,
    BackupKind,
    BackupMode,
    DatabaseBackupType,
    ObjectBackupType,
    StackConfig,
)
from stackvault.engines.dumps import dump_database
from stackvault.engines.mirror import mirror_to_backup
from stackvault.engines.volumes import copy_volume, inspect_volume
from stackvault.exceptions import ClassificationUnknown, CopyFailed, StackVaultError
from stackvault.integrity.manifest import write_manifest
from stackvault.integrity.provenance import read_provenance, record_provenance
from stackvault.integrity.snapshot import snapshot_config
from stackvault.layout import (
    BACKUP_LOG,
    FAILED_SUFFIX,
    DB_VOLUMES_DIR,
    GEO_DB_DUMP,
    GEO_DB_VOLUME_DIR,
    OBJECT_VOLUMES_DIR,
    PRIMARY_DB_DUMP,
    PRIMARY_DB_VOLUME_DIR,
    ROOT_NAME,
    object_volume_dir,
)
from stackvault.logs import bind_run_log, unbind_run_log
from stackvault.preflight import check_capacity, check_prerequisites
from stackvault.runner import CommandRunner
from stackvault.services.lifecycle import (
    declared_services,
    start_all,
    start_subset,
    stop_all,
    wait_ready,
)
from stackvault.strategy import Strategy, resolve_strategy

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


@dataclass(frozen=True)
class BackupDescriptor:
    """Identity and contents of one backup root."""

    timestamp: str
    kind: BackupKind
    mode: BackupMode
    root: Path
    database_backup_type: DatabaseBackupType
    object_backup_type: ObjectBackupType
    source_revision: str | None = None
    source_remote: str | None = None
    geo_present: bool | None = None

    @property
    def name(self) -> str:
        return self.root.name


def backup_name(timestamp: str, kind: BackupKind, mode: BackupMode) -> str:
    return f"{timestamp}_{kind.value}_{mode.value}"


def describe_backup(root: Path, buckets: Iterable[str] | None = None) -> BackupDescriptor:
    """
    Rebuild the descriptor of an existing backup root.

    Args:
        root: Backup root
        buckets: Bucket directory names to look for (default buckets if None)

    Raises:
        StackVaultError: If the directory name is not a backup root name
    """
    match = ROOT_NAME.match(root.name)
    if not match:
        raise StackVaultError(
            f"Not a backup directory: {root.name}",
            details={"root": str(root)},
        )

    contents = scan_backup(root, buckets)

    try:
        database_type = classify_database_backup(contents)
    except ClassificationUnknown:
        database_type = DatabaseBackupType.UNKNOWN
    try:
        object_type = classify_object_backup(contents)
    except ClassificationUnknown:
        object_type = ObjectBackupType.UNKNOWN

    provenance = read_provenance(root)

    return BackupDescriptor(
        timestamp=match.group("timestamp"),
        kind=BackupKind(match.group("kind")),
        mode=BackupMode(match.group("mode")),
        root=root,
        database_backup_type=database_type,
        object_backup_type=object_type,
        source_revision=provenance.revision,
        source_remote=provenance.remote,
        geo_present=(
            geo_data_present(contents, database_type)
            if database_type != DatabaseBackupType.UNKNOWN
            else None
        ),
    )


def list_backups(config: StackConfig) -> List[BackupDescriptor]:
    """Descriptors of all complete backups in the backup directory, oldest first."""
    return [
        describe_backup(root, config.buckets.values())
        for root in list_backup_roots(config.backup_host_dir)
    ]


async def _start_for_hot_backup(
    config: StackConfig,
    runner: CommandRunner,
    geo_declared: bool,
) -> None:
    endpoints = [config.primary_db, config.object_store]
    if geo_declared:
        endpoints.insert(1, config.geo_db)

    await start_subset(config, runner, [endpoint.name for endpoint in endpoints])
    for endpoint in endpoints:
        await wait_ready(config, runner, endpoint)


async def _backup_databases(
    config: StackConfig,
    runner: CommandRunner,
    strategy: Strategy,
    root: Path,
    geo_declared: bool,
) -> bool:
    """
    Capture the primary (and, if declared, the geo) database.

    Returns:
        True if geo database data was captured
    """
    if strategy.database_backup_type == DatabaseBackupType.DUMP:
        await dump_database(config, runner, config.primary_db, root / PRIMARY_DB_DUMP)
        if not geo_declared:
            logger.info("geodb_not_declared_skipped")
            return False
        await dump_database(config, runner, config.geo_db, root / GEO_DB_DUMP)
        return True

    primary = await inspect_volume(config, runner, PRIMARY_DB_VOLUME)
    if not primary.exists:
        raise CopyFailed(
            f"Volume {primary.name} not found",
            details={"volume": primary.name},
        )
    await copy_volume(config, runner, primary.name, root / DB_VOLUMES_DIR / PRIMARY_DB_VOLUME_DIR)

    if not geo_declared:
        logger.info("geodb_not_declared_skipped")
        return False

    geo = await inspect_volume(config, runner, GEO_DB_VOLUME)
    if not geo.exists:
        logger.warning("volume_not_found_skipped", volume=geo.name)
        return False
    await copy_volume(config, runner, geo.name, root / DB_VOLUMES_DIR / GEO_DB_VOLUME_DIR)
    return True


async def _backup_objects(
    config: StackConfig,
    runner: CommandRunner,
    strategy: Strategy,
    root: Path,
) -> None:
    if strategy.object_backup_type == ObjectBackupType.MIRROR:
        await mirror_to_backup(config, runner, root)
        return

    if strategy.mode == BackupMode.HOT:
        logger.warning("hot_volume_copy_may_be_inconsistent", services_running=True)

    copied = 0
    for index, suffix in enumerate(OBJECT_STORE_VOLUMES, start=1):
        binding = await inspect_volume(config, runner, suffix)
        if not binding.exists:
            logger.warning("volume_not_found_skipped", volume=binding.name)
            continue
        await copy_volume(
            config,
            runner,
            binding.name,
            root / OBJECT_VOLUMES_DIR / object_volume_dir(index),
        )
        copied += 1

    if not copied:
        raise CopyFailed(
            "No object store volumes found",
            details={"volumes": [config.volume_name(s) for s in OBJECT_STORE_VOLUMES]},
        )


def _set_aside_failed_root(root: Path) -> None:
    """
    Rename an unfinished backup root to <name>.failed.

    The renamed directory keeps its backup.log for diagnosis. Listing and
    rotation skip it and a restore refuses it.
    """
    failed = root.with_name(root.name + FAILED_SUFFIX)
    try:
        root.rename(failed)
    except OSError as e:
        logger.error("failed_backup_not_set_aside", root=str(root), error=str(e))
        return
    logger.warning("failed_backup_set_aside", root=str(failed))


async def _restart_services(config: StackConfig, runner: CommandRunner) -> bool:
    """
    Bring the stack back up after a cold backup.

    A failed or slow restart is logged; the backup itself stays valid.

    Returns:
        True if the stack came back and is ready
    """
    try:
        await start_all(config, runner)
        for endpoint in (config.primary_db, config.object_store):
            await wait_ready(config, runner, endpoint, timeout=config.restart_timeout)
    except StackVaultError as e:
        logger.warning("services_restart_incomplete", error=str(e))
        return False
    logger.info("services_restarted", project=config.project_name)
    return True


async def run_backup(
    config: StackConfig,
    runner: CommandRunner,
    kind: BackupKind | str,
    mode: BackupMode | str | None = BackupMode.COLD,
) -> BackupDescriptor:
    """
    Create one backup of the stack.

    This is the main entry point for backups.

    Steps:
    1. Resolve the strategy (incremental is always hot)
    2. Check docker and free space on the backup target
    3. Create <timestamp>_<kind>_<mode> and log into its backup.log
    4. Cold: stop the stack. Hot: start databases and object store
    5. Databases: volume copy (cold) or dump (hot)
    6. Object store: volume copy (full) or mirror (incremental)
    7. Snapshot config, record provenance
    8. Write the manifest (a failed run leaves <root>.failed instead)
    9. Cold: restart the stack
    10. Rotate old backups

    Args:
        config: Stack configuration
        runner: Command runner
        kind: 'full' or 'incremental'
        mode: 'cold' (default) or 'hot'

    Returns:
        BackupDescriptor of the new backup

    Raises:
        StackVaultError: Subclass describing the first failure
    """
    strategy = resolve_strategy(kind, mode)

    await check_prerequisites(runner)
    check_capacity(config.backup_host_dir, config.required_space_gb)

    timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
    root = config.backup_host_dir / backup_name(timestamp, strategy.kind, strategy.mode)
    root.mkdir(parents=True)

    log_path = root / BACKUP_LOG
    bind_run_log(log_path)

    logger.info(
        "backup_started",
        kind=strategy.kind.value,
        mode=strategy.mode.value,
        root=str(root),
        project=config.project_name,
    )

    try:
        try:
            geo_declared = GEO_DB_SERVICE in await declared_services(config, runner)

            if strategy.stops_services:
                await stop_all(config, runner)
            else:
                await _start_for_hot_backup(config, runner, geo_declared)

            geo_present = await _backup_databases(config, runner, strategy, root, geo_declared)
            await _backup_objects(config, runner, strategy, root)

            snapshot_config(config, root)
            await record_provenance(config, runner, log_path)

            logger.info("backup_data_complete", root=str(root))
        except Exception as e:
            logger.error("backup_failed", root=str(root), error=str(e))
            raise
        finally:
            unbind_run_log()

        # backup.log is complete; the manifest covers it
        await write_manifest(root)
    except Exception:
        _set_aside_failed_root(root)
        if strategy.stops_services:
            logger.info("restarting_services_after_failure")
            await _restart_services(config, runner)
        raise

    if strategy.stops_services:
        await _restart_services(config, runner)

    deleted = rotate_backups(config.backup_host_dir, config.max_backups_to_keep, current=root)

    provenance = read_provenance(root)
    descriptor = BackupDescriptor(
        timestamp=timestamp,
        kind=strategy.kind,
        mode=strategy.mode,
        root=root,
        database_backup_type=strategy.database_backup_type,
        object_backup_type=strategy.object_backup_type,
        source_revision=provenance.revision,
        source_remote=provenance.remote,
        geo_present=geo_present,
    )

    logger.info(
        "backup_complete",
        backup=descriptor.name,
        database_type=descriptor.database_backup_type.value,
        object_type=descriptor.object_backup_type.value,
        rotated=len(deleted),
    )
    return descriptor

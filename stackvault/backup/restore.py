# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault Restore - Restore a whole stack from a backup root.

The restore walks the state machine from stackvault.backup.plan. Every
decision (backup types, geo database, integrity, operator confirmation)
is made before the first service is stopped; after that the steps run
strictly in order and any failure aborts the run.
"""

import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Dict, List, Protocol

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from stackvault.config import (
    GEO_DB_SERVICE,
    GEO_DB_VOLUME,
    OBJECT_STORE_SERVICE,
    OBJECT_STORE_VOLUMES,
    PRIMARY_DB_VOLUME,
    DatabaseBackupType,
    ObjectBackupType,
    StackConfig,
)
from stackvault.backup.plan import (
    RestorePlan,
    RestoreState,
    advance,
    build_plan,
    check_confirmation,
    classify_database_backup,
    classify_object_backup,
    decide_geo,
    geo_data_present,
    integrity_gate,
    is_destructive,
    needs_override,
    scan_backup,
)
from stackvault.engines.dumps import restore_database
from stackvault.engines.inventory import compare_inventory, count_bucket_objects, parse_listing
from stackvault.engines.mirror import mirror_to_store
from stackvault.engines.volumes import copy_volume, inspect_volume
from stackvault.errors import explain_incomplete_stack_dir
from stackvault.exceptions import (
    ClassificationUnknown,
    ConfigurationMissing,
    StackVaultError,
    TransferFailed,
)
from stackvault.integrity.manifest import ManifestReport, verify_manifest
from stackvault.integrity.provenance import read_provenance
from stackvault.layout import (
    CERTIFICATE_DIRS,
    DB_VOLUMES_DIR,
    FAILED_SUFFIX,
    GEO_DB_DUMP,
    GEO_DB_VOLUME_DIR,
    OBJECT_LISTING,
    OBJECT_VOLUMES_DIR,
    PRIMARY_DB_DUMP,
    PRIMARY_DB_VOLUME_DIR,
    object_volume_dir,
)
from stackvault.logs import bind_run_log, unbind_run_log
from stackvault.preflight import check_prerequisites
from stackvault.runner import CommandRunner
from stackvault.services.lifecycle import (
    declared_services,
    start_all,
    start_subset,
    stop_all,
    stop_service,
    wait_ready,
)

logger = structlog.get_logger()

# Entries a stack directory needs before it can be restored into
REQUIRED_STACK_ENTRIES = (".git", "docker-compose.yml", ".env")

# Anchored at the backup root; the directories stay, their contents are skipped
RSYNC_EXCLUDES = tuple(f"/{directory}/*" for directory in CERTIFICATE_DIRS)


@dataclass(frozen=True)
class RemoteSource:
    """A backup root on another server, fetched with rsync over ssh."""

    host: str  # user@host
    path: str

    def __str__(self) -> str:
        return f"{self.host}:{self.path}"


class Operator(Protocol):
    """The person (or script) answering the restore's questions."""

    async def confirm(self, plan: RestorePlan) -> str | None:
        """Return the confirmation phrase as typed."""
        ...

    async def accept_checksum_mismatch(self, report: ManifestReport) -> bool:
        """Return True to continue despite a checksum mismatch."""
        ...


@dataclass
class RestoreResult:
    """Result of a restore run."""

    plan: RestorePlan | None = None
    states: List[RestoreState] = field(default_factory=lambda: [RestoreState.START])
    table_counts: Dict[str, int] = field(default_factory=dict)
    inventory_mismatches: List[str] = field(default_factory=list)
    log_path: Path | None = None

    @property
    def state(self) -> RestoreState:
        return self.states[-1]

    @property
    def completed(self) -> bool:
        return self.state == RestoreState.DONE


def _enter(result: RestoreResult, target: RestoreState) -> None:
    result.states.append(advance(result.state, target))
    logger.info("restore_state", state=target.value)


@asynccontextmanager
async def acquire_source(
    runner: CommandRunner,
    source: Path | RemoteSource,
) -> AsyncIterator[Path]:
    """
    Yield a local backup root for source.

    Local paths are used in place. Remote backups are copied into a
    temporary directory that is removed afterwards, whether the restore
    succeeded or not.

    Raises:
        ConfigurationMissing: If a local backup directory does not exist
        TransferFailed: If rsync fails
    """
    if not isinstance(source, RemoteSource):
        root = Path(source).expanduser().resolve()
        if not root.is_dir():
            raise ConfigurationMissing(
                f"Backup directory not found: {root}",
                details={"path": str(root)},
            )
        yield root
        return

    from ulid import ULID

    staging = Path(tempfile.gettempdir()) / f"stackvault_restore_{ULID()}"
    staging.mkdir(parents=True)
    logger.info("remote_transfer_started", source=str(source), staging=str(staging))

    try:
        excludes = [f"--exclude={pattern}" for pattern in RSYNC_EXCLUDES]
        result = await runner(
            ["rsync", "-avz", *excludes, f"{source.host}:{source.path.rstrip('/')}/", f"{staging}/"]
        )
        if not result.ok:
            raise TransferFailed(
                f"Transfer from {source} failed",
                details={"exit_code": result.exit_code, "stderr": result.stderr.strip()},
            )
        logger.info("remote_transfer_complete", source=str(source))
        yield staging
    finally:
        shutil.rmtree(staging, ignore_errors=True)
        logger.info("temporary_backup_removed", staging=str(staging))


def _refuse_failed_root(source: Path | RemoteSource) -> None:
    path = PurePosixPath(source.path) if isinstance(source, RemoteSource) else Path(source)
    if path.name.endswith(FAILED_SUFFIX):
        raise ClassificationUnknown(
            f"{path.name} is the remainder of a failed backup run",
            details={"source": str(source)},
        )


def check_stack_dir(stack_dir: Path, backup_root: Path) -> None:
    """
    Verify the stack directory can be restored into.

    Raises:
        ConfigurationMissing: With preparation steps (including the code
            revision the backup was taken with) if anything is missing
    """
    missing = [name for name in REQUIRED_STACK_ENTRIES if not (stack_dir / name).exists()]
    if not missing:
        return

    provenance = read_provenance(backup_root)
    raise ConfigurationMissing(
        explain_incomplete_stack_dir(
            stack_dir, missing, backup_root, provenance.revision, provenance.remote
        ),
        details={"stack_dir": str(stack_dir), "missing": missing},
    )


async def _prepare(
    config: StackConfig,
    runner: CommandRunner,
    backup_root: Path,
    operator: Operator,
    restore_geodb: bool,
    result: RestoreResult,
) -> RestorePlan:
    """Everything up to CONFIRMED; touches no service."""
    contents = scan_backup(backup_root, config.buckets.values())

    database_type = classify_database_backup(contents)
    _enter(result, RestoreState.DATABASE_CLASSIFIED)
    logger.info("database_backup_classified", type=database_type.value)

    object_type = classify_object_backup(contents)
    _enter(result, RestoreState.OBJECTS_CLASSIFIED)
    logger.info("object_backup_classified", type=object_type.value)

    declared = GEO_DB_SERVICE in await declared_services(config, runner)
    geo = decide_geo(restore_geodb, declared, geo_data_present(contents, database_type))
    if geo.process:
        logger.info("geodb_included")
    elif restore_geodb:
        logger.warning("geodb_skipped", reasons=list(geo.skipped_because))
    else:
        logger.info("geodb_skipped", reasons=list(geo.skipped_because))

    report = await verify_manifest(backup_root, config.checksum_policy)
    override = False
    if not report.manifest_present:
        logger.warning("manifest_missing", backup_root=str(backup_root))
    elif needs_override(report):
        logger.warning(
            "checksum_verification_failed",
            mismatched=report.mismatched[:10],
            missing=report.missing[:10],
            unexpected=report.unexpected[:10],
            policy=config.checksum_policy.value,
        )
        override = await operator.accept_checksum_mismatch(report)
    integrity = integrity_gate(report, override)
    _enter(result, RestoreState.INTEGRITY_CHECKED)

    plan = build_plan(
        backup_root=backup_root,
        contents=contents,
        geo=geo,
        integrity=integrity,
        stack_dir=config.stack_dir,
        project_name=config.project_name,
        provenance=read_provenance(backup_root),
    )

    check_confirmation(await operator.confirm(plan))
    _enter(result, RestoreState.CONFIRMED)
    return plan


async def _restore_object_volumes(
    config: StackConfig,
    runner: CommandRunner,
    backup_root: Path,
) -> None:
    for index, suffix in enumerate(OBJECT_STORE_VOLUMES, start=1):
        source = backup_root / OBJECT_VOLUMES_DIR / object_volume_dir(index)
        if not source.is_dir():
            logger.warning("object_volume_not_in_backup", volume=suffix)
            continue
        binding = await inspect_volume(config, runner, suffix)
        if not binding.exists:
            logger.warning("volume_missing_will_be_created", volume=binding.name)
        await copy_volume(config, runner, source, binding.name, wipe_target_first=True)


async def _restore_object_mirror(
    config: StackConfig,
    runner: CommandRunner,
    backup_root: Path,
) -> None:
    await start_subset(config, runner, [OBJECT_STORE_SERVICE])
    await wait_ready(config, runner, config.object_store)
    await mirror_to_store(config, runner, backup_root)
    await stop_service(config, runner, OBJECT_STORE_SERVICE)


async def _restore_database_volumes(
    config: StackConfig,
    runner: CommandRunner,
    plan: RestorePlan,
) -> None:
    volumes = [(PRIMARY_DB_VOLUME_DIR, PRIMARY_DB_VOLUME)]
    if plan.process_geodb:
        volumes.append((GEO_DB_VOLUME_DIR, GEO_DB_VOLUME))

    for directory, suffix in volumes:
        binding = await inspect_volume(config, runner, suffix)
        if not binding.exists:
            logger.warning("volume_missing_will_be_created", volume=binding.name)
        await copy_volume(
            config,
            runner,
            plan.backup_root / DB_VOLUMES_DIR / directory,
            binding.name,
            wipe_target_first=True,
        )


async def _restore_database_dumps(
    config: StackConfig,
    runner: CommandRunner,
    plan: RestorePlan,
) -> Dict[str, int]:
    targets = [(config.primary_db, plan.backup_root / PRIMARY_DB_DUMP)]
    if plan.process_geodb:
        targets.append((config.geo_db, plan.backup_root / GEO_DB_DUMP))

    await start_subset(config, runner, [endpoint.name for endpoint, _ in targets])

    counts: Dict[str, int] = {}
    for endpoint, dump_file in targets:
        await wait_ready(config, runner, endpoint)
        counts[endpoint.name] = await restore_database(config, runner, endpoint, dump_file)
    return counts


async def _health_check(config: StackConfig, runner: CommandRunner, plan: RestorePlan) -> None:
    endpoints = [config.primary_db, config.object_store]
    if plan.process_geodb:
        endpoints.append(config.geo_db)
    for endpoint in endpoints:
        await wait_ready(config, runner, endpoint, timeout=config.restart_timeout)


async def _check_inventory(config: StackConfig, plan: RestorePlan) -> List[str]:
    """Compare live bucket counts with the backup listing (best effort)."""
    if plan.object_backup_type != ObjectBackupType.MIRROR or not config.object_store_url:
        return []

    expected = {
        bucket: count
        for bucket, count in parse_listing(plan.backup_root / OBJECT_LISTING).items()
        if bucket in config.buckets
    }
    if not expected:
        logger.info("inventory_check_skipped", reason="no_listing")
        return []

    try:
        actual = await count_bucket_objects(config, expected)
    except (BotoCoreError, ClientError) as e:
        logger.warning("inventory_check_failed", error=str(e))
        return []

    mismatches = compare_inventory(expected, actual or {})
    if mismatches:
        logger.warning(
            "inventory_mismatch",
            buckets=mismatches,
            expected={b: expected[b] for b in mismatches},
            actual={b: (actual or {}).get(b, 0) for b in mismatches},
        )
    else:
        logger.info("inventory_matches", buckets=sorted(expected))
    return mismatches


async def _recover_services(config: StackConfig, runner: CommandRunner) -> None:
    """Bring the stack back up after a failed destructive step (best effort)."""
    try:
        await start_all(config, runner)
    except StackVaultError as e:
        logger.warning("services_recovery_failed", error=str(e))
        return
    logger.info("services_recovery_attempted", project=config.project_name)


async def _execute(
    config: StackConfig,
    runner: CommandRunner,
    plan: RestorePlan,
    result: RestoreResult,
) -> None:
    """SERVICES_STOPPED through DONE."""
    await stop_all(config, runner)
    _enter(result, RestoreState.SERVICES_STOPPED)

    if plan.object_backup_type == ObjectBackupType.VOLUME:
        await _restore_object_volumes(config, runner, plan.backup_root)
    else:
        await _restore_object_mirror(config, runner, plan.backup_root)
    _enter(result, RestoreState.OBJECTS_RESTORED)

    if plan.database_backup_type == DatabaseBackupType.VOLUME:
        await _restore_database_volumes(config, runner, plan)
    else:
        result.table_counts = await _restore_database_dumps(config, runner, plan)
    _enter(result, RestoreState.DATABASES_RESTORED)

    await start_all(config, runner)
    _enter(result, RestoreState.SERVICES_STARTED)

    await _health_check(config, runner, plan)
    _enter(result, RestoreState.HEALTH_CHECKED)

    result.inventory_mismatches = await _check_inventory(config, plan)
    _enter(result, RestoreState.DONE)


async def run_restore(
    config: StackConfig,
    runner: CommandRunner,
    source: Path | RemoteSource,
    operator: Operator,
    restore_geodb: bool | None = None,
) -> RestoreResult:
    """
    Restore the stack from a backup.

    This is the main entry point for restores. The run is logged to
    restore_<timestamp>.log in config.restore_log_dir.

    Args:
        config: Stack configuration
        runner: Command runner
        source: Local backup root or RemoteSource
        operator: Supplies the confirmation phrase and checksum override
        restore_geodb: Include the geo database (default: config.restore_geodb)

    Returns:
        RestoreResult with the plan and the states visited

    Raises:
        StackVaultError: Subclass describing the first failure
    """
    restore_geodb = config.restore_geodb if restore_geodb is None else restore_geodb

    result = RestoreResult(
        log_path=config.restore_log_dir / f"restore_{datetime.now():%Y%m%d_%H%M%S}.log"
    )
    bind_run_log(result.log_path)

    logger.info(
        "restore_started",
        source=str(source),
        stack_dir=str(config.stack_dir),
        project=config.project_name,
    )

    try:
        _refuse_failed_root(source)
        await check_prerequisites(runner, need_rsync=isinstance(source, RemoteSource))

        async with acquire_source(runner, source) as backup_root:
            _enter(result, RestoreState.SOURCE_ACQUIRED)
            check_stack_dir(config.stack_dir, backup_root)

            result.plan = await _prepare(
                config, runner, backup_root, operator, restore_geodb, result
            )
            await _execute(config, runner, result.plan, result)

        logger.info(
            "restore_complete",
            database_type=result.plan.database_backup_type.value,
            object_type=result.plan.object_backup_type.value,
            geodb=result.plan.process_geodb,
            tables=result.table_counts,
            log=str(result.log_path),
        )
    except Exception as e:
        if is_destructive(result.state):
            logger.error(
                "restore_failed_stack_inconsistent",
                state=result.state.value,
                error=str(e),
            )
            await _recover_services(config, runner)
        else:
            logger.warning("restore_aborted_nothing_changed", state=result.state.value, error=str(e))
        raise
    finally:
        unbind_run_log()

    return result

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Critical Safety Tests for stackvault.

These tests verify the core safety guarantees:
1. Nothing is stopped before the backup is classified and confirmed
2. Confirmation requires the exact phrase
3. Restored databases are validated by table count
4. An empty copy is never reported as success
5. The geo database is only touched when all conditions hold
6. Restores move through the states in order

These tests MUST pass before any production deployment.
"""


import pytest

from stackvault.backup.manager import run_backup
from stackvault.backup.plan import (
    BackupContents,
    IntegrityOutcome,
    RestoreState,
    advance,
    check_confirmation,
    classify_database_backup,
    classify_object_backup,
    decide_geo,
    integrity_gate,
    is_destructive,
    next_state,
    scan_backup,
)
from stackvault.backup.restore import run_restore
from stackvault.config import BackupKind, BackupMode, DatabaseBackupType, ObjectBackupType
from stackvault.engines.dumps import validate_table_count
from stackvault.exceptions import (
    ChecksumMismatch,
    ClassificationUnknown,
    EmptyVolumeAfterCopy,
    RestoreError,
    RestoreValidationFailed,
    UserAborted,
)
from stackvault.integrity.manifest import ManifestReport, write_manifest
from stackvault.runner import CommandResult


# ============================================================================
# Test 1: NOTHING STOPPED BEFORE CLASSIFICATION
# ============================================================================

@pytest.mark.asyncio
async def test_unclassifiable_backup_never_stops_services(
    test_config, runner, operator, make_backup
):
    """
    CRITICAL: A backup without database data must abort before any
    service is stopped.
    """
    root = make_backup(database=None, objects="mirror")

    with pytest.raises(ClassificationUnknown):
        await run_restore(test_config, runner, root, operator)

    assert not runner.stopped_stack, "Live stack must not be stopped"
    assert operator.plans == [], "Operator must not be asked to confirm"
    assert not runner.called("docker", "run")


@pytest.mark.asyncio
async def test_backup_without_objects_never_stops_services(
    test_config, runner, operator, make_backup
):
    root = make_backup(database="dump", objects=None)

    with pytest.raises(ClassificationUnknown):
        await run_restore(test_config, runner, root, operator)

    assert not runner.stopped_stack


@pytest.mark.asyncio
async def test_checksum_mismatch_without_override_aborts_before_stop(
    test_config, runner, operator, make_backup
):
    """CRITICAL: A tampered backup is refused unless the operator overrides."""
    root = make_backup(database="dump", objects="mirror")
    await write_manifest(root)
    (root / "db_dump.sqlc").write_bytes(b"PGDMP tampered")

    operator.accept_mismatch = False

    with pytest.raises(ChecksumMismatch):
        await run_restore(test_config, runner, root, operator)

    assert len(operator.mismatch_reports) == 1
    assert "db_dump.sqlc" in operator.mismatch_reports[0].mismatched
    assert not runner.stopped_stack


# ============================================================================
# Test 2: EXACT CONFIRMATION PHRASE
# ============================================================================

@pytest.mark.asyncio
async def test_lowercase_confirmation_aborts_with_no_side_effects(
    test_config, runner, operator, make_backup
):
    """
    CRITICAL: "restore now" is not "RESTORE NOW". Nothing may be
    stopped, dropped or copied.
    """
    root = make_backup(database="dump", objects="mirror")
    operator.phrase = "restore now"

    with pytest.raises(UserAborted):
        await run_restore(test_config, runner, root, operator)

    assert len(operator.plans) == 1
    assert not runner.stopped_stack
    assert not runner.called("dropdb")
    assert not runner.called("pg_restore")
    assert not runner.called("docker", "run")
    assert not runner.called("up")


def test_check_confirmation_is_case_sensitive():
    check_confirmation("RESTORE NOW")

    for typed in ("restore now", "Restore Now", "RESTORE NOW ", "", None, "yes"):
        with pytest.raises(UserAborted):
            check_confirmation(typed)


# ============================================================================
# Test 3: TABLE COUNT VALIDATION
# ============================================================================

@pytest.mark.asyncio
async def test_restore_with_too_few_tables_fails(test_config, runner, operator, make_backup):
    """
    CRITICAL: A dump restore leaving 3 tables in the public schema must
    fail with RestoreValidationFailed(3).
    """
    root = make_backup(database="dump", objects="mirror")
    runner.reply("psql", stdout="3\n")

    with pytest.raises(RestoreValidationFailed) as exc_info:
        await run_restore(test_config, runner, root, operator)

    assert exc_info.value.table_count == 3
    assert exc_info.value.details["minimum"] == 5
    # The failure happened after the stack was stopped, and after pg_restore
    assert runner.stopped_stack
    assert runner.index("pg_restore") < runner.index("psql")


@pytest.mark.asyncio
async def test_failed_validation_brings_stack_back_up(test_config, runner, operator, make_backup):
    """A failure after the stack went down still restarts every service."""
    root = make_backup(database="dump", objects="mirror")
    runner.reply("psql", stdout="3\n")

    with pytest.raises(RestoreValidationFailed):
        await run_restore(test_config, runner, root, operator)

    restarts = [
        i for i, call in enumerate(runner.calls) if call.argv == ("docker", "compose", "up", "-d")
    ]
    assert len(restarts) == 1
    assert restarts[0] > runner.index("psql") > runner.index("pg_restore")


@pytest.mark.asyncio
async def test_failed_restart_after_failed_restore_keeps_original_error(
    test_config, runner, operator, make_backup
):
    root = make_backup(database="dump", objects="mirror")
    runner.reply("psql", stdout="3\n")
    runner.on(
        lambda argv: argv == ("docker", "compose", "up", "-d"),
        handler=lambda call: CommandResult(call.argv, 1, "", "port is already allocated"),
    )

    with pytest.raises(RestoreValidationFailed):
        await run_restore(test_config, runner, root, operator)

    log_text = next(test_config.restore_log_dir.glob("restore_*.log")).read_text()
    assert "ERROR: restore_failed_stack_inconsistent" in log_text
    assert "WARNING: services_recovery_failed" in log_text


@pytest.mark.asyncio
async def test_failed_table_count_query_counts_as_empty(test_config, runner, operator, make_backup):
    root = make_backup(database="dump", objects="mirror")
    runner.fail("psql")

    with pytest.raises(RestoreValidationFailed) as exc_info:
        await run_restore(test_config, runner, root, operator)

    assert exc_info.value.table_count == 0


def test_validate_table_count_threshold():
    assert validate_table_count(5, 5) == 5
    assert validate_table_count(42, 5) == 42

    with pytest.raises(RestoreValidationFailed) as exc_info:
        validate_table_count(4, 5, "qfieldcloud_db")
    assert exc_info.value.table_count == 4
    assert exc_info.value.details["database"] == "qfieldcloud_db"


# ============================================================================
# Test 4: EMPTY AFTER COPY
# ============================================================================

@pytest.mark.asyncio
async def test_empty_copy_fails_cold_backup_and_restarts_stack(test_config, runner):
    """
    CRITICAL: If the copy helper reports an empty target, the backup fails
    and the stopped stack is brought back up.
    """
    runner.on(
        lambda argv: argv[:2] == ("docker", "run") and "none" in argv,
        CommandResult(("docker",), 3, "", "target is empty after copy"),
    )

    with pytest.raises(EmptyVolumeAfterCopy):
        await run_backup(test_config, runner, BackupKind.FULL, BackupMode.COLD)

    down = runner.index("docker", "compose", "down")
    assert down >= 0
    restarts = [
        i for i, call in enumerate(runner.calls)
        if call.argv[:4] == ("docker", "compose", "up", "-d") and len(call.argv) == 4
    ]
    assert restarts and restarts[0] > down, "Stack must be restarted after failure"


@pytest.mark.asyncio
async def test_empty_copy_during_restore_is_reported(test_config, runner, operator, make_backup):
    root = make_backup(database="volume", objects="volume", name="2025-10-14_02-00-00_full_cold")
    runner.on(
        lambda argv: argv[:2] == ("docker", "run") and "none" in argv,
        CommandResult(("docker",), 3, "", "target is empty after copy"),
    )

    with pytest.raises(EmptyVolumeAfterCopy):
        await run_restore(test_config, runner, root, operator)


# ============================================================================
# Test 5: GEO DATABASE CONDITIONS
# ============================================================================

@pytest.mark.asyncio
async def test_geodb_skipped_when_backup_has_no_geo_dump(
    test_config, runner, operator, make_backup
):
    """
    CRITICAL: Requested + declared is not enough; without geodb_dump.sqlc
    the geo database is left alone.
    """
    root = make_backup(database="dump", objects="mirror", geo=False)
    runner.services = ["db", "geodb", "minio"]
    runner.reply("psql", stdout="12\n")

    result = await run_restore(test_config, runner, root, operator, restore_geodb=True)

    assert result.completed
    assert result.plan.database_backup_type == DatabaseBackupType.DUMP
    assert result.plan.object_backup_type == ObjectBackupType.MIRROR
    assert result.plan.process_geodb is False
    assert result.plan.geo.skipped_because == ("no data in backup",)
    assert result.table_counts == {"db": 12}
    assert not runner.called("exec", "-T", "geodb")


def test_decide_geo_requires_all_three_conditions():
    assert decide_geo(True, True, True).process is True

    decision = decide_geo(True, False, True)
    assert decision.process is False
    assert decision.skipped_because == ("service not defined",)

    decision = decide_geo(False, False, False)
    assert decision.process is False
    assert len(decision.skipped_because) == 3


# ============================================================================
# Test 6: CLASSIFICATION AND STATE ORDER
# ============================================================================

def test_classification_prefers_volume_trees():
    both = BackupContents(
        has_db_volume=True,
        has_db_dump=True,
        has_object_volume=True,
        mirror_dirs=("minio_storage",),
    )
    assert classify_database_backup(both) == DatabaseBackupType.VOLUME
    assert classify_object_backup(both) == ObjectBackupType.VOLUME


def test_dump_and_project_files_classify_as_dump_mirror(make_backup):
    root = make_backup(database="dump", objects=None)
    (root / "minio_project_files").mkdir()

    contents = scan_backup(root)

    assert classify_database_backup(contents) == DatabaseBackupType.DUMP
    assert classify_object_backup(contents) == ObjectBackupType.MIRROR
    assert contents.mirror_dirs == ("minio_project_files",)


def test_empty_contents_are_unclassifiable():
    with pytest.raises(ClassificationUnknown):
        classify_database_backup(BackupContents())
    with pytest.raises(ClassificationUnknown):
        classify_object_backup(BackupContents())


def test_state_machine_only_allows_successor():
    state = RestoreState.START
    for target in list(RestoreState)[1:]:
        state = advance(state, target)
    assert state == RestoreState.DONE

    with pytest.raises(RestoreError):
        advance(RestoreState.START, RestoreState.CONFIRMED)
    with pytest.raises(RestoreError):
        advance(RestoreState.CONFIRMED, RestoreState.OBJECTS_RESTORED)
    with pytest.raises(RestoreError):
        next_state(RestoreState.DONE)


def test_destructive_states_start_at_services_stopped():
    assert not is_destructive(RestoreState.CONFIRMED)
    assert is_destructive(RestoreState.SERVICES_STOPPED)
    assert is_destructive(RestoreState.DONE)


def test_integrity_gate_outcomes():
    assert integrity_gate(ManifestReport(manifest_present=False)) == IntegrityOutcome.UNVERIFIED
    assert integrity_gate(ManifestReport(manifest_present=True, checked=3)) == IntegrityOutcome.VERIFIED

    broken = ManifestReport(manifest_present=True, checked=3, mismatched=["db_dump.sqlc"])
    assert integrity_gate(broken, override=True) == IntegrityOutcome.OVERRIDDEN
    with pytest.raises(ChecksumMismatch):
        integrity_gate(broken, override=False)


@pytest.mark.asyncio
async def test_full_restore_visits_every_state_in_order(
    test_config, runner, operator, make_backup
):
    root = make_backup(database="dump", objects="mirror")
    runner.reply("psql", stdout="27\n")

    result = await run_restore(test_config, runner, root, operator)

    assert result.states == list(RestoreState)
    # Objects are restored before databases, and the stack is stopped first
    down = runner.index("docker", "compose", "down")
    mirror = runner.index("docker", "run", "qfieldcloud_default")
    pg_restore = runner.index("pg_restore")
    assert 0 <= down < mirror < pg_restore
    assert result.log_path is not None and result.log_path.exists()
    assert "restore_complete" in result.log_path.read_text()

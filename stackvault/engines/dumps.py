# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Logical Dump/Restore Engine - pg_dump / pg_restore inside the service.

Dumps use PostgreSQL's compressed custom format. A restore drops and
recreates the database, streams the dump into pg_restore with
--no-owner --no-acl and then validates the result by counting tables in
the public schema. The table count is the only automated correctness
check after a restore and is never skipped.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import structlog

from stackvault.config import ServiceEndpoint, StackConfig
from stackvault.exceptions import DumpFailed, RestoreError, RestoreValidationFailed
from stackvault.runner import CommandRunner
from stackvault.services.lifecycle import exec_in_service

logger = structlog.get_logger()

TABLE_COUNT_SQL = (
    "SELECT COUNT(*) FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
)


@dataclass
class PgRestoreOutcome:
    """Structured result of a pg_restore run."""

    exit_code: int
    warning_lines: List[str] = field(default_factory=list)
    error_lines: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.exit_code == 0 and not self.error_lines


def classify_restore_output(exit_code: int, stderr_lines: List[str]) -> PgRestoreOutcome:
    """
    Split pg_restore's stderr into warnings and errors.

    pg_restore reports both on stderr. Lines mentioning "warning" are
    known to be harmless (e.g. missing roles under --no-owner); all other
    lines are kept as errors.
    """
    outcome = PgRestoreOutcome(exit_code=exit_code)
    for line in stderr_lines:
        if "warning" in line.lower():
            outcome.warning_lines.append(line)
        else:
            outcome.error_lines.append(line)
    return outcome


async def dump_database(
    config: StackConfig,
    runner: CommandRunner,
    endpoint: ServiceEndpoint,
    target_file: Path,
) -> Path:
    """
    Dump a database to target_file in compressed custom format.

    Raises:
        DumpFailed: If pg_dump fails; the partial file is removed
    """
    result = await exec_in_service(
        config,
        runner,
        endpoint.name,
        ["pg_dump", "-U", endpoint.user, "-d", endpoint.database, "-Fc", "-Z9"],
        stdout_path=target_file,
    )

    if not result.ok:
        target_file.unlink(missing_ok=True)
        raise DumpFailed(
            f"Database backup failed: {endpoint.database}",
            details={
                "service": endpoint.name,
                "database": endpoint.database,
                "stderr": result.stderr.strip(),
            },
        )

    size = target_file.stat().st_size if target_file.exists() else 0
    logger.info(
        "database_dumped",
        service=endpoint.name,
        database=endpoint.database,
        dump_file=str(target_file),
        size=size,
    )
    return target_file


async def count_public_tables(
    config: StackConfig,
    runner: CommandRunner,
    endpoint: ServiceEndpoint,
) -> int:
    """Count base tables in the public schema; 0 if the query fails."""
    result = await exec_in_service(
        config,
        runner,
        endpoint.name,
        ["psql", "-U", endpoint.user, "-d", endpoint.database, "-t", "-A", "-c", TABLE_COUNT_SQL],
    )
    if not result.ok:
        logger.warning(
            "table_count_failed",
            database=endpoint.database,
            error=result.stderr.strip(),
        )
        return 0
    try:
        return int(result.stdout.strip().splitlines()[-1].strip())
    except (IndexError, ValueError):
        return 0


def validate_table_count(count: int, minimum: int, database: str = "") -> int:
    """
    Check a restored database's table count against the minimum.

    Raises:
        RestoreValidationFailed: If count < minimum
    """
    if count < minimum:
        raise RestoreValidationFailed(count, database=database, minimum=minimum)
    return count


async def restore_database(
    config: StackConfig,
    runner: CommandRunner,
    endpoint: ServiceEndpoint,
    dump_file: Path,
) -> int:
    """
    Recreate a database from a custom-format dump and validate it.

    Steps:
    1. dropdb --if-exists (errors ignored)
    2. createdb (failure is fatal)
    3. pg_restore --no-owner --no-acl from dump_file on stdin
    4. count public tables against config.min_restored_tables

    Returns:
        Number of tables in the restored database

    Raises:
        RestoreError: If the database cannot be created
        RestoreValidationFailed: If too few tables exist afterwards
    """
    database = endpoint.database

    logger.info("database_restore_started", service=endpoint.name, database=database)

    dropped = await exec_in_service(
        config,
        runner,
        endpoint.name,
        ["dropdb", "-U", endpoint.user, "--if-exists", database],
    )
    if not dropped.ok:
        logger.debug("dropdb_failed_ignored", database=database, error=dropped.stderr.strip())

    created = await exec_in_service(
        config,
        runner,
        endpoint.name,
        ["createdb", "-U", endpoint.user, database],
    )
    if not created.ok:
        raise RestoreError(
            f"Database creation failed: {database}",
            details={"service": endpoint.name, "stderr": created.stderr.strip()},
        )

    restored = await exec_in_service(
        config,
        runner,
        endpoint.name,
        ["pg_restore", "-U", endpoint.user, "-d", database, "--no-owner", "--no-acl"],
        stdin_path=dump_file,
    )
    outcome = classify_restore_output(restored.exit_code, restored.stderr_lines)

    # pg_restore exits non-zero for ignorable errors too; validation decides
    if not outcome.clean:
        logger.warning(
            "pg_restore_reported_problems",
            database=database,
            exit_code=outcome.exit_code,
            warnings=len(outcome.warning_lines),
            errors=len(outcome.error_lines),
            first_error=outcome.error_lines[0] if outcome.error_lines else None,
        )

    count = await count_public_tables(config, runner, endpoint)
    validate_table_count(count, config.min_restored_tables, database)

    logger.info("database_restored", database=database, tables=count)
    return count

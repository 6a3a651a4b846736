# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment resolver - builds a StackConfig from the environment.

Two key/value sources are combined:

- the tool's own STACKVAULT_* settings from the process environment
- the stack's .env file inside the stack directory

The .env file is parsed with python-dotenv and never exported into
os.environ, so nothing downstream depends on process-wide state.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping

from dotenv import dotenv_values

from stackvault.config import (
    DEFAULT_BUCKETS,
    DEFAULT_COMPOSE_FILE,
    ChecksumPolicy,
    StackConfig,
)
from stackvault.errors import (
    explain_invalid_buckets_env,
    explain_invalid_checksum_policy_env,
    explain_invalid_int_env,
    explain_missing_env_file,
    explain_missing_stack_dir,
)
from stackvault.exceptions import ConfigurationError, ConfigurationMissing

DEFAULT_STACK_DIR = "../QFieldCloud"
DEFAULT_BACKUP_DIR = "/mnt/qfieldcloud_backups"


def resolve_stack_dir(
    stack_dir: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Explicit stack_dir, else STACKVAULT_STACK_DIR, else ../QFieldCloud."""
    environ = os.environ if environ is None else environ
    path = Path(stack_dir or environ.get("STACKVAULT_STACK_DIR") or DEFAULT_STACK_DIR)
    return path.expanduser().resolve()


def _parse_int(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value)) from exc
    if number < 0:
        raise ConfigurationError(explain_invalid_int_env(name, value))
    return number


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_checksum_policy(value: str | None) -> ChecksumPolicy:
    if not value:
        return ChecksumPolicy.STRICT
    try:
        return ChecksumPolicy(value.strip().lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_checksum_policy_env(value)) from exc


def _parse_buckets(value: str | None) -> Dict[str, str]:
    if not value:
        return dict(DEFAULT_BUCKETS)
    buckets: Dict[str, str] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        bucket, sep, directory = pair.partition(":")
        if not sep or not bucket.strip() or not directory.strip():
            raise ConfigurationError(explain_invalid_buckets_env(value))
        buckets[bucket.strip()] = directory.strip()
    if not buckets:
        raise ConfigurationError(explain_invalid_buckets_env(value))
    return buckets


def read_stack_env(stack_dir: Path) -> Dict[str, str]:
    """
    Read the stack's .env file.

    Raises:
        ConfigurationMissing: If the directory or the file does not exist
    """
    if not stack_dir.is_dir():
        raise ConfigurationMissing(
            explain_missing_stack_dir(stack_dir),
            details={"stack_dir": str(stack_dir)},
        )

    env_file = stack_dir / ".env"
    if not env_file.is_file():
        raise ConfigurationMissing(
            explain_missing_env_file(env_file),
            details={"env_file": str(env_file)},
        )

    return {k: v for k, v in dotenv_values(env_file).items() if v is not None}


def load_config(
    stack_dir: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> StackConfig:
    """
    Create a StackConfig from the environment and the stack's .env file.

    Stack (.env) keys:
        - POSTGRES_USER, POSTGRES_DB: primary database
        - GEODB_USER, GEODB_DB: geo database
        - MINIO_ROOT_USER, MINIO_ROOT_PASSWORD: object store credentials
        - COMPOSE_PROJECT_NAME: default is the stack directory name
        - COMPOSE_FILE: default docker-compose.yml:docker-compose.override.standalone.yml
        - MINIO_API_PORT: object store port inside the stack (default: 9000)

    Tool keys (process environment):
        - STACKVAULT_STACK_DIR: stack directory (default: ../QFieldCloud)
        - STACKVAULT_BACKUP_DIR: backup target (default: /mnt/qfieldcloud_backups)
        - STACKVAULT_KEEP: backups kept after rotation (default: 7)
        - STACKVAULT_REQUIRED_SPACE_GB: free space required (default: 10)
        - STACKVAULT_MIN_TABLES: minimum tables after a dump restore (default: 5)
        - STACKVAULT_CHECKSUM_POLICY: 'strict' | 'exclude-certificates'
        - STACKVAULT_BUCKETS: comma-separated 'bucket:directory' pairs
        - STACKVAULT_OBJECT_STORE_URL: S3 endpoint for object inventory
        - STACKVAULT_RESTORE_LOG_DIR: where restore logs go (default: .)
        - RESTORE_GEODB: restore the geo database (default: false)

    Stack keys may also be given in the process environment; the .env
    file wins when both are set.
    """
    environ = os.environ if environ is None else environ

    stack_path = resolve_stack_dir(stack_dir, environ)

    stack_env = {**{k: v for k, v in environ.items()}, **read_stack_env(stack_path)}

    project_name = stack_env.get("COMPOSE_PROJECT_NAME") or stack_path.name.lower()

    return StackConfig(
        stack_dir=stack_path,
        project_name=project_name,
        postgres_user=stack_env.get("POSTGRES_USER", "postgres"),
        postgres_db=stack_env.get("POSTGRES_DB", "postgres"),
        geodb_user=stack_env.get("GEODB_USER", "postgres"),
        geodb_db=stack_env.get("GEODB_DB", "postgres"),
        minio_root_user=stack_env.get("MINIO_ROOT_USER", ""),
        minio_root_password=stack_env.get("MINIO_ROOT_PASSWORD", ""),
        minio_internal_port=_parse_int("MINIO_API_PORT", stack_env.get("MINIO_API_PORT"), 9000),
        compose_file=stack_env.get("COMPOSE_FILE") or DEFAULT_COMPOSE_FILE,
        backup_host_dir=Path(environ.get("STACKVAULT_BACKUP_DIR") or DEFAULT_BACKUP_DIR),
        max_backups_to_keep=_parse_int("STACKVAULT_KEEP", environ.get("STACKVAULT_KEEP"), 7),
        required_space_gb=_parse_int(
            "STACKVAULT_REQUIRED_SPACE_GB", environ.get("STACKVAULT_REQUIRED_SPACE_GB"), 10
        ),
        min_restored_tables=_parse_int(
            "STACKVAULT_MIN_TABLES", environ.get("STACKVAULT_MIN_TABLES"), 5
        ),
        checksum_policy=_parse_checksum_policy(environ.get("STACKVAULT_CHECKSUM_POLICY")),
        buckets=_parse_buckets(environ.get("STACKVAULT_BUCKETS")),
        object_store_url=environ.get("STACKVAULT_OBJECT_STORE_URL") or None,
        restore_geodb=_parse_bool(environ.get("RESTORE_GEODB")),
        restore_log_dir=Path(environ.get("STACKVAULT_RESTORE_LOG_DIR") or "."),
    )

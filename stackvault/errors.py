# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for stackvault.

These helpers centralize wording for common configuration and preparation
errors so that the backup and restore paths present the same, actionable
messages.
"""

from pathlib import Path


def explain_missing_stack_dir(stack_dir: Path) -> str:
    """
    Explain that the stack working directory does not exist.
    """

    return (
        f"Stack directory not found at {stack_dir}. "
        "Set STACKVAULT_STACK_DIR or make sure the stack is checked out "
        "in the sibling directory."
    )


def explain_missing_env_file(env_file: Path) -> str:
    """
    Explain that the stack's .env file is missing.
    """

    return (
        f"The environment file {env_file} was not found. "
        "Copy it from a backup (config/.env) or create it before running."
    )


def explain_invalid_kind(value: str | None) -> str:
    """
    Explain that the backup kind is invalid.
    """

    return (
        f"Invalid backup type: {value!r}. "
        "Expected 'full' (volume-based) or 'incremental' (object mirror)."
    )


def explain_invalid_mode(value: str | None) -> str:
    """
    Explain that the backup mode is invalid.
    """

    return f"Invalid backup mode: {value!r}. Use --cold or --hot."


def explain_invalid_int_env(name: str, value: str | None) -> str:
    return f"Invalid {name} value: {value!r}. It must be a non-negative integer."


def explain_invalid_checksum_policy_env(value: str | None) -> str:
    return (
        f"Invalid STACKVAULT_CHECKSUM_POLICY value: {value!r}. "
        "Expected 'strict' or 'exclude-certificates'."
    )


def explain_invalid_buckets_env(value: str | None) -> str:
    return (
        f"Invalid STACKVAULT_BUCKETS value: {value!r}. "
        "Expected comma-separated 'bucket:directory' pairs."
    )


def explain_incomplete_stack_dir(
    stack_dir: Path,
    missing: list[str],
    backup_root: Path,
    revision: str | None,
    remote: str | None,
) -> str:
    """
    Explain how to prepare a fresh server before restoring.

    Uses the provenance recorded in the backup so the operator can check out
    the exact code revision the backup was taken with.
    """

    lines = [
        f"The stack directory {stack_dir} is incomplete (missing: {', '.join(missing)}).",
        "Prepare it first:",
        f"  1. git clone {remote or '[REPO URL]'} {stack_dir.name}",
        f"  2. cp {backup_root}/config/.env {stack_dir}/",
        f"     cp {backup_root}/config/*.yml {stack_dir}/",
    ]
    if revision:
        lines.append(f"  3. git fetch --all && git reset --hard {revision}")
    else:
        lines.append("  3. No revision recorded in the backup, check out the right version manually.")
    lines.append("  4. docker compose up -d db minio && docker compose down")
    return "\n".join(lines)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup provenance - which code revision a backup was taken with.

The current commit and remote of the stack checkout are appended to
backup.log. A restore reads them back to tell the operator which
revision to check out on a fresh server.
"""

from dataclasses import dataclass
from pathlib import Path

import aiofiles
import structlog

from stackvault.config import StackConfig
from stackvault.exceptions import PrerequisiteMissing
from stackvault.layout import BACKUP_LOG
from stackvault.runner import CommandRunner

logger = structlog.get_logger()

COMMIT_HEADER = "=== GIT COMMIT INFORMATION ==="
REMOTE_HEADER = "=== GIT REMOTE INFORMATION ==="


@dataclass(frozen=True)
class Provenance:
    revision: str | None = None
    remote: str | None = None


async def record_provenance(
    config: StackConfig,
    runner: CommandRunner,
    log_path: Path,
) -> bool:
    """
    Append git commit and remote information to log_path.

    Best effort: skipped when the stack directory is not a git checkout
    or git is not installed.

    Returns:
        True if the information was recorded
    """
    if not (config.stack_dir / ".git").exists():
        logger.info("provenance_skipped", reason="no_git_repository")
        return False

    git = ["git", "-C", str(config.stack_dir)]
    try:
        commit = await runner([*git, "log", "-1"])
        remotes = await runner([*git, "remote", "-v"])
    except PrerequisiteMissing:
        logger.info("provenance_skipped", reason="git_not_installed")
        return False

    async with aiofiles.open(log_path, "a") as f:
        await f.write(f"\n{COMMIT_HEADER}\n")
        await f.write(commit.stdout if commit.ok else "Could not execute git log\n")
        await f.write(f"\n{REMOTE_HEADER}\n")
        await f.write(remotes.stdout if remotes.ok else "Could not execute git remote\n")
        await f.write("\n")

    logger.info("provenance_recorded", ok=commit.ok and remotes.ok)
    return True


def parse_provenance(text: str) -> Provenance:
    """Extract the first commit hash and origin URL from a backup log."""
    revision = None
    remote = None
    section = None

    for raw in text.splitlines():
        line = raw.strip()
        if line == COMMIT_HEADER:
            section = "commit"
            continue
        if line == REMOTE_HEADER:
            section = "remote"
            continue
        if not line:
            section = None
            continue
        parts = line.split()
        if section == "commit" and revision is None and parts[0] == "commit" and len(parts) > 1:
            revision = parts[1]
        elif section == "remote" and remote is None and parts[0] == "origin" and len(parts) > 1:
            remote = parts[1]

    return Provenance(revision=revision, remote=remote)


def read_provenance(backup_root: Path) -> Provenance:
    log_path = backup_root / BACKUP_LOG
    if not log_path.is_file():
        return Provenance()
    return parse_provenance(log_path.read_text(encoding="utf-8", errors="replace"))

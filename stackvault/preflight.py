# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Pre-flight checks: free space on the backup target and external tools.

Both run before anything is written or stopped, so a failure here never
needs cleanup.
"""

import shutil
from pathlib import Path

import structlog

from stackvault.exceptions import CapacityInsufficient, PrerequisiteMissing
from stackvault.runner import CommandRunner

logger = structlog.get_logger()

GIB = 1024**3


def _existing_ancestor(path: Path) -> Path | None:
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return None


def free_space_gb(path: Path) -> int | None:
    """Free space in whole GiB at path (or its nearest existing parent)."""
    anchor = _existing_ancestor(path)
    if anchor is None:
        return None
    try:
        return shutil.disk_usage(anchor).free // GIB
    except OSError:
        return None


def check_capacity(path: Path, required_gb: int) -> int | None:
    """
    Verify that the backup target has at least required_gb free.

    An unmeasurable target is logged and allowed.

    Returns:
        Free space in GiB, or None if it could not be measured

    Raises:
        CapacityInsufficient: If less than required_gb is free
    """
    available = free_space_gb(path)

    if available is None:
        logger.warning("disk_space_check_failed", path=str(path))
        return None

    if available < required_gb:
        raise CapacityInsufficient(
            f"Not enough disk space ({available}GB available, {required_gb}GB required)",
            details={"path": str(path), "available_gb": available, "required_gb": required_gb},
        )

    logger.info("disk_space_ok", path=str(path), available_gb=available)
    return available


async def check_prerequisites(
    runner: CommandRunner,
    need_rsync: bool = False,
) -> None:
    """
    Verify that docker, the compose plugin and (optionally) rsync work.

    Raises:
        PrerequisiteMissing: If a required tool is absent
    """
    docker = await runner(["docker", "--version"])
    if not docker.ok:
        raise PrerequisiteMissing(
            "docker is not installed or not working",
            details={"stderr": docker.stderr.strip()},
        )

    compose = await runner(["docker", "compose", "version"])
    if not compose.ok:
        raise PrerequisiteMissing(
            "Docker Compose plugin not available",
            details={"stderr": compose.stderr.strip()},
        )

    if need_rsync:
        rsync = await runner(["rsync", "--version"])
        if not rsync.ok:
            raise PrerequisiteMissing("rsync is required for remote backup transfer")

    logger.info(
        "prerequisites_ok",
        docker=docker.stdout.strip().splitlines()[0] if docker.stdout.strip() else "",
        rsync=need_rsync,
    )

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Object Mirror Engine - bucket <-> directory synchronisation with mc.

The MinIO client runs in a disposable container attached to the stack's
network. The target endpoint is addressed through an ephemeral alias
defined by an MC_HOST_<alias> variable, so credentials are handed over
through the environment and never appear on a command line.

    backup:  mc mirror --overwrite --preserve alias/bucket /backup/<dir>
    restore: mc mirror --overwrite --remove   /backup/<dir> alias/bucket
"""

import shlex
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote

import structlog

from stackvault.config import OBJECT_STORE_SERVICE, StackConfig
from stackvault.exceptions import MirrorFailed
from stackvault.layout import OBJECT_LISTING
from stackvault.runner import CommandRunner

logger = structlog.get_logger()

MIRROR_ALIAS = "stackvaultminio"
BACKUP_MOUNT = "/backup"


def alias_env(config: StackConfig) -> Dict[str, str]:
    """MC_HOST_<alias> pointing at the object store inside the stack network."""
    user = quote(config.minio_root_user, safe="")
    password = quote(config.minio_root_password, safe="")
    host = f"{OBJECT_STORE_SERVICE}:{config.minio_internal_port}"
    return {f"MC_HOST_{MIRROR_ALIAS}": f"http://{user}:{password}@{host}"}


def _mc_container(config: StackConfig, backup_root: Path, read_only: bool, script: str) -> List[str]:
    volume = f"{backup_root}:{BACKUP_MOUNT}" + (":ro" if read_only else "")
    return [
        "docker",
        "run",
        "--rm",
        "--network",
        config.network_name,
        "-e",
        f"MC_HOST_{MIRROR_ALIAS}",
        "-v",
        volume,
        config.mirror_image,
        "/bin/sh",
        "-c",
        script,
    ]


def backup_script(config: StackConfig) -> str:
    steps = [
        "mc mirror --overwrite --preserve "
        f"{shlex.quote(f'{MIRROR_ALIAS}/{bucket}')} {shlex.quote(f'{BACKUP_MOUNT}/{directory}')}"
        for bucket, directory in config.buckets.items()
    ]
    steps.append(f"mc ls -r {MIRROR_ALIAS} > {BACKUP_MOUNT}/{OBJECT_LISTING}")
    return " && ".join(steps)


def restore_script(buckets: Dict[str, str]) -> str:
    return " && ".join(
        "mc mirror --overwrite --remove "
        f"{shlex.quote(f'{BACKUP_MOUNT}/{directory}')} {shlex.quote(f'{MIRROR_ALIAS}/{bucket}')}"
        for bucket, directory in buckets.items()
    )


async def mirror_to_backup(
    config: StackConfig,
    runner: CommandRunner,
    backup_root: Path,
) -> List[str]:
    """
    Mirror every configured bucket into backup_root and write the listing.

    Returns:
        Backup directory names written

    Raises:
        MirrorFailed: If mc fails
    """
    result = await runner(
        _mc_container(config, backup_root, read_only=False, script=backup_script(config)),
        env=alias_env(config),
    )

    if not result.ok:
        raise MirrorFailed(
            "Object store backup failed",
            details={"buckets": list(config.buckets), "stderr": result.stderr.strip()},
        )

    logger.info(
        "objects_mirrored_to_backup",
        buckets=list(config.buckets),
        listing=str(backup_root / OBJECT_LISTING),
    )
    return list(config.buckets.values())


async def mirror_to_store(
    config: StackConfig,
    runner: CommandRunner,
    backup_root: Path,
) -> List[str]:
    """
    Mirror backup directories into the live buckets as an exact replica.

    Objects present in a bucket but absent from its backup directory are
    removed. Buckets whose directory is missing from the backup are left
    untouched and logged. The object store must be running and ready.

    Returns:
        Buckets that were restored

    Raises:
        MirrorFailed: If mc fails
    """
    present: Dict[str, str] = {}
    for bucket, directory in config.buckets.items():
        if (backup_root / directory).is_dir():
            present[bucket] = directory
        else:
            logger.warning("bucket_not_in_backup", bucket=bucket, directory=directory)

    if not present:
        raise MirrorFailed(
            "No bucket directories found in backup",
            details={"backup_root": str(backup_root)},
        )

    result = await runner(
        _mc_container(config, backup_root, read_only=True, script=restore_script(present)),
        env=alias_env(config),
    )

    if not result.ok:
        raise MirrorFailed(
            "Object store mirror restoration failed",
            details={"buckets": list(present), "stderr": result.stderr.strip()},
        )

    logger.info("objects_mirrored_to_store", buckets=list(present))
    return list(present)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Volume Copier - raw directory-level duplication of a storage volume.

The copy runs in a throwaway alpine container without network access,
with the source mounted read-only and the target read-write. The same
call serves both directions:

    backup:  volume  -> backup-root subdirectory
    restore: backup-root subdirectory -> volume (target wiped first)
"""

from dataclasses import dataclass
from pathlib import Path

import structlog

from stackvault.config import StackConfig
from stackvault.exceptions import CopyFailed, EmptyVolumeAfterCopy
from stackvault.runner import CommandRunner

logger = structlog.get_logger()

SOURCE_MOUNT = "/source_data"
TARGET_MOUNT = "/target_data"

# Exit status the helper uses when the target is empty after copying
EMPTY_AFTER_COPY_EXIT = 3

_WIPE = f"rm -rf {TARGET_MOUNT}/* {TARGET_MOUNT}/.[!.]* {TARGET_MOUNT}/..?* 2>/dev/null || true"
_COPY = f"cp -a {SOURCE_MOUNT}/. {TARGET_MOUNT}/"
_CHECK = (
    f'if [ -z "$(ls -A {TARGET_MOUNT})" ]; then '
    f'echo "target is empty after copy" >&2; exit {EMPTY_AFTER_COPY_EXIT}; fi'
)


@dataclass(frozen=True)
class VolumeBinding:
    """A named persistent volume of the stack."""

    name: str
    suffix: str
    exists: bool


def copy_script(wipe_target_first: bool) -> str:
    steps = ["set -e"]
    if wipe_target_first:
        steps.append(_WIPE)
    steps.extend([_COPY, _CHECK])
    return "\n".join(steps)


async def inspect_volume(
    config: StackConfig,
    runner: CommandRunner,
    suffix: str,
) -> VolumeBinding:
    """Look up the project volume "<project>_<suffix>"."""
    name = config.volume_name(suffix)
    result = await runner(["docker", "volume", "inspect", name])
    return VolumeBinding(name=name, suffix=suffix, exists=result.ok)


async def copy_volume(
    config: StackConfig,
    runner: CommandRunner,
    source: str | Path,
    target: str | Path,
    wipe_target_first: bool = False,
) -> None:
    """
    Copy everything from source to target, preserving attributes.

    Args:
        config: Stack configuration
        runner: Command runner
        source: Volume name or absolute host directory
        target: Volume name or absolute host directory
        wipe_target_first: Remove all target entries (dotfiles included) first

    Raises:
        EmptyVolumeAfterCopy: If the target is empty after the copy
        CopyFailed: If the helper container fails
    """
    if isinstance(target, Path):
        target.mkdir(parents=True, exist_ok=True)

    argv = [
        "docker",
        "run",
        "--rm",
        "--network",
        "none",
        "-v",
        f"{source}:{SOURCE_MOUNT}:ro",
        "-v",
        f"{target}:{TARGET_MOUNT}",
        config.copy_image,
        "sh",
        "-c",
        copy_script(wipe_target_first),
    ]

    result = await runner(argv)

    details = {
        "source": str(source),
        "target": str(target),
        "exit_code": result.exit_code,
        "stderr": result.stderr.strip(),
    }

    if result.exit_code == EMPTY_AFTER_COPY_EXIT:
        raise EmptyVolumeAfterCopy(
            f"Target {target} is empty after copy",
            details=details,
        )
    if not result.ok:
        raise CopyFailed(f"Copy from {source} to {target} failed", details=details)

    logger.info(
        "volume_copied",
        source=str(source),
        target=str(target),
        wiped=wipe_target_first,
    )

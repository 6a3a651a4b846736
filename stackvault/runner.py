# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command Runner - Run external programs and capture a structured result.

All container, database and object-store work happens in external
programs (docker, docker compose, git, rsync). Engines receive a runner
explicitly so that the decision logic can be exercised without Docker.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Protocol, Sequence

import structlog

from stackvault.exceptions import PrerequisiteMissing

logger = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    """Result of an external command."""

    argv: tuple
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout_lines(self) -> List[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    @property
    def stderr_lines(self) -> List[str]:
        return [line for line in self.stderr.splitlines() if line.strip()]


class CommandRunner(Protocol):
    """Protocol for running an external command."""

    async def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Dict[str, str] | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        """
        Run argv to completion.

        Args:
            argv: Program and arguments
            cwd: Working directory
            env: Variables added to the inherited environment
            stdin_path: File streamed to the program's stdin
            stdout_path: File receiving the program's stdout

        Returns:
            CommandResult; a non-zero exit code is not raised
        """
        ...


async def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Dict[str, str] | None = None,
    stdin_path: Path | None = None,
    stdout_path: Path | None = None,
) -> CommandResult:
    """Default CommandRunner backed by asyncio subprocesses."""
    argv = tuple(str(a) for a in argv)
    full_env = {**os.environ, **env} if env else None

    stdin_file = open(stdin_path, "rb") if stdin_path else None
    stdout_file = open(stdout_path, "wb") if stdout_path else None

    try:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                stdin=stdin_file if stdin_file else asyncio.subprocess.DEVNULL,
                stdout=stdout_file if stdout_file else asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise PrerequisiteMissing(
                f"{argv[0]} is not installed or not on PATH",
                details={"command": argv[0]},
            ) from e

        stdout, stderr = await process.communicate()
    finally:
        if stdin_file:
            stdin_file.close()
        if stdout_file:
            stdout_file.close()

    result = CommandResult(
        argv=argv,
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
    )

    logger.debug(
        "command_finished",
        command=" ".join(argv[:4]),
        exit_code=result.exit_code,
    )

    return result

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Service Lifecycle Controller - start, stop and health-poll the stack.

Services are driven through docker compose with the project name and
compose file list from the config. Stopping is fire-and-forget; starting
is followed by an explicit readiness wait where the caller needs it.
"""

import asyncio
from typing import List, Sequence

import structlog

from stackvault.config import ServiceEndpoint, StackConfig
from stackvault.exceptions import StackVaultError, ServiceTimeout
from stackvault.runner import CommandResult, CommandRunner

logger = structlog.get_logger()


def compose_argv(*args: str) -> List[str]:
    return ["docker", "compose", *args]


async def compose(
    config: StackConfig,
    runner: CommandRunner,
    *args: str,
    **kwargs,
) -> CommandResult:
    """Run a docker compose subcommand inside the stack directory."""
    return await runner(
        compose_argv(*args),
        cwd=config.stack_dir,
        env=config.compose_env(),
        **kwargs,
    )


async def exec_in_service(
    config: StackConfig,
    runner: CommandRunner,
    service: str,
    command: Sequence[str],
    **kwargs,
) -> CommandResult:
    """Run a command inside a running service container (no TTY)."""
    return await compose(config, runner, "exec", "-T", service, *command, **kwargs)


async def stop_all(config: StackConfig, runner: CommandRunner) -> bool:
    """
    Stop every service of the stack.

    Returns:
        True if compose reported success. Callers decide whether a
        failed stop matters.
    """
    result = await compose(config, runner, "down")
    if result.ok:
        logger.info("services_stopped", project=config.project_name)
    else:
        logger.warning(
            "services_stop_failed",
            project=config.project_name,
            error=result.stderr.strip(),
        )
    if config.settle_seconds:
        await asyncio.sleep(config.settle_seconds)
    return result.ok


async def start_subset(
    config: StackConfig,
    runner: CommandRunner,
    names: Sequence[str],
) -> None:
    """
    Start the named services (and nothing else).

    Raises:
        StackVaultError: If compose fails to start them
    """
    result = await compose(config, runner, "up", "-d", "--remove-orphans", *names)
    if not result.ok:
        raise StackVaultError(
            f"Services could not be started: {', '.join(names)}",
            details={"services": list(names), "stderr": result.stderr.strip()},
        )
    logger.info("services_started", services=list(names))


async def start_all(config: StackConfig, runner: CommandRunner) -> None:
    """
    Start the whole stack.

    Raises:
        StackVaultError: If compose fails
    """
    result = await compose(config, runner, "up", "-d")
    if not result.ok:
        raise StackVaultError(
            "Could not start all services",
            details={"stderr": result.stderr.strip()},
        )
    logger.info("all_services_started", project=config.project_name)


async def stop_service(config: StackConfig, runner: CommandRunner, name: str) -> None:
    result = await compose(config, runner, "stop", name)
    if not result.ok:
        logger.warning("service_stop_failed", service=name, error=result.stderr.strip())


async def probe(
    config: StackConfig,
    runner: CommandRunner,
    endpoint: ServiceEndpoint,
) -> bool:
    """Run the endpoint's readiness probe once."""
    result = await exec_in_service(config, runner, endpoint.name, endpoint.probe)
    return result.ok


async def wait_ready(
    config: StackConfig,
    runner: CommandRunner,
    endpoint: ServiceEndpoint,
    timeout: float | None = None,
) -> None:
    """
    Poll the endpoint's readiness probe until it succeeds.

    Polls every config.poll_interval seconds (2s by default).

    Raises:
        ServiceTimeout: If the probe has not succeeded within timeout
    """
    timeout = config.ready_timeout if timeout is None else timeout
    elapsed = 0.0

    logger.info("waiting_for_service", service=endpoint.name, timeout=timeout)

    while True:
        if await probe(config, runner, endpoint):
            logger.info("service_ready", service=endpoint.name, waited=elapsed)
            return
        if elapsed >= timeout:
            raise ServiceTimeout(endpoint.name, timeout)
        logger.debug("service_not_ready", service=endpoint.name, waited=elapsed)
        await asyncio.sleep(config.poll_interval)
        elapsed += config.poll_interval


async def declared_services(config: StackConfig, runner: CommandRunner) -> List[str]:
    """
    List the services the compose definition declares.

    An unreadable compose definition yields an empty list.
    """
    result = await compose(config, runner, "config", "--services")
    if not result.ok:
        logger.warning("compose_config_failed", error=result.stderr.strip())
        return []
    return [line.strip() for line in result.stdout_lines]

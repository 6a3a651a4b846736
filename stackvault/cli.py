# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault command line.

    stackvault backup full|incremental [--cold|--hot]
    stackvault restore [BACKUP_PATH | user@host:/path] [--geodb/--no-geodb]
    stackvault list

Exit status is 0 on success and the failing exception's exit_code
otherwise.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Any, Coroutine, Optional

import structlog
import typer

from stackvault.backup.manager import list_backups, run_backup
from stackvault.backup.plan import CONFIRMATION_PHRASE, RestorePlan
from stackvault.backup.restore import RemoteSource, check_stack_dir, run_restore
from stackvault.config import BackupKind, BackupMode
from stackvault.env import load_config, resolve_stack_dir
from stackvault.exceptions import StackVaultError, UserAborted
from stackvault.integrity.manifest import ManifestReport
from stackvault.logs import configure_logging
from stackvault.runner import run_command

logger = structlog.get_logger()

app = typer.Typer(
    name="stackvault",
    help="Backup and restore the databases and object store of a compose stack",
    no_args_is_help=True,
)


class PromptOperator:
    """
    Answers restore questions on the terminal.

    Answers given on the command line are used without prompting.
    """

    def __init__(self, phrase: str | None = None, accept_mismatch: bool | None = None):
        self.phrase = phrase
        self.accept_mismatch = accept_mismatch

    async def confirm(self, plan: RestorePlan) -> str | None:
        typer.echo("")
        typer.echo(f"Backup:          {plan.backup_root}")
        typer.echo(f"Stack directory: {plan.stack_dir} (project {plan.project_name})")
        typer.echo(f"Databases:       {plan.database_backup_type.value}")
        typer.echo(f"Object store:    {plan.object_backup_type.value}")
        typer.echo(f"Geo database:    {'yes' if plan.process_geodb else 'no'}")
        typer.echo(f"Integrity:       {plan.integrity.value}")
        if plan.provenance.revision:
            typer.echo(f"Code revision:   {plan.provenance.revision}")
        typer.secho(
            "All current data of these services will be overwritten.",
            fg=typer.colors.RED,
            bold=True,
        )
        if self.phrase is not None:
            return self.phrase
        return typer.prompt(
            f"Type '{CONFIRMATION_PHRASE}' to continue",
            default="",
            show_default=False,
        )

    async def accept_checksum_mismatch(self, report: ManifestReport) -> bool:
        for relative in (report.mismatched + report.missing)[:10]:
            typer.secho(f"  checksum failed: {relative}", fg=typer.colors.YELLOW, err=True)
        for relative in report.unexpected[:10]:
            typer.secho(f"  not in manifest: {relative}", fg=typer.colors.YELLOW, err=True)
        if self.accept_mismatch is not None:
            return self.accept_mismatch
        return typer.confirm("Checksum verification failed. Continue anyway?", default=False)


def parse_source(value: str) -> Path | RemoteSource:
    """A local path, or user@host:/path if no such local path exists."""
    local = Path(value).expanduser()
    if local.exists() or ":" not in value:
        return local
    host, _, path = value.partition(":")
    return RemoteSource(host=host, path=path)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    try:
        return asyncio.run(coro)
    except UserAborted as e:
        logger.warning("run_aborted", reason=e.message)
        raise typer.Exit(e.exit_code)
    except StackVaultError as e:
        logger.error("run_failed", error_type=type(e).__name__, error=e.message)
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(e.exit_code)


@app.callback()
def main(
    ctx: typer.Context,
    stack_dir: Annotated[
        Optional[Path],
        typer.Option("--stack-dir", help="Stack directory (default: $STACKVAULT_STACK_DIR or ../QFieldCloud)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug output"),
    ] = False,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Log JSON lines instead of console output"),
    ] = False,
) -> None:
    """Backup and restore for Postgres, PostGIS and MinIO in docker compose."""
    configure_logging(verbose=verbose, json=json_logs)
    ctx.obj = {"stack_dir": stack_dir}


@app.command()
def backup(
    ctx: typer.Context,
    kind: Annotated[
        BackupKind,
        typer.Argument(help="full (object store volumes) or incremental (bucket mirror)"),
    ],
    hot: Annotated[
        bool,
        typer.Option("--hot/--cold", help="Keep services running (incremental is always hot)"),
    ] = False,
) -> None:
    """Create a backup of the stack."""

    async def _backup():
        config = load_config(ctx.obj["stack_dir"])
        return await run_backup(
            config, run_command, kind, BackupMode.HOT if hot else BackupMode.COLD
        )

    descriptor = _run(_backup())
    typer.echo(f"Backup created: {descriptor.root}")


@app.command()
def restore(
    ctx: typer.Context,
    source: Annotated[
        Optional[str],
        typer.Argument(help="Backup directory, or user@host:/path for a remote backup"),
    ] = None,
    remote_host: Annotated[
        Optional[str],
        typer.Option("--remote-host", help="user@host holding the backup"),
    ] = None,
    remote_path: Annotated[
        Optional[str],
        typer.Option("--remote-path", help="Backup directory on the remote host"),
    ] = None,
    geodb: Annotated[
        Optional[bool],
        typer.Option("--geodb/--no-geodb", help="Also restore the geo database"),
    ] = None,
    confirm: Annotated[
        Optional[str],
        typer.Option("--confirm", help=f"Confirmation phrase ('{CONFIRMATION_PHRASE}')"),
    ] = None,
    accept_checksum_mismatch: Annotated[
        Optional[bool],
        typer.Option(
            "--accept-checksum-mismatch/--reject-checksum-mismatch",
            help="Answer the checksum question up front",
        ),
    ] = None,
) -> None:
    """Restore the stack from a backup. Overwrites all current data."""
    if remote_host or remote_path:
        if not (remote_host and remote_path):
            typer.secho("--remote-host and --remote-path go together", fg=typer.colors.RED, err=True)
            raise typer.Exit(2)
        backup_source: Path | RemoteSource = RemoteSource(host=remote_host, path=remote_path)
    else:
        if source is None:
            source = typer.prompt("Backup directory (or user@host:/path)")
        backup_source = parse_source(source)

    if geodb is None and confirm is None:
        geodb = typer.confirm("Also restore the geo database?", default=False)

    operator = PromptOperator(phrase=confirm, accept_mismatch=accept_checksum_mismatch)

    async def _restore():
        stack_path = resolve_stack_dir(ctx.obj["stack_dir"])
        if isinstance(backup_source, Path) and backup_source.is_dir():
            check_stack_dir(stack_path, backup_source.resolve())
        config = load_config(stack_path)
        return await run_restore(config, run_command, backup_source, operator, geodb)

    result = _run(_restore())

    if result.inventory_mismatches:
        typer.secho(
            f"Object counts differ from the backup listing: {', '.join(result.inventory_mismatches)}",
            fg=typer.colors.YELLOW,
        )
    typer.secho("Restore complete.", fg=typer.colors.GREEN)
    if result.plan and result.plan.provenance.revision:
        typer.echo(f"Backup was taken at code revision {result.plan.provenance.revision}")


@app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List backups in the backup directory, oldest first."""
    try:
        config = load_config(ctx.obj["stack_dir"])
        descriptors = list_backups(config)
    except StackVaultError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(e.exit_code)

    if not descriptors:
        typer.echo(f"No backups in {config.backup_host_dir}")
        return

    for descriptor in descriptors:
        typer.echo(
            f"{descriptor.name}  db={descriptor.database_backup_type.value}"
            f"  objects={descriptor.object_backup_type.value}"
            f"  revision={(descriptor.source_revision or '-')[:12]}"
        )


if __name__ == "__main__":
    app()

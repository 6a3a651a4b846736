# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Consistency strategy selection.

The requested kind and mode fully determine how databases and object
storage are captured:

    mode cold -> database volume copy      kind full        -> object volume copy
    mode hot  -> database logical dump     kind incremental -> object mirror

Incremental backups mirror a live object store, so they are always hot.
"""

from dataclasses import dataclass

from stackvault.config import BackupKind, BackupMode, DatabaseBackupType, ObjectBackupType
from stackvault.errors import explain_invalid_kind, explain_invalid_mode
from stackvault.exceptions import InvalidArgument


@dataclass(frozen=True)
class Strategy:
    """Resolved (kind, mode) pair and the backup types it implies."""

    kind: BackupKind
    mode: BackupMode
    database_backup_type: DatabaseBackupType
    object_backup_type: ObjectBackupType

    @property
    def stops_services(self) -> bool:
        return self.mode == BackupMode.COLD


def _parse_kind(kind: BackupKind | str) -> BackupKind:
    if isinstance(kind, BackupKind):
        return kind
    try:
        return BackupKind(kind)
    except ValueError as exc:
        raise InvalidArgument(explain_invalid_kind(kind)) from exc


def _parse_mode(mode: BackupMode | str | None) -> BackupMode:
    if mode is None:
        return BackupMode.COLD
    if isinstance(mode, BackupMode):
        return mode
    value = mode[2:] if mode.startswith("--") else mode
    try:
        return BackupMode(value)
    except ValueError as exc:
        raise InvalidArgument(explain_invalid_mode(mode)) from exc


def resolve_strategy(
    kind: BackupKind | str,
    mode: BackupMode | str | None = BackupMode.COLD,
) -> Strategy:
    """
    Resolve the requested kind and mode.

    Args:
        kind: 'full' or 'incremental'
        mode: 'cold' (default) or 'hot'; '--cold'/'--hot' are accepted

    Returns:
        Strategy with the database and object backup types to use

    Raises:
        InvalidArgument: If kind or mode is not recognised
    """
    resolved_kind = _parse_kind(kind)
    resolved_mode = _parse_mode(mode)

    if resolved_kind == BackupKind.INCREMENTAL:
        resolved_mode = BackupMode.HOT

    return Strategy(
        kind=resolved_kind,
        mode=resolved_mode,
        database_backup_type=(
            DatabaseBackupType.VOLUME
            if resolved_mode == BackupMode.COLD
            else DatabaseBackupType.DUMP
        ),
        object_backup_type=(
            ObjectBackupType.VOLUME
            if resolved_kind == BackupKind.FULL
            else ObjectBackupType.MIRROR
        ),
    )

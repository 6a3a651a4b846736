# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup runs, retention and restore operations.
"""

from stackvault.backup.manager import (
    run_backup,
    describe_backup,
    list_backups,
    BackupDescriptor,
)

from stackvault.backup.retention import (
    rotate_backups,
    list_backup_roots,
)

from stackvault.backup.plan import (
    RestorePlan,
    RestoreState,
    advance,
    build_plan,
    scan_backup,
)

from stackvault.backup.restore import (
    run_restore,
    acquire_source,
    check_stack_dir,
    Operator,
    RemoteSource,
    RestoreResult,
)

__all__ = [
    # Manager
    "run_backup",
    "describe_backup",
    "list_backups",
    "BackupDescriptor",
    # Retention
    "rotate_backups",
    "list_backup_roots",
    # Restore decisions
    "RestorePlan",
    "RestoreState",
    "advance",
    "build_plan",
    "scan_backup",
    # Restore
    "run_restore",
    "acquire_source",
    "check_stack_dir",
    "Operator",
    "RemoteSource",
    "RestoreResult",
]

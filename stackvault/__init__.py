# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault - Backup and restore for a Docker Compose stack.

Backs up and restores the primary Postgres database, the PostGIS geo
database and the MinIO object store of a compose stack, with cold/hot
consistency modes, an integrity manifest per backup and retention.
"""

__version__ = "0.1.0"

# Configuration
from stackvault.env import load_config
from stackvault.config import StackConfig, BackupKind, BackupMode

# Backup and restore runs
from stackvault.backup import (
    run_backup,
    run_restore,
    describe_backup,
    list_backups,
)

# Default command runner
from stackvault.runner import run_command

__all__ = [
    # Version
    "__version__",
    # Configuration
    "load_config",
    "StackConfig",
    "BackupKind",
    "BackupMode",
    # Runs
    "run_backup",
    "run_restore",
    "describe_backup",
    "list_backups",
    # Runner
    "run_command",
]

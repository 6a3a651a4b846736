# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation and passed
explicitly to every component. Nothing reads the environment after
the config has been built.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Tuple
import re


class BackupKind(str, Enum):
    """What a backup run captures."""

    FULL = "full"  # Volume-based object storage
    INCREMENTAL = "incremental"  # Mirror-based object storage


class BackupMode(str, Enum):
    """Consistency strategy for a backup run."""

    COLD = "cold"  # Stop services, then copy
    HOT = "hot"  # Services keep running


class DatabaseBackupType(str, Enum):
    VOLUME = "volume"
    DUMP = "dump"
    UNKNOWN = "unknown"


class ObjectBackupType(str, Enum):
    VOLUME = "volume"
    MIRROR = "mirror"
    UNKNOWN = "unknown"


class ChecksumPolicy(str, Enum):
    """How manifest verification treats certificate paths."""

    STRICT = "strict"
    EXCLUDE_CERTIFICATES = "exclude-certificates"


# Logical service names as declared in the compose definition
PRIMARY_DB_SERVICE = "db"
GEO_DB_SERVICE = "geodb"
OBJECT_STORE_SERVICE = "minio"

# Volume suffixes (volume name = "<project>_<suffix>")
PRIMARY_DB_VOLUME = "postgres_data"
GEO_DB_VOLUME = "geodb_data"
OBJECT_STORE_VOLUMES = ("minio_data1", "minio_data2", "minio_data3", "minio_data4")

DEFAULT_COMPOSE_FILE = "docker-compose.yml:docker-compose.override.standalone.yml"

DEFAULT_BUCKETS: Dict[str, str] = {
    "qfieldcloud-project-files": "minio_project_files",
    "qfieldcloud-storage": "minio_storage",
}


@dataclass(frozen=True)
class ServiceEndpoint:
    """A managed service and how to talk to it."""

    name: str
    user: str
    password: str = ""
    database: str = ""
    port: int = 0
    probe: Tuple[str, ...] = ()


def _validate_project_name(name: str) -> bool:
    """Compose project names: lowercase letters, digits, dashes, underscores."""
    return bool(name) and re.match(r"^[a-z0-9][a-z0-9_-]*$", name) is not None


def _validate_buckets(buckets: Dict[str, str]) -> bool:
    if not isinstance(buckets, dict) or not buckets:
        return False
    for bucket, directory in buckets.items():
        if not bucket or not directory or "/" in directory:
            return False
    return True


@dataclass(frozen=True)
class StackConfig:
    """
    Immutable configuration for backup and restore runs.

    Built once by the environment resolver (see stackvault.env) from the
    tool's own STACKVAULT_* settings plus the stack's .env file.
    """

    # Stack working directory (contains compose files and .env)
    stack_dir: Path

    # Compose project name, used to derive volume and network names
    project_name: str

    # Database credentials
    postgres_user: str = "postgres"
    postgres_db: str = "postgres"
    geodb_user: str = "postgres"
    geodb_db: str = "postgres"

    # Object store root credentials
    minio_root_user: str = ""
    minio_root_password: str = ""

    # Object store port inside the stack network
    minio_internal_port: int = 9000

    # Compose file list, colon separated as in COMPOSE_FILE
    compose_file: str = DEFAULT_COMPOSE_FILE

    # Where backup roots are created
    backup_host_dir: Path = field(default_factory=lambda: Path("/mnt/qfieldcloud_backups"))

    # Total number of backups kept after rotation (0 disables rotation)
    max_backups_to_keep: int = 7

    # Free space required on the backup target before starting
    required_space_gb: int = 10

    # Minimum number of public tables a restored database must have
    min_restored_tables: int = 5

    # Manifest verification policy
    checksum_policy: ChecksumPolicy = ChecksumPolicy.STRICT

    # Buckets to mirror: {"bucket": "backup directory name"}
    buckets: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BUCKETS))

    # Host-reachable S3 endpoint for object inventory (optional)
    object_store_url: str | None = None

    # Restore the geo database when the backup and stack allow it
    restore_geodb: bool = False

    # Where restore logs are written
    restore_log_dir: Path = field(default_factory=lambda: Path("."))

    # Helper images
    copy_image: str = "alpine:latest"
    mirror_image: str = "minio/mc"

    # Readiness polling
    poll_interval: float = 2.0
    ready_timeout: float = 120.0
    restart_timeout: float = 60.0

    # Pause after stopping or starting the stack
    settle_seconds: float = 3.0

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_project_name(self.project_name):
            errors.append(f"Invalid compose project name: {self.project_name!r}")

        if not self.compose_file:
            errors.append("compose_file must not be empty")

        if self.max_backups_to_keep < 0:
            errors.append(f"max_backups_to_keep must be >= 0, got {self.max_backups_to_keep}")

        if self.required_space_gb < 0:
            errors.append(f"required_space_gb must be >= 0, got {self.required_space_gb}")

        if self.min_restored_tables < 1:
            errors.append(f"min_restored_tables must be >= 1, got {self.min_restored_tables}")

        if not 0 < self.minio_internal_port < 65536:
            errors.append(f"Invalid object store port: {self.minio_internal_port}")

        if not _validate_buckets(self.buckets):
            errors.append("Invalid buckets configuration")

        if self.poll_interval <= 0:
            errors.append(f"poll_interval must be > 0, got {self.poll_interval}")

        if errors:
            from stackvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "StackConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import replace

        return replace(self, **kwargs)

    @property
    def network_name(self) -> str:
        return f"{self.project_name}_default"

    @property
    def compose_files(self) -> List[str]:
        return [f for f in self.compose_file.split(":") if f]

    def compose_env(self) -> Dict[str, str]:
        """Environment overrides passed to every docker compose call."""
        return {
            "COMPOSE_FILE": self.compose_file,
            "COMPOSE_PROJECT_NAME": self.project_name,
        }

    def volume_name(self, suffix: str) -> str:
        return f"{self.project_name}_{suffix}"

    @property
    def primary_db(self) -> ServiceEndpoint:
        return ServiceEndpoint(
            name=PRIMARY_DB_SERVICE,
            user=self.postgres_user,
            database=self.postgres_db,
            port=5432,
            probe=("pg_isready", "-U", self.postgres_user),
        )

    @property
    def geo_db(self) -> ServiceEndpoint:
        return ServiceEndpoint(
            name=GEO_DB_SERVICE,
            user=self.geodb_user,
            database=self.geodb_db,
            port=5432,
            probe=("pg_isready", "-U", self.geodb_user),
        )

    @property
    def object_store(self) -> ServiceEndpoint:
        return ServiceEndpoint(
            name=OBJECT_STORE_SERVICE,
            user=self.minio_root_user,
            password=self.minio_root_password,
            port=self.minio_internal_port,
            probe=(
                "curl",
                "-sf",
                f"http://localhost:{self.minio_internal_port}/minio/health/live",
            ),
        )

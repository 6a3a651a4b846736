# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stackvault Exceptions - Custom exceptions for the stackvault package.
"""


class StackVaultError(Exception):
    """Base exception for all stackvault errors."""

    exit_code = 1

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(StackVaultError):
    """Raised when configuration is invalid."""

    pass


class ConfigurationMissing(ConfigurationError):
    """Raised when the stack directory or its environment file cannot be found."""

    pass


class InvalidArgument(ConfigurationError):
    """Raised when a backup kind or mode is not recognised."""

    pass


class PrerequisiteMissing(StackVaultError):
    """Raised when a required external program is unavailable."""

    pass


class CapacityInsufficient(StackVaultError):
    """Raised when the backup target does not have enough free space."""

    pass


class ServiceTimeout(StackVaultError):
    """Raised when a service does not become ready within its timeout."""

    def __init__(self, service: str, timeout: float):
        self.service = service
        self.timeout = timeout
        super().__init__(
            f"Service {service} not ready after {timeout:g}s",
            details={"service": service, "timeout": timeout},
        )


class CopyFailed(StackVaultError):
    """Raised when a volume copy fails."""

    pass


class EmptyVolumeAfterCopy(CopyFailed):
    """Raised when the copy target is still empty after the copy finished."""

    pass


class DumpFailed(StackVaultError):
    """Raised when a logical database dump fails."""

    pass


class MirrorFailed(StackVaultError):
    """Raised when an object mirror step fails."""

    pass


class RestoreError(StackVaultError):
    """Raised when restore operations fail."""

    pass


class RestoreValidationFailed(RestoreError):
    """Raised when a restored database has fewer tables than required."""

    def __init__(self, table_count: int, database: str = "", minimum: int = 0):
        self.table_count = table_count
        super().__init__(
            f"Database {database or '?'} appears empty or incomplete ({table_count} tables)",
            details={"database": database, "table_count": table_count, "minimum": minimum},
        )


class ClassificationUnknown(RestoreError):
    """Raised when a backup directory cannot be classified."""

    pass


class ManifestError(StackVaultError):
    """Raised when the integrity manifest cannot be written or read."""

    pass


class ChecksumMismatch(StackVaultError):
    """Raised when manifest verification fails and no override was given."""

    pass


class TransferFailed(StackVaultError):
    """Raised when fetching a remote backup fails."""

    pass


class UserAborted(StackVaultError):
    """Raised when the operator declines to continue."""

    pass

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integrity layer - checksum manifest, provenance and config snapshot.
"""

from stackvault.integrity.manifest import (
    compute_manifest,
    write_manifest,
    read_manifest,
    verify_manifest,
    IntegrityManifest,
    ManifestReport,
)

from stackvault.integrity.provenance import (
    record_provenance,
    read_provenance,
    Provenance,
)

from stackvault.integrity.snapshot import snapshot_config

__all__ = [
    # Manifest
    "compute_manifest",
    "write_manifest",
    "read_manifest",
    "verify_manifest",
    "IntegrityManifest",
    "ManifestReport",
    # Provenance
    "record_provenance",
    "read_provenance",
    "Provenance",
    # Snapshot
    "snapshot_config",
]

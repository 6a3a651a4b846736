# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integrity manifest - SHA-256 checksums over every file of a backup root.

The manifest is written in sha256sum format ("<hex>  ./<path>") so it can
also be checked by hand with "sha256sum -c checksums.sha256". Generation
is always strict: every regular file except the manifest itself gets
exactly one entry, in sorted path order. Verification can be told to
ignore certificate copies, which remote transfers leave out.
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import aiofiles
import structlog

from stackvault.config import ChecksumPolicy
from stackvault.exceptions import ManifestError
from stackvault.layout import CERTIFICATE_DIRS, MANIFEST_FILE

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024

# Paths a remote transfer excludes (not readable without root on the source)
CERTIFICATE_PREFIXES = tuple(f"{directory}/" for directory in CERTIFICATE_DIRS)

IntegrityManifest = Dict[str, str]


@dataclass
class ManifestReport:
    """Outcome of verifying a backup root against its manifest."""

    manifest_present: bool
    checked: int = 0
    mismatched: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    unexpected: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            self.manifest_present
            and not self.mismatched
            and not self.missing
            and not self.unexpected
        )


async def file_sha256(path: Path) -> str:
    """SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def list_backup_files(root: Path) -> List[str]:
    """Relative POSIX paths of all regular files under root, sorted."""
    files = []
    for path in root.rglob("*"):
        if path.is_symlink() or not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if relative == MANIFEST_FILE:
            continue
        files.append(relative)
    return sorted(files)


async def compute_manifest(root: Path) -> IntegrityManifest:
    """
    Checksum every file under root except the manifest.

    Deterministic: the same unmodified tree always yields the same
    manifest, in the same order.
    """
    manifest: IntegrityManifest = {}
    for relative in list_backup_files(root):
        manifest[relative] = await file_sha256(root / relative)
    return manifest


def format_manifest(manifest: IntegrityManifest) -> str:
    return "".join(f"{digest}  ./{relative}\n" for relative, digest in manifest.items())


async def write_manifest(root: Path) -> Path:
    """
    Compute the manifest and write it to root/checksums.sha256.

    Raises:
        ManifestError: If any file cannot be read or the manifest cannot be written
    """
    manifest_path = root / MANIFEST_FILE
    try:
        manifest = await compute_manifest(root)
        async with aiofiles.open(manifest_path, "w") as f:
            await f.write(format_manifest(manifest))
    except OSError as e:
        raise ManifestError(
            f"Checksum creation failed: {e}",
            details={"root": str(root)},
        ) from e

    logger.info("manifest_written", path=str(manifest_path), files=len(manifest))
    return manifest_path


def parse_manifest(text: str) -> IntegrityManifest:
    manifest: IntegrityManifest = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        digest, _, relative = line.partition("  ")
        if not relative:
            raise ManifestError(f"Malformed manifest line: {line!r}")
        relative = relative.lstrip("*")
        if relative.startswith("./"):
            relative = relative[2:]
        manifest[relative] = digest.strip()
    return manifest


async def read_manifest(root: Path) -> IntegrityManifest | None:
    manifest_path = root / MANIFEST_FILE
    if not manifest_path.is_file():
        return None
    async with aiofiles.open(manifest_path, "r") as f:
        return parse_manifest(await f.read())


def _excluded(relative: str, policy: ChecksumPolicy) -> bool:
    if policy == ChecksumPolicy.EXCLUDE_CERTIFICATES:
        return relative.startswith(CERTIFICATE_PREFIXES)
    return False


async def verify_manifest(
    root: Path,
    policy: ChecksumPolicy = ChecksumPolicy.STRICT,
) -> ManifestReport:
    """
    Recompute checksums under root and compare with the stored manifest.

    Args:
        root: Backup root
        policy: STRICT checks every entry; EXCLUDE_CERTIFICATES skips
            certificate key material (certbot archive, live,
            accounts and nginx_certs)

    Returns:
        ManifestReport (manifest_present=False if there is no manifest)
    """
    stored = await read_manifest(root)
    if stored is None:
        return ManifestReport(manifest_present=False)

    report = ManifestReport(manifest_present=True)

    for relative, expected in stored.items():
        if _excluded(relative, policy):
            report.ignored.append(relative)
            continue
        path = root / relative
        if not path.is_file():
            report.missing.append(relative)
            continue
        report.checked += 1
        if await file_sha256(path) != expected:
            report.mismatched.append(relative)

    report.unexpected = [
        relative
        for relative in list_backup_files(root)
        if relative not in stored and not _excluded(relative, policy)
    ]

    logger.info(
        "manifest_verified",
        ok=report.ok,
        checked=report.checked,
        mismatched=len(report.mismatched),
        missing=len(report.missing),
        unexpected=len(report.unexpected),
        ignored=len(report.ignored),
    )
    return report

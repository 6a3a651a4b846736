# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Object inventory - per-bucket object counts for restore parity checks.

Mirror backups carry a flat "mc ls -r" listing. After a restore the
live buckets can be counted through the S3 API (when a host-reachable
endpoint is configured) and compared with that listing.
"""

import re
from pathlib import Path
from typing import Any, Dict, Iterable, List

import structlog

from stackvault.config import StackConfig

logger = structlog.get_logger()

# [2025-10-14 12:00:00 UTC]  1.2KiB STANDARD bucket/key
_LISTING_LINE = re.compile(r"^\[[^\]]*\]\s+\S+\s+(?:[A-Z_]+\s+)?(?P<path>\S.*)$")


def parse_listing(listing_path: Path) -> Dict[str, int]:
    """
    Count objects per bucket in an "mc ls -r" listing file.

    Lines that do not look like object entries are ignored.
    """
    counts: Dict[str, int] = {}
    if not listing_path.is_file():
        return counts

    with open(listing_path, encoding="utf-8", errors="replace") as f:
        for line in f:
            match = _LISTING_LINE.match(line.rstrip("\n"))
            if not match:
                continue
            path = match.group("path")
            if path.endswith("/"):
                continue
            bucket = path.split("/", 1)[0]
            counts[bucket] = counts.get(bucket, 0) + 1

    return counts


async def _count_keys(s3_client: Any, bucket: str, page_size: int = 1000) -> int:
    count = 0
    paginator = s3_client.get_paginator("list_objects_v2")

    async for page in paginator.paginate(Bucket=bucket, MaxKeys=page_size):
        count += len(page.get("Contents", []))

    return count


async def count_bucket_objects(
    config: StackConfig,
    buckets: Iterable[str],
) -> Dict[str, int] | None:
    """
    Count objects in each bucket through the S3 API.

    Returns:
        {bucket: count}, or None when no endpoint is configured
    """
    if not config.object_store_url:
        return None

    from aiobotocore.session import get_session

    session = get_session()
    counts: Dict[str, int] = {}

    async with session.create_client(
        "s3",
        endpoint_url=config.object_store_url,
        aws_access_key_id=config.minio_root_user,
        aws_secret_access_key=config.minio_root_password,
        region_name="us-east-1",
    ) as s3_client:
        for bucket in buckets:
            counts[bucket] = await _count_keys(s3_client, bucket)

    logger.info("bucket_inventory_collected", counts=counts)
    return counts


def compare_inventory(expected: Dict[str, int], actual: Dict[str, int]) -> List[str]:
    """Buckets whose live object count differs from the backup listing."""
    return sorted(
        bucket
        for bucket in expected
        if actual.get(bucket, 0) != expected[bucket]
    )

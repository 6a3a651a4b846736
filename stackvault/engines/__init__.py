# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Storage engines - volume copy, logical dump/restore, object mirror.
"""

from stackvault.engines.volumes import (
    copy_volume,
    inspect_volume,
    VolumeBinding,
)

from stackvault.engines.dumps import (
    dump_database,
    restore_database,
    count_public_tables,
    validate_table_count,
    PgRestoreOutcome,
)

from stackvault.engines.mirror import (
    mirror_to_backup,
    mirror_to_store,
)

from stackvault.engines.inventory import (
    parse_listing,
    count_bucket_objects,
    compare_inventory,
)

__all__ = [
    # Volumes
    "copy_volume",
    "inspect_volume",
    "VolumeBinding",
    # Dumps
    "dump_database",
    "restore_database",
    "count_public_tables",
    "validate_table_count",
    "PgRestoreOutcome",
    # Mirror
    "mirror_to_backup",
    "mirror_to_store",
    # Inventory
    "parse_listing",
    "count_bucket_objects",
    "compare_inventory",
]

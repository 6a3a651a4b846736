# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup root layout.

A backup root holds backup.log, the checksum manifest, a config/ copy
and exactly one database and one object-storage representation:

    db_volumes/{postgres_data,geodb_data}/   or  db_dump.sqlc + geodb_dump.sqlc
    minio_volumes/data{1..4}/                or  <bucket dirs>/ + minio_bucket_list.txt
"""

import re

# <YYYY-mm-dd_HH-MM-SS>_<full|incremental>_<cold|hot>
ROOT_NAME = re.compile(
    r"^(?P<timestamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})_(?P<kind>full|incremental)_(?P<mode>cold|hot)$"
)

# Appended to the root of a run that did not finish
FAILED_SUFFIX = ".failed"

BACKUP_LOG = "backup.log"
MANIFEST_FILE = "checksums.sha256"
CONFIG_DIR = "config"

DB_VOLUMES_DIR = "db_volumes"
PRIMARY_DB_VOLUME_DIR = "postgres_data"
GEO_DB_VOLUME_DIR = "geodb_data"

PRIMARY_DB_DUMP = "db_dump.sqlc"
GEO_DB_DUMP = "geodb_dump.sqlc"

OBJECT_VOLUMES_DIR = "minio_volumes"
OBJECT_LISTING = "minio_bucket_list.txt"

# Certificate copies inside config/ (not readable for remote transfer)
CERTBOT_DIR = "certbot"
NGINX_CERTS_DIR = "nginx_certs"

# Key material below config/, root-only on the source server. certbot/renewal
# holds plain renewal settings and is always transferred.
CERTIFICATE_DIRS = (
    f"{CONFIG_DIR}/{CERTBOT_DIR}/archive",
    f"{CONFIG_DIR}/{CERTBOT_DIR}/live",
    f"{CONFIG_DIR}/{CERTBOT_DIR}/accounts",
    f"{CONFIG_DIR}/{NGINX_CERTS_DIR}",
)


def object_volume_dir(index: int) -> str:
    """Backup subdirectory for the index-th (1-based) object store volume."""
    return f"data{index}"

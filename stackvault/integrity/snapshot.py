# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration snapshot - copies of the stack's config into a backup root.

A restore onto a fresh server needs the .env file, the compose files
and the TLS material, so they travel with every backup under config/.
"""

import shutil
from pathlib import Path
from typing import List

import structlog

from stackvault.config import StackConfig
from stackvault.layout import CERTBOT_DIR, CONFIG_DIR, NGINX_CERTS_DIR

logger = structlog.get_logger()

# Stack-relative source -> name under config/
CERTIFICATE_SOURCES = {
    Path("conf/certbot/conf"): CERTBOT_DIR,
    Path("conf/nginx/certs"): NGINX_CERTS_DIR,
}


def snapshot_config(config: StackConfig, backup_root: Path) -> List[str]:
    """
    Copy .env, compose YAML files and certificate directories.

    Returns:
        Names written under config/
    """
    target = backup_root / CONFIG_DIR
    target.mkdir(parents=True, exist_ok=True)
    copied: List[str] = []

    for source, name in CERTIFICATE_SOURCES.items():
        source_dir = config.stack_dir / source
        if source_dir.is_dir():
            shutil.copytree(source_dir, target / name, symlinks=True, dirs_exist_ok=True)
            copied.append(name)

    env_file = config.stack_dir / ".env"
    if env_file.is_file():
        shutil.copy2(env_file, target / ".env")
        copied.append(".env")

    compose_files = sorted(
        p for pattern in ("*.yml", "*.yaml") for p in config.stack_dir.glob(pattern) if p.is_file()
    )
    for compose_file in compose_files:
        shutil.copy2(compose_file, target / compose_file.name)
        copied.append(compose_file.name)

    if not compose_files:
        logger.warning("no_compose_files_found", stack_dir=str(config.stack_dir))

    logger.info("configuration_backed_up", files=copied)
    return copied

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Service lifecycle - start, stop and readiness polling of managed services.
"""

from stackvault.services.lifecycle import (
    compose,
    declared_services,
    exec_in_service,
    probe,
    start_all,
    start_subset,
    stop_all,
    stop_service,
    wait_ready,
)

__all__ = [
    "compose",
    "declared_services",
    "exec_in_service",
    "probe",
    "start_all",
    "start_subset",
    "stop_all",
    "stop_service",
    "wait_ready",
]

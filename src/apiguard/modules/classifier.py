"""Threshold classification of per-client window counts.

Rate abuse is checked before path scanning, so a client over both limits is
always reported as excessive requests.  Both limits are inclusive: a client
sitting exactly on a threshold is still clean.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class AttackType(str, Enum):
    EXCESSIVE_REQUESTS = "DDoS (Excessive Requests)"
    PATH_SCANNING = "Path Scanning"

    def __str__(self) -> str:
        return self.value


def classify(request_count: int, distinct_route_count: int,
             max_requests: int, scan_threshold: int) -> Optional[AttackType]:
    if request_count > max_requests:
        return AttackType.EXCESSIVE_REQUESTS
    if distinct_route_count > scan_threshold:
        return AttackType.PATH_SCANNING
    return None

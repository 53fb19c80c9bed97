"""Service availability states."""

from __future__ import annotations

from enum import IntEnum


class ServiceStatus(IntEnum):
    """Availability of a service over its recent checks."""

    NO_DATA = 1
    GOOD = 2
    LOW_AVAILABILITY = 3
    DOWN = 4


_LABELS = {
    ServiceStatus.NO_DATA: "No Data",
    ServiceStatus.GOOD: "Good",
    ServiceStatus.LOW_AVAILABILITY: "Low Availability",
    ServiceStatus.DOWN: "Down",
}


def get_status_code(percent: float) -> ServiceStatus:
    """Classify an up-percentage: none, above 95, above 80, or worse."""
    if percent == 0:
        return ServiceStatus.NO_DATA
    if percent > 95:
        return ServiceStatus.GOOD
    if percent > 80:
        return ServiceStatus.LOW_AVAILABILITY
    return ServiceStatus.DOWN


def status_code_to_string(status_code: int) -> str:
    """Return a readable name for a status code, or "" for an unknown one."""
    try:
        return _LABELS[ServiceStatus(status_code)]
    except ValueError:
        return ""
import pytest

from nezhadash.status import ServiceStatus, get_status_code, status_code_to_string


@pytest.mark.parametrize(
    "percent, expected",
    [
        (0, ServiceStatus.NO_DATA),
        (100, ServiceStatus.GOOD),
        (96, ServiceStatus.GOOD),
        (95, ServiceStatus.LOW_AVAILABILITY),
        (81, ServiceStatus.LOW_AVAILABILITY),
        (80, ServiceStatus.DOWN),
        (1, ServiceStatus.DOWN),
        (95.5, ServiceStatus.GOOD),
        (80.5, ServiceStatus.LOW_AVAILABILITY),
    ],
)
def test_get_status_code(percent, expected):
    assert get_status_code(percent) is expected


def test_codes_are_ordered_by_severity():
    assert get_status_code(0) < get_status_code(100) < get_status_code(90) < get_status_code(50)


def test_every_status_has_distinct_name():
    names = [status_code_to_string(s) for s in ServiceStatus]
    assert all(names)
    assert len(set(names)) == len(names)


def test_plain_int_accepted():
    assert status_code_to_string(int(ServiceStatus.DOWN)) == status_code_to_string(ServiceStatus.DOWN)


@pytest.mark.parametrize("code", [0, 5, -1])
def test_unknown_code_is_empty(code):
    assert status_code_to_string(code) == ""
from datetime import datetime, timedelta, timezone

import pytest

from clinic_scheduling.app.errors import InvalidInput
from clinic_scheduling.app.utils import (
    compute_end_time,
    intervals_overlap,
    normalize_datetime,
    validate_duration,
)
from clinic_scheduling.tests.conftest import at


def test_back_to_back_intervals_do_not_overlap():
    assert not intervals_overlap(at(10), at(10, 30), at(10, 30), at(11))
    assert not intervals_overlap(at(10, 30), at(11), at(10), at(10, 30))


def test_one_second_of_shared_time_overlaps():
    assert intervals_overlap(at(10), at(10, 30), at(10, 29, 59), at(11))


def test_containment_overlaps_both_ways():
    assert intervals_overlap(at(9), at(12), at(10), at(10, 30))
    assert intervals_overlap(at(10), at(10, 30), at(9), at(12))


@pytest.mark.parametrize("minutes", [30, 45, 180])
def test_duration_within_bounds(minutes):
    assert validate_duration(minutes) == minutes


@pytest.mark.parametrize("minutes", [0, 29, 181, -30, 30.5, True, "30"])
def test_duration_outside_bounds_is_rejected(minutes):
    with pytest.raises(InvalidInput):
        validate_duration(minutes)


def test_end_time_is_derived_from_duration():
    assert compute_end_time(at(10), 45) == at(10, 45)


def test_aware_timestamps_are_stored_as_naive_utc():
    aware = datetime(2030, 1, 15, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert normalize_datetime(aware) == at(10)
    assert normalize_datetime(at(10)) == at(10)
    assert normalize_datetime(None) is None

import pytest

from gradeflow.utils.grade_math import (
    errors_from_percentage,
    mean,
    percentage_from_errors,
    resolve_grade,
    round_half,
    round_tenth,
)


def test_round_half_goes_up_on_quarters():
    assert round_half(2.25) == 2.5
    assert round_half(2.24) == 2.0
    assert round_half(2.75) == 3.0
    assert round_half(3.0) == 3.0


def test_round_tenth_passes_none_through():
    assert round_tenth(None) is None
    assert round_tenth(76.04) == 76.0
    assert round_tenth(76.06) == 76.1


def test_percentage_to_errors():
    assert errors_from_percentage(85, 20) == 3.0
    assert errors_from_percentage(100, 20) == 0.0
    # 7 * 0.33 = 2.31 -> nearest half
    assert errors_from_percentage(67, 7) == 2.5


def test_errors_to_percentage():
    assert percentage_from_errors(2.5, 20) == 87.5
    # 4/7 = 57.14% -> nearest half percent
    assert percentage_from_errors(3, 7) == 57.0
    with pytest.raises(ValueError):
        percentage_from_errors(1, 0)


def test_resolve_grade_prefers_percentage():
    assert resolve_grade(20, percentage=85, errors=10) == (85, 3.0, 20)


def test_resolve_grade_errors_default_to_lesson_points():
    assert resolve_grade(20, errors=5) == (75.0, 5, 20)
    assert resolve_grade(20, errors=5, points=10) == (50.0, 5, 10)


@pytest.mark.parametrize("kwargs", [{}, {"errors": 21}, {"errors": -1}, {"percentage": 101}])
def test_resolve_grade_rejects_bad_input(kwargs):
    with pytest.raises(ValueError):
        resolve_grade(20, **kwargs)


def test_percentage_and_errors_stay_consistent():
    for points in (7, 10, 20, 33, 100):
        for step in range(0, 2 * points + 1):
            errors = step / 2
            percentage, _, _ = resolve_grade(points, errors=errors)
            back = errors_from_percentage(percentage, points)
            assert abs(back - errors) <= 0.5


def test_mean():
    assert mean([]) is None
    assert mean([80, 90]) == 85

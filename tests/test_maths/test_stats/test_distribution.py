import pytest

from phylopat.maths.stats.distribution import chi_high


@pytest.mark.parametrize(
    "x,df,expect",
    [
        (0, 1, 1.0),
        (3.841459, 1, 0.05),
        (7.814728, 3, 0.05),
        (11.34487, 3, 0.01),
        (2, 2, 0.3678794),
    ],
)
def test_chi_high(x, df, expect):
    assert chi_high(x, df) == pytest.approx(expect, rel=1e-5)


def test_chi_high_no_degrees_of_freedom():
    assert chi_high(12.0, 0) == 1.0


def test_chi_high_negative_statistic():
    assert chi_high(-1e-12, 2) == 1.0

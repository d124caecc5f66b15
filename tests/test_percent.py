import pytest

from core.percent import addpercent, change, how_many, subpercent


def test_add_and_sub_percent():
    assert addpercent(100.0, 10.0) == pytest.approx(110.0)
    assert subpercent(100.0, 10.0) == pytest.approx(90.0)
    assert subpercent(140.0, 10.0) == pytest.approx(126.0)


def test_how_many_is_a_share_of_the_value():
    assert how_many(1000.0, 2.0) == pytest.approx(20.0)


def test_change_in_percent():
    assert change(1000.0, 1026.0) == pytest.approx(2.6)
    assert change(100.0, 80.0) == pytest.approx(-20.0)
    with pytest.raises(ValueError):
        change(0.0, 10.0)

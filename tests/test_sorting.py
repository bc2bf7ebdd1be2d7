import pytest

from utilkit.sorting import sort_int64, sort_uint64


def test_sort():
    i = [3, 2, 4, 1]
    sort_int64(i)
    assert i == [1, 2, 3, 4]

    ui = [3, 2, 4, 1]
    sort_uint64(ui)
    assert ui == [1, 2, 3, 4]


def test_sort_int64_negative_values():
    assert sort_int64([5, -3, 0]) == [-3, 0, 5]


def test_sort_uint64_rejects_negative():
    with pytest.raises(ValueError):
        sort_uint64([1, -1])


def test_sort_int64_rejects_overflow():
    with pytest.raises(ValueError):
        sort_int64([1 << 63])
import pytest

from utilkit.bimap import BiMap


def test_bimap():
    m = BiMap()
    assert m.set(0, 1) is m
    assert 0 in m
    assert m.get(0) == 1
    assert not m.contains_inverse(0)
    assert m.get_inverse(0) is None
    assert m.contains_inverse(1)
    assert m.get_inverse(1) == 0
    m.set_inverse(0, 1)
    assert m.get_inverse(0) == 1
    assert m.must_get(0) == 1
    with pytest.raises(KeyError):
        m.must_get(2)
    assert m.must_get_inverse(0) == 1
    with pytest.raises(KeyError):
        m.must_get_inverse(2)


def test_set_inverse_updates_forward():
    m = BiMap()
    m.set_inverse("a", "b")
    assert m.get("b") == "a"
    assert "a" not in m
import pytest

from haifa_luabridge.index import (
    REGISTRY_INDEX,
    absolute,
    is_pseudo,
    is_valid,
    require_acceptable,
    require_slot,
    rotation_bounds_ok,
    upvalue_index,
)


def test_negative_indices_count_from_top() -> None:
    assert absolute(-1, 3) == 3
    assert absolute(-3, 3) == 1
    assert absolute(2, 3) == 2


def test_pseudo_indices_are_left_alone() -> None:
    assert is_pseudo(REGISTRY_INDEX)
    assert is_pseudo(upvalue_index(1))
    assert not is_pseudo(-1)
    assert absolute(REGISTRY_INDEX, 5) == REGISTRY_INDEX
    assert upvalue_index(2) == REGISTRY_INDEX - 2


def test_upvalue_range_is_checked() -> None:
    with pytest.raises(ValueError):
        upvalue_index(0)
    with pytest.raises(ValueError):
        upvalue_index(256)


def test_validity_against_depth() -> None:
    assert is_valid(1, 1)
    assert is_valid(-1, 1)
    assert not is_valid(0, 3)
    assert not is_valid(4, 3)
    assert not is_valid(-4, 3)
    assert not is_valid(-1, 0)
    assert is_valid(REGISTRY_INDEX, 0)


def test_rotate_family_rejects_pseudo_and_out_of_range() -> None:
    with pytest.raises(ValueError):
        require_slot(REGISTRY_INDEX, 3)
    with pytest.raises(IndexError):
        require_slot(4, 3)
    with pytest.raises(IndexError):
        require_slot(-4, 3)
    assert require_slot(-2, 3) == 2
    assert require_acceptable(upvalue_index(1), 0) == upvalue_index(1)


def test_rotation_bounds() -> None:
    assert rotation_bounds_ok(2, 2, 3)
    assert rotation_bounds_ok(-2, -2, 3)
    assert not rotation_bounds_ok(2, 3, 3)

from __future__ import annotations

import pytest

from haifa_luabridge import LuaComparison, LuaOperator, LuaRuntimeError


def test_add_replaces_both_operands(lua) -> None:
    lua.push_number(5.5)
    lua.push_integer(3)
    lua.arith(LuaOperator.ADD)
    assert lua.stack_description == "[8.5]"


@pytest.mark.parametrize(
    "op, a, b, expected",
    [
        (LuaOperator.SUBTRACT, 7, 2, "5"),
        (LuaOperator.MULTIPLY, 6, 7, "42"),
        (LuaOperator.MODULUS, -7, 3, "2"),
        (LuaOperator.POWER, 2, 10, "1024.0"),
        (LuaOperator.DIVIDE, 7, 2, "3.5"),
        (LuaOperator.INTEGER_DIVIDE, 7, 2, "3"),
        (LuaOperator.BITWISE_AND, 6, 3, "2"),
        (LuaOperator.BITWISE_OR, 6, 3, "7"),
        (LuaOperator.BITWISE_XOR, 6, 3, "5"),
        (LuaOperator.SHIFT_LEFT, 1, 4, "16"),
        (LuaOperator.SHIFT_RIGHT, 16, 4, "1"),
    ],
)
def test_binary_operators(lua, op, a, b, expected) -> None:
    lua.push_integer(a)
    lua.push_integer(b)
    lua.arith(op)
    assert lua.stack_description == f"[{expected}]"


def test_unary_operators_take_one_operand(lua) -> None:
    lua.push_string("below")
    lua.push_integer(4)
    lua.arith(LuaOperator.UNARY_MINUS)
    assert lua.stack_description == "['below'] [-4]"
    lua.arith(LuaOperator.BITWISE_NOT)
    assert lua.stack_description == "['below'] [3]"


def test_arith_honours_metamethods(lua) -> None:
    lua.run("vec = setmetatable({}, {__add = function(a, b) return 'added' end})")
    lua.get_global("vec")
    lua.push_integer(1)
    lua.arith(LuaOperator.ADD)
    assert lua.stack_description == "['added']"


def test_arith_needs_its_operands(lua) -> None:
    lua.push_integer(1)
    with pytest.raises(IndexError):
        lua.arith(LuaOperator.ADD)
    assert lua.top == 1


def test_failed_arith_leaves_pre_call_depth_plus_one(lua) -> None:
    lua.push_string("keep")
    lua.push_boolean(True)
    lua.new_table()
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.arith(LuaOperator.ADD)
    assert "arithmetic" in excinfo.value.message
    assert lua.top == 3
    assert lua.stack_description.startswith("['keep'] [true] ['")


def test_compare_less_than(lua) -> None:
    lua.push_number(8.5)
    lua.push_integer(30)
    assert lua.compare(1, 2, LuaComparison.LESS_THAN)
    assert not lua.compare(2, 1, LuaComparison.LESS_THAN)
    assert lua.stack_description == "[8.5] [30]"


@pytest.mark.parametrize("a, b", [(1, 2), (2, 1), (3, 3), (-1.5, 0), (0, -1.5)])
def test_less_than_is_asymmetric(lua, a, b) -> None:
    lua.push(a)
    lua.push(b)
    forward = lua.compare(1, 2, LuaComparison.LESS_THAN)
    backward = lua.compare(2, 1, LuaComparison.LESS_THAN)
    equal = lua.compare(1, 2, LuaComparison.EQUAL)
    assert [forward, backward, equal].count(True) == 1


def test_less_or_equal_and_equal(lua) -> None:
    lua.push_integer(3)
    lua.push_number(3.0)
    assert lua.compare(1, 2, LuaComparison.EQUAL)
    assert lua.compare(1, 2, LuaComparison.LESS_THAN_OR_EQUAL)
    assert not lua.raw_equal(1, 9)


def test_compare_with_invalid_index_is_false(lua) -> None:
    lua.push_integer(1)
    assert not lua.compare(1, 4, LuaComparison.EQUAL)
    assert not lua.is_comparable(-3, 1, LuaComparison.LESS_THAN)
    assert lua.top == 1


def test_equality_metamethod(lua) -> None:
    lua.run(
        """
        local mt = {__eq = function() return true end}
        left, right = setmetatable({}, mt), setmetatable({}, mt)
        """
    )
    lua.get_global("left")
    lua.get_global("right")
    assert lua.compare(1, 2, LuaComparison.EQUAL)
    assert not lua.raw_equal(1, 2)


def test_failed_compare_leaves_error_value(lua) -> None:
    lua.new_table()
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.compare(1, 2, LuaComparison.LESS_THAN)
    assert "compare" in excinfo.value.message
    assert lua.top == 3


def test_operator_errors_do_not_point_into_the_bridge(lua) -> None:
    lua.new_table()
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.arith(LuaOperator.ADD)
    assert excinfo.value.message.startswith("attempt to perform arithmetic on a table value")
    lua.new_table()
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.compare(-2, -1, LuaComparison.LESS_THAN_OR_EQUAL)
    assert excinfo.value.message.startswith("attempt to compare")


def test_user_error_positions_are_kept(lua) -> None:
    lua.run("boxed = setmetatable({}, {__add = function() error('no adding') end})", "=setup")
    lua.get_global("boxed")
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.arith(LuaOperator.ADD)
    assert excinfo.value.message == "setup:1: no adding"

from __future__ import annotations

import pytest

from haifa_luabridge import LuaRuntimeError, LuaType


def test_keyed_field_and_index_access(lua) -> None:
    lua.new_table()
    lua.push_string("animal")
    lua.push_string("giraffe")
    lua.set_in_table(-3)
    lua.push_string("green")
    lua.set_field_in_table(-2, "color")
    lua.push_string("twelfth")
    lua.set_index_in_table(-2, 12)
    assert lua.stack_description == "[Table]"

    lua.push_string("animal")
    assert lua.get_in_table(-2) is LuaType.STRING
    assert lua.stack_description == "[Table] ['giraffe']"
    lua.get_field_in_table(-2, "color")
    lua.get_index_in_table(-3, 12)
    assert lua.stack_description == "[Table] ['giraffe'] ['green'] ['twelfth']"


@pytest.mark.parametrize(
    "value, rendering",
    [("twelfth", "'twelfth'"), (12.5, "12.5"), (7, "7"), (True, "true")],
)
def test_raw_index_round_trip(lua, value, rendering) -> None:
    lua.new_table()
    lua.push(value)
    lua.set_index_in_table(-2, 12, raw=True)
    assert lua.get_index_in_table(-1, 12, raw=True) is not LuaType.NIL
    assert lua.stack_description == f"[Table] [{rendering}]"


def test_raw_field_round_trip(lua) -> None:
    lua.new_table()
    lua.push_integer(3)
    lua.set_field_in_table(1, "count", raw=True)
    lua.push_string("count")
    assert lua.get_in_table(1, raw=True) is LuaType.NUMBER
    assert lua.to_integer() == 3


def test_pointer_keys(lua) -> None:
    lua.new_table()
    lua.push_string("value")
    lua.raw_set_pointer(-2, 0xBEEF)
    assert lua.raw_get_pointer(-1, 0xBEEF) is LuaType.STRING
    assert lua.raw_get_pointer(1, 0xF00D) is LuaType.NIL
    assert lua.stack_description == "[Table] ['value'] [nil]"


def test_missing_keys_read_as_nil(lua) -> None:
    lua.new_table()
    assert lua.get_field_in_table(-1, "absent") is LuaType.NIL
    assert lua.stack_description == "[Table] [nil]"


def test_raw_access_requires_a_table(lua) -> None:
    lua.push_string("abc")
    lua.push_string("len")
    with pytest.raises(TypeError):
        lua.get_in_table(1, raw=True)
    with pytest.raises(TypeError):
        lua.raw_get_pointer(1, 0x1)
    assert lua.top == 2


def test_metamethod_access_works_on_non_tables(lua) -> None:
    lua.push_string("abc")
    assert lua.get_field_in_table(-1, "upper") is LuaType.FUNCTION


def test_index_and_newindex_metamethods(lua) -> None:
    lua.run(
        """
        proxy = setmetatable({}, {
          __index = function(t, k) return k .. "!" end,
          __newindex = function(t, k, v) rawset(t, k, v * 2) end,
        })
        """
    )
    lua.get_global("proxy")
    lua.get_field_in_table(-1, "hi")
    assert lua.to_string() == "hi!"
    lua.pop()

    lua.push_integer(21)
    lua.set_field_in_table(-2, "x")
    assert lua.get_field_in_table(-1, "x", raw=True) is LuaType.NUMBER
    assert lua.to_integer() == 42
    lua.pop()
    assert lua.get_field_in_table(-1, "missing", raw=True) is LuaType.NIL


def test_failing_metamethod_leaves_one_error_value(lua) -> None:
    lua.run("guarded = setmetatable({}, {__index = function() error('no access') end})")
    lua.get_global("guarded")
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.get_field_in_table(-1, "key")
    assert "no access" in excinfo.value.message
    assert lua.top == 2
    assert lua.type_of(-1) is LuaType.STRING


def test_indexing_a_nil_value_is_an_error(lua) -> None:
    lua.push_nil()
    lua.push_integer(5)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.set_field_in_table(1, "field")
    assert "index" in excinfo.value.message
    assert lua.stack_description.startswith("[nil] ['")
    assert lua.top == 2


def test_globals_round_trip(lua) -> None:
    lua.push_number(8.5)
    lua.set_global("b")
    assert lua.is_empty
    assert lua.get_global("b") is LuaType.NUMBER
    assert lua.stack_description == "[8.5]"
    lua.push_string("x")
    lua.set_global("name")
    lua.get_global("name")
    assert lua.to_string() == "x"
    assert lua.get_global("undefined_global") is LuaType.NIL


@pytest.mark.parametrize("key, error_type", [(None, TypeError), (float("nan"), ValueError)])
def test_raw_set_refuses_keys_the_vm_cannot_store(lua, key, error_type) -> None:
    lua.new_table()
    lua.push(key)
    lua.push_integer(1)
    with pytest.raises(error_type):
        lua.set_in_table(1, raw=True)
    assert lua.top == 3
    assert lua.raw_len(1) == 0


def test_raw_set_accepts_float_and_boolean_keys(lua) -> None:
    lua.new_table()
    lua.push_number(1.5)
    lua.push_string("float")
    lua.set_in_table(1, raw=True)
    lua.push_boolean(False)
    lua.push_string("bool")
    lua.set_in_table(1, raw=True)
    lua.push_number(1.5)
    lua.get_in_table(1, raw=True)
    assert lua.to_string() == "float"


def test_access_errors_do_not_point_into_the_bridge(lua) -> None:
    lua.push_nil()
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.get_field_in_table(1, "field")
    assert excinfo.value.message.startswith("attempt to index a nil value")
    assert lua.to_string() == excinfo.value.message
    lua.run("setmetatable(_G, {__newindex = function() error('locked', 0) end})")
    lua.push_integer(1)
    with pytest.raises(LuaRuntimeError) as excinfo:
        lua.set_global("fresh")
    assert excinfo.value.message == "locked"

from __future__ import annotations

from enum import Enum, IntEnum


class LuaType(IntEnum):
    """Dynamic type tags reported by ``lua_type``."""

    NONE = -1
    NIL = 0
    BOOLEAN = 1
    LIGHT_USERDATA = 2
    NUMBER = 3
    STRING = 4
    TABLE = 5
    FUNCTION = 6
    USERDATA = 7
    THREAD = 8


class LuaStatus(Enum):
    """Outcome of a call into the VM, independent of the library version."""

    OK = "ok"
    YIELD = "yield"
    ERROR_RUN = "errorRun"
    ERROR_SYNTAX = "errorSyntax"
    ERROR_MEM = "errorMem"
    ERROR_GC = "errorGC"
    ERROR = "error"

    @property
    def is_error(self) -> bool:
        return self not in (LuaStatus.OK, LuaStatus.YIELD)


# Raw status codes differ between library versions: 5.4 dropped LUA_ERRGCMM.
STATUS_CODES_53 = {
    0: LuaStatus.OK,
    1: LuaStatus.YIELD,
    2: LuaStatus.ERROR_RUN,
    3: LuaStatus.ERROR_SYNTAX,
    4: LuaStatus.ERROR_MEM,
    5: LuaStatus.ERROR_GC,
    6: LuaStatus.ERROR,
}

STATUS_CODES_54 = {
    0: LuaStatus.OK,
    1: LuaStatus.YIELD,
    2: LuaStatus.ERROR_RUN,
    3: LuaStatus.ERROR_SYNTAX,
    4: LuaStatus.ERROR_MEM,
    5: LuaStatus.ERROR,
}


class LuaOperator(IntEnum):
    """Arithmetic and bitwise operators, numbered like ``LUA_OP*``."""

    ADD = 0              # +
    SUBTRACT = 1         # -
    MULTIPLY = 2         # *
    MODULUS = 3          # %
    POWER = 4            # ^
    DIVIDE = 5           # /
    INTEGER_DIVIDE = 6   # //
    BITWISE_AND = 7      # &
    BITWISE_OR = 8       # |
    BITWISE_XOR = 9      # ~
    SHIFT_LEFT = 10      # <<
    SHIFT_RIGHT = 11     # >>
    UNARY_MINUS = 12     # unary -
    BITWISE_NOT = 13     # unary ~

    @property
    def is_unary(self) -> bool:
        return self in (LuaOperator.UNARY_MINUS, LuaOperator.BITWISE_NOT)

    @property
    def operand_count(self) -> int:
        return 1 if self.is_unary else 2


class LuaComparison(IntEnum):
    EQUAL = 0
    LESS_THAN = 1
    LESS_THAN_OR_EQUAL = 2


__all__ = [
    "LuaComparison",
    "LuaOperator",
    "LuaStatus",
    "LuaType",
    "STATUS_CODES_53",
    "STATUS_CODES_54",
]

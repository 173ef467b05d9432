from .capi import LIBRARY_ENV_VAR, load_library, lua_version
from .context import LuaContext, format_number
from .errors import (
    LuaError,
    LuaGCError,
    LuaHandlerError,
    LuaLibraryNotFound,
    LuaMemoryError,
    LuaRuntimeError,
    LuaStateClosed,
    LuaSyntaxError,
    error_for_status,
)
from .index import MULTRET, REGISTRY_INDEX
from .lua_types import LuaComparison, LuaOperator, LuaStatus, LuaType

__all__ = [
    "LIBRARY_ENV_VAR",
    "MULTRET",
    "REGISTRY_INDEX",
    "LuaComparison",
    "LuaContext",
    "LuaError",
    "LuaGCError",
    "LuaHandlerError",
    "LuaLibraryNotFound",
    "LuaMemoryError",
    "LuaOperator",
    "LuaRuntimeError",
    "LuaStateClosed",
    "LuaStatus",
    "LuaSyntaxError",
    "LuaType",
    "error_for_status",
    "format_number",
    "load_library",
    "lua_version",
]

"""ctypes surface of the Lua C API.

Only the entry points the bridge needs are declared. Everything that may
raise a VM error is reached through ``lua_pcallk`` on a trampoline, never
called directly from Python.
"""

from __future__ import annotations

import ctypes
import logging
import os
from ctypes import POINTER, c_char_p, c_double, c_int, c_longlong, c_size_t, c_ssize_t, c_void_p
from ctypes.util import find_library
from functools import lru_cache
from typing import Dict, Optional, Tuple

from .errors import LuaLibraryNotFound
from .lua_types import STATUS_CODES_53, STATUS_CODES_54, LuaStatus

logger = logging.getLogger(__name__)

LIBRARY_ENV_VAR = "HAIFA_LUA_LIBRARY"

_FIND_NAMES = ("lua5.4", "lua54", "lua-5.4", "lua5.3", "lua53", "lua-5.3", "lua")
_SONAMES = (
    "liblua5.4.so.0",
    "liblua5.4.so",
    "liblua.so.5.4",
    "liblua-5.4.so",
    "liblua5.3.so.0",
    "liblua5.3.so",
    "liblua.so.5.3",
    "liblua.dylib",
    "lua54.dll",
)

lua_State = c_void_p
lua_Integer = c_longlong
lua_Number = c_double
lua_KContext = c_ssize_t

lua_CFunction = ctypes.CFUNCTYPE(c_int, c_void_p)
lua_KFunction = ctypes.CFUNCTYPE(c_int, c_void_p, c_int, lua_KContext)

# (name, restype, argtypes) shared by 5.3 and 5.4. Function pointers travel
# as plain addresses so that NULL can be passed as None.
_PROTOTYPES = (
    ("luaL_newstate", lua_State, []),
    ("luaL_openlibs", None, [lua_State]),
    ("luaL_loadbufferx", c_int, [lua_State, c_char_p, c_size_t, c_char_p, c_char_p]),
    ("luaL_ref", c_int, [lua_State, c_int]),
    ("luaL_unref", None, [lua_State, c_int, c_int]),
    ("lua_close", None, [lua_State]),
    ("lua_absindex", c_int, [lua_State, c_int]),
    ("lua_gettop", c_int, [lua_State]),
    ("lua_settop", None, [lua_State, c_int]),
    ("lua_pushvalue", None, [lua_State, c_int]),
    ("lua_rotate", None, [lua_State, c_int, c_int]),
    ("lua_copy", None, [lua_State, c_int, c_int]),
    ("lua_checkstack", c_int, [lua_State, c_int]),
    ("lua_xmove", None, [lua_State, lua_State, c_int]),
    ("lua_isnumber", c_int, [lua_State, c_int]),
    ("lua_isstring", c_int, [lua_State, c_int]),
    ("lua_iscfunction", c_int, [lua_State, c_int]),
    ("lua_isinteger", c_int, [lua_State, c_int]),
    ("lua_isuserdata", c_int, [lua_State, c_int]),
    ("lua_type", c_int, [lua_State, c_int]),
    ("lua_typename", c_char_p, [lua_State, c_int]),
    ("lua_tonumberx", lua_Number, [lua_State, c_int, POINTER(c_int)]),
    ("lua_tointegerx", lua_Integer, [lua_State, c_int, POINTER(c_int)]),
    ("lua_toboolean", c_int, [lua_State, c_int]),
    ("lua_tolstring", c_void_p, [lua_State, c_int, POINTER(c_size_t)]),
    ("lua_rawlen", c_size_t, [lua_State, c_int]),
    ("lua_tocfunction", c_void_p, [lua_State, c_int]),
    ("lua_touserdata", c_void_p, [lua_State, c_int]),
    ("lua_tothread", lua_State, [lua_State, c_int]),
    ("lua_topointer", c_void_p, [lua_State, c_int]),
    ("lua_rawequal", c_int, [lua_State, c_int, c_int]),
    ("lua_pushnil", None, [lua_State]),
    ("lua_pushnumber", None, [lua_State, lua_Number]),
    ("lua_pushinteger", None, [lua_State, lua_Integer]),
    ("lua_pushlstring", c_void_p, [lua_State, c_char_p, c_size_t]),
    ("lua_pushboolean", None, [lua_State, c_int]),
    ("lua_pushcclosure", None, [lua_State, c_void_p, c_int]),
    ("lua_pushlightuserdata", None, [lua_State, c_void_p]),
    ("lua_pushthread", c_int, [lua_State]),
    ("lua_rawget", c_int, [lua_State, c_int]),
    ("lua_rawgeti", c_int, [lua_State, c_int, lua_Integer]),
    ("lua_rawgetp", c_int, [lua_State, c_int, c_void_p]),
    ("lua_rawset", None, [lua_State, c_int]),
    ("lua_rawseti", None, [lua_State, c_int, lua_Integer]),
    ("lua_rawsetp", None, [lua_State, c_int, c_void_p]),
    ("lua_createtable", None, [lua_State, c_int, c_int]),
    ("lua_getmetatable", c_int, [lua_State, c_int]),
    ("lua_setmetatable", c_int, [lua_State, c_int]),
    ("lua_pcallk", c_int, [lua_State, c_int, c_int, c_int, lua_KContext, c_void_p]),
    ("lua_status", c_int, [lua_State]),
)


class LuaLibrary:
    """A loaded Lua shared library with its prototypes declared."""

    def __init__(self, cdll: ctypes.CDLL, path: str):
        self.cdll = cdll
        self.path = path
        # lua_newuserdata became a macro over lua_newuserdatauv in 5.4.
        self.is_54 = hasattr(cdll, "lua_newuserdatauv")
        self.status_codes: Dict[int, LuaStatus] = STATUS_CODES_54 if self.is_54 else STATUS_CODES_53
        for name, restype, argtypes in _PROTOTYPES:
            func = getattr(cdll, name)
            func.restype = restype
            func.argtypes = argtypes
        if self.is_54:
            cdll.lua_version.restype = lua_Number
            cdll.lua_resume.argtypes = [lua_State, lua_State, c_int, POINTER(c_int)]
        else:
            cdll.lua_version.restype = POINTER(lua_Number)
            cdll.lua_resume.argtypes = [lua_State, lua_State, c_int]
        cdll.lua_version.argtypes = [lua_State]
        cdll.lua_resume.restype = c_int

    def __getattr__(self, name: str):
        return getattr(self.cdll, name)

    def decode_status(self, code: int) -> LuaStatus:
        try:
            return self.status_codes[code]
        except KeyError:
            return LuaStatus.ERROR

    def version(self, state: Optional[int]) -> float:
        if self.is_54:
            return float(self.cdll.lua_version(state))
        return float(self.cdll.lua_version(state).contents.value)

    def resume(self, state: int, from_state: Optional[int], nargs: int) -> Tuple[int, int]:
        """Return the raw resume status and the number of values it left."""
        if self.is_54:
            nresults = c_int(0)
            code = self.cdll.lua_resume(state, from_state, nargs, ctypes.byref(nresults))
            return code, nresults.value
        code = self.cdll.lua_resume(state, from_state, nargs)
        return code, self.cdll.lua_gettop(state)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaLibrary {self.path}>"


def _candidates(explicit: Optional[str]) -> list[str]:
    # An explicit choice is never second-guessed by the system search.
    override = explicit or os.environ.get(LIBRARY_ENV_VAR)
    if override:
        return [override]
    names: list[str] = []
    for name in _FIND_NAMES:
        found = find_library(name)
        if found and found not in names:
            names.append(found)
    names.extend(name for name in _SONAMES if name not in names)
    return names


@lru_cache(maxsize=None)
def load_library(path: Optional[str] = None) -> LuaLibrary:
    tried = []
    for candidate in _candidates(path):
        try:
            cdll = ctypes.CDLL(candidate)
        except OSError as exc:
            tried.append(f"{candidate} ({exc})")
            continue
        if not hasattr(cdll, "lua_rotate"):
            # Lua 5.1/5.2 or an unrelated library with a matching name.
            tried.append(f"{candidate} (no lua_rotate, needs Lua 5.3+)")
            continue
        library = LuaLibrary(cdll, candidate)
        logger.debug("loaded Lua library %s (5.4 API: %s)", candidate, library.is_54)
        return library
    raise LuaLibraryNotFound(
        f"no Lua 5.3/5.4 shared library found; set {LIBRARY_ENV_VAR}. Tried: " + "; ".join(tried)
    )


def lua_version(path: Optional[str] = None) -> float:
    """Version number of the library the bridge binds to, e.g. ``504.0``."""
    return load_library(path).version(None)


__all__ = [
    "LIBRARY_ENV_VAR",
    "LuaLibrary",
    "load_library",
    "lua_CFunction",
    "lua_KFunction",
    "lua_version",
]

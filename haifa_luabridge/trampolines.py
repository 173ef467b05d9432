"""Lua-side trampolines.

Each operation that can run user code (metamethods, coercions, allocation)
is packaged as one of these tiny Lua functions and only ever invoked through
``lua_pcallk``. A VM error raised inside them unwinds to the protected call
in C and never crosses a Python frame.
"""

from __future__ import annotations

from .lua_types import LuaComparison, LuaOperator

CHUNK_NAME = b"=[haifa_luabridge]"
# Lua pattern matching the position prefix of errors raised in this chunk.
LOCATION_PATTERN = "^%[haifa_luabridge%]:%d+: "

TRAMPOLINE_SOURCE = """
local G = _ENV
local error, pcall, type = error, pcall, type
local gsub = string.gsub
local create = coroutine.create

local arith = {
  [%(ADD)d] = function(a, b) return a + b end,
  [%(SUBTRACT)d] = function(a, b) return a - b end,
  [%(MULTIPLY)d] = function(a, b) return a * b end,
  [%(MODULUS)d] = function(a, b) return a %% b end,
  [%(POWER)d] = function(a, b) return a ^ b end,
  [%(DIVIDE)d] = function(a, b) return a / b end,
  [%(INTEGER_DIVIDE)d] = function(a, b) return a // b end,
  [%(BITWISE_AND)d] = function(a, b) return a & b end,
  [%(BITWISE_OR)d] = function(a, b) return a | b end,
  [%(BITWISE_XOR)d] = function(a, b) return a ~ b end,
  [%(SHIFT_LEFT)d] = function(a, b) return a << b end,
  [%(SHIFT_RIGHT)d] = function(a, b) return a >> b end,
  [%(UNARY_MINUS)d] = function(a) return -a end,
  [%(BITWISE_NOT)d] = function(a) return ~a end,
}

local function noop() end

local function check(ok, ...)
  if not ok then error((...), 0) end
  return ...
end

-- Errors raised by the VM inside this chunk point at it; drop that position.
local function relocate(ok, ...)
  if ok then return ... end
  local e = ...
  if type(e) == "string" then e = gsub(e, "%(LOCATION)s", "") end
  error(e, 0)
end

local function protect(f)
  return function(...) return relocate(pcall(f, ...)) end
end

return {
  gettable = protect(function(t, k) return t[k] end),
  settable = protect(function(t, k, v) t[k] = v end),
  getglobal = protect(function(name) return G[name] end),
  setglobal = protect(function(v, name) G[name] = v end),
  arith = protect(function(op, a, b) return arith[op](a, b) end),
  compare = protect(function(a, b, op)
    if op == %(EQUAL)d then return a == b end
    if op == %(LESS_THAN)d then return a < b end
    return a <= b
  end),
  newthread = function() return create(noop) end,
  guard = function(f)
    return function(...) return check(f(...)) end
  end,
}
""" % {
    "LOCATION": LOCATION_PATTERN,
    **{op.name: op.value for op in LuaOperator},
    **{cmp.name: cmp.value for cmp in LuaComparison},
}

NAMES = ("gettable", "settable", "getglobal", "setglobal", "arith", "compare", "newthread", "guard")

__all__ = ["CHUNK_NAME", "LOCATION_PATTERN", "NAMES", "TRAMPOLINE_SOURCE"]

"""Execution contexts over a Lua VM stack.

Each public method notes its stack effect as ``[-o, +p, x]``: ``o`` values
popped, ``p`` values pushed, and ``x`` is ``-`` when the operation never
runs VM code, ``m`` when it may only fail on allocation, and ``e`` when it
may run arbitrary Lua code. ``e`` operations always go through
:meth:`LuaContext.pcall` on a trampoline and raise :class:`LuaError`.
"""

from __future__ import annotations

import ctypes
import logging
import math
import pathlib
import weakref
from ctypes import byref, c_int, c_size_t, c_void_p
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from . import index as stack_index
from .capi import LuaLibrary, load_library, lua_CFunction, lua_KFunction
from .errors import LuaError, LuaMemoryError, LuaStateClosed, error_for_status
from .index import MULTRET, REGISTRY_INDEX
from .lua_types import LuaComparison, LuaOperator, LuaStatus, LuaType
from .trampolines import CHUNK_NAME, NAMES, TRAMPOLINE_SOURCE

logger = logging.getLogger(__name__)

HostFunction = Callable[["LuaContext"], Optional[int]]
Continuation = Callable[["LuaContext", LuaStatus, int], int]
Pointer = Union[int, c_void_p]

_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


def format_number(value: Union[int, float]) -> str:
    """Render a number the way Lua's ``tostring`` does."""
    if isinstance(value, int):
        return str(value)
    text = "%.14g" % value
    if text.lstrip("-").isdigit():
        text += ".0"
    return text


def _address(pointer: Optional[Pointer]) -> Optional[int]:
    if isinstance(pointer, c_void_p):
        return pointer.value
    return pointer


class _VMInstance:
    """State shared by a root context and every view onto the same VM."""

    __slots__ = ("lib", "main_state", "refs", "callbacks", "closed", "owner_ref")

    def __init__(self, lib: LuaLibrary, main_state: int) -> None:
        self.lib = lib
        self.main_state = main_state
        self.refs: Dict[str, int] = {}
        # ctypes callbacks must outlive every closure the VM holds on them.
        self.callbacks: List[Any] = []
        self.closed = False
        self.owner_ref: Optional[weakref.ReferenceType] = None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.lib.lua_close(self.main_state)
        self.callbacks.clear()
        logger.debug("closed Lua state 0x%x", self.main_state)


class LuaContext:
    """A host handle on one Lua stack.

    ``LuaContext()`` creates the root context: it opens a new VM instance with
    the standard library loaded and is the only context that ever closes it.
    Contexts returned by :meth:`new_thread`, :meth:`to_thread` or handed to a
    host function are views: they share the VM's globals, own an independent
    stack and their :meth:`close` does nothing. Views must not be used after
    the root context is closed; doing so raises :class:`LuaStateClosed`.

    No locking is done. Only one native thread may use a VM instance, root and
    views included, at any time.
    """

    def __init__(self, *, library: Optional[str] = None) -> None:
        lib = load_library(library)
        state = lib.luaL_newstate()
        if not state:
            raise LuaMemoryError("cannot allocate a Lua state")
        self._vm = _VMInstance(lib, state)
        self._vm.owner_ref = weakref.ref(self)
        self._state: int = state
        self.is_root = True
        self._finalizer = weakref.finalize(self, self._vm.close)
        lib.luaL_openlibs(state)
        logger.debug("opened Lua state 0x%x (version %s)", state, self.version)
        self._install_trampolines()

    @classmethod
    def _view(cls, vm: _VMInstance, state: int) -> "LuaContext":
        view = cls.__new__(cls)
        view._vm = vm
        view._state = state
        view.is_root = False
        view._finalizer = None
        return view

    # ------------------------------------------------------------------ lifecycle
    def close(self) -> None:
        """Release the VM instance. A no-op on views and on repeated calls."""
        if self.is_root and self._finalizer is not None:
            self._finalizer()

    @property
    def closed(self) -> bool:
        return self._vm.closed

    @property
    def state(self) -> int:
        """The opaque ``lua_State`` address this context operates on."""
        return self._state

    @property
    def owner(self) -> Optional["LuaContext"]:
        ref = self._vm.owner_ref
        return ref() if ref is not None else None

    @property
    def version(self) -> float:
        return self._vm.lib.version(self._live())

    def type_name(self, tag: LuaType) -> str:
        if tag is LuaType.NONE:
            return "no value"
        return self._vm.lib.lua_typename(self._live(), int(tag)).decode("ascii")

    def __enter__(self) -> "LuaContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        kind = "root" if self.is_root else "view"
        if self.closed:
            return f"<LuaContext {kind} closed>"
        return f"<LuaContext {kind} top={self.top}>"

    # ------------------------------------------------------------------ index model
    @property
    def top(self) -> int:
        """Index of the top element, i.e. the stack depth. ``[-0, +0, -]``"""
        return self._vm.lib.lua_gettop(self._live())

    @top.setter
    def top(self, value: int) -> None:
        # [-?, +?, -]: growing fills the new slots with nil.
        state = self._live()
        current = self._vm.lib.lua_gettop(state)
        if value >= 0:
            if value > current:
                self._grow(value - current)
        else:
            stack_index.require_slot(value, current)
        self._vm.lib.lua_settop(state, value)

    @property
    def count(self) -> int:
        return self.top

    @property
    def is_empty(self) -> bool:
        return self.top == 0

    def abs_index(self, index: int = -1) -> int:
        return stack_index.absolute(index, self.top)

    @staticmethod
    def upvalue_index(n: int) -> int:
        return stack_index.upvalue_index(n)

    def check_stack(self, extra: int) -> bool:
        """Make room for ``extra`` more pushes; ``False`` if that is impossible."""
        return self._vm.lib.lua_checkstack(self._live(), extra) != 0

    # ------------------------------------------------------------------ stack primitives
    def push_value(self, index: int = -1) -> None:
        """Push a copy of the value at ``index``. ``[-0, +1, -]``"""
        state = self._live()
        index = stack_index.require_acceptable(index, self.top)
        self._grow(1)
        self._vm.lib.lua_pushvalue(state, index)

    dup = push_value

    def rotate(self, index: int, count: int) -> None:
        """Rotate the slice from ``index`` to the top by ``count`` towards the top. ``[-0, +0, -]``"""
        state = self._live()
        top = self.top
        start = stack_index.require_slot(index, top)
        if not stack_index.rotation_bounds_ok(start, count, top):
            raise ValueError(f"cannot rotate {top - start + 1} values by {count}")
        self._vm.lib.lua_rotate(state, start, count)

    def swap(self, index: int = -1) -> None:
        """Exchange the value at ``index`` with the one below it. ``[-0, +0, -]``"""
        position = stack_index.require_slot(index, self.top)
        if position < 2:
            raise IndexError("no value below the bottom of the stack to swap with")
        lib, state = self._vm.lib, self._state
        self.push_value(position)
        lib.lua_copy(state, position - 1, position)
        lib.lua_copy(state, -1, position - 1)
        lib.lua_settop(state, -2)

    def copy(self, from_index: int, to_index: int) -> None:
        """Overwrite the value at ``to_index`` with the one at ``from_index``. ``[-0, +0, -]``"""
        state = self._live()
        top = self.top
        source = stack_index.require_acceptable(from_index, top)
        target = stack_index.require_acceptable(to_index, top)
        self._vm.lib.lua_copy(state, source, target)

    def pop(self, count: int = 1) -> None:
        """``[-count, +0, -]``"""
        state = self._live()
        top = self.top
        if not 0 <= count <= top:
            raise IndexError(f"cannot pop {count} values from a stack of depth {top}")
        self._vm.lib.lua_settop(state, -count - 1)

    def insert(self, index: int) -> None:
        """Move the top value into ``index``, shifting the values above up. ``[-1, +1, -]``"""
        self.rotate(index, 1)

    def remove(self, index: int) -> None:
        """Remove the value at ``index``, shifting the values above down. ``[-1, +0, -]``"""
        self.rotate(index, -1)
        self.pop()

    def replace(self, index: int) -> None:
        """Pop the top value into ``index`` without shifting anything. ``[-1, +0, -]``"""
        state = self._live()
        top = self.top
        if top < 1:
            raise IndexError("replace needs a value on the stack")
        target = stack_index.require_acceptable(index, top)
        self._vm.lib.lua_copy(state, -1, target)
        self._vm.lib.lua_settop(state, -2)

    def xmove(self, to: "LuaContext", count: int) -> None:
        """Pop ``count`` values and push them onto ``to``'s stack."""
        state = self._live()
        if to._vm is not self._vm:
            raise ValueError("values can only move between threads of the same VM")
        if not 0 <= count <= self.top:
            raise IndexError(f"cannot move {count} values from a stack of depth {self.top}")
        to._grow(count)
        self._vm.lib.lua_xmove(state, to._state, count)

    # ------------------------------------------------------------------ type queries
    def type_of(self, index: int = -1) -> LuaType:
        """Tag of the value at ``index``; ``NONE`` when the index is not valid."""
        state = self._live()
        if not stack_index.is_valid(index, self._vm.lib.lua_gettop(state)):
            return LuaType.NONE
        return LuaType(self._vm.lib.lua_type(state, index))

    def is_none(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.NONE

    def is_nil(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.NIL

    def is_none_or_nil(self, index: int = -1) -> bool:
        return self.type_of(index) in (LuaType.NONE, LuaType.NIL)

    def is_boolean(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.BOOLEAN

    def is_table(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.TABLE

    def is_function(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.FUNCTION

    def is_light_userdata(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.LIGHT_USERDATA

    def is_thread(self, index: int = -1) -> bool:
        return self.type_of(index) is LuaType.THREAD

    def is_number(self, index: int = -1) -> bool:
        """True for numbers and for strings convertible to numbers."""
        return self._query("lua_isnumber", index)

    def is_string(self, index: int = -1) -> bool:
        """True for strings and numbers, which always convert to strings."""
        return self._query("lua_isstring", index)

    def is_integer(self, index: int = -1) -> bool:
        return self._query("lua_isinteger", index)

    def is_cfunction(self, index: int = -1) -> bool:
        return self._query("lua_iscfunction", index)

    def is_userdata(self, index: int = -1) -> bool:
        """True for full and light userdata."""
        return self._query("lua_isuserdata", index)

    def raw_equal(self, index1: int = -1, index2: int = -2) -> bool:
        """Primitive equality, without metamethods. ``[-0, +0, -]``"""
        if self.is_none(index1) or self.is_none(index2):
            return False
        return self._vm.lib.lua_rawequal(self._state, index1, index2) != 0

    # ------------------------------------------------------------------ readers
    def to_number(self, index: int = -1) -> Optional[float]:
        if self.is_none(index):
            return None
        converted = c_int(0)
        value = self._vm.lib.lua_tonumberx(self._state, index, byref(converted))
        return value if converted.value else None

    def to_integer(self, index: int = -1) -> Optional[int]:
        if self.is_none(index):
            return None
        converted = c_int(0)
        value = self._vm.lib.lua_tointegerx(self._state, index, byref(converted))
        return value if converted.value else None

    def to_numeric(self, index: int = -1) -> Optional[Union[int, float]]:
        """An ``int`` for integer slots, a ``float`` for any other number."""
        if self.is_integer(index):
            return self.to_integer(index)
        return self.to_number(index)

    def to_boolean(self, index: int = -1) -> bool:
        """Lua truthiness: only ``nil`` and ``false`` are false."""
        if self.is_none(index):
            return False
        return self._vm.lib.lua_toboolean(self._state, index) != 0

    def to_bytes(self, index: int = -1) -> Optional[bytes]:
        """Raw bytes of a string or number slot. ``[-0, +0, m]``

        A number is converted in place, as the VM does: the slot holds a
        string afterwards.
        """
        if self.is_none(index):
            return None
        size = c_size_t(0)
        data = self._vm.lib.lua_tolstring(self._state, index, byref(size))
        if not data:
            return None
        return ctypes.string_at(data, size.value)

    def to_string(self, index: int = -1) -> Optional[str]:
        data = self.to_bytes(index)
        if data is None:
            return None
        return data.decode("utf-8", "surrogateescape")

    def raw_len(self, index: int = -1) -> int:
        if self.is_none(index):
            return 0
        return self._vm.lib.lua_rawlen(self._state, index)

    def to_cfunction(self, index: int = -1) -> Optional[int]:
        return self._pointer_query("lua_tocfunction", index)

    def to_userdata(self, index: int = -1) -> Optional[int]:
        """Block address of a full userdata, or the pointer of a light one."""
        return self._pointer_query("lua_touserdata", index)

    def to_pointer(self, index: int = -1) -> Optional[int]:
        """Identity address of a table, function, thread or userdata."""
        return self._pointer_query("lua_topointer", index)

    def to_thread(self, index: int = -1) -> Optional["LuaContext"]:
        """A view on the thread at ``index``; ownership is unaffected."""
        thread = self._pointer_query("lua_tothread", index)
        if thread is None:
            return None
        return LuaContext._view(self._vm, thread)

    def to_value(self, index: int = -1) -> Any:
        """Decode a slot into a host value.

        nil becomes ``None``, booleans, numbers and strings map to their
        Python counterparts, light userdata to ``c_void_p`` and threads to a
        view. Tables, functions and full userdata have no host form and read
        as ``None``.
        """
        tag = self.type_of(index)
        if tag is LuaType.BOOLEAN:
            return self.to_boolean(index)
        if tag is LuaType.NUMBER:
            return self.to_numeric(index)
        if tag is LuaType.STRING:
            return self.to_string(index)
        if tag is LuaType.LIGHT_USERDATA:
            return c_void_p(self.to_userdata(index))
        if tag is LuaType.THREAD:
            return self.to_thread(index)
        return None

    # ------------------------------------------------------------------ pushers
    def push_nil(self) -> None:
        self._grow(1)
        self._vm.lib.lua_pushnil(self._state)

    def push_boolean(self, value: bool) -> None:
        self._grow(1)
        self._vm.lib.lua_pushboolean(self._state, 1 if value else 0)

    def push_number(self, value: float) -> None:
        self._grow(1)
        self._vm.lib.lua_pushnumber(self._state, float(value))

    def push_integer(self, value: int) -> None:
        if not _INT_MIN <= value <= _INT_MAX:
            raise OverflowError(f"{value} does not fit in a Lua integer")
        self._grow(1)
        self._vm.lib.lua_pushinteger(self._state, value)

    def push_string(self, value: Union[str, bytes]) -> None:
        """``[-0, +1, m]``"""
        if isinstance(value, str):
            value = value.encode("utf-8", "surrogateescape")
        self._grow(1)
        self._vm.lib.lua_pushlstring(self._state, value, len(value))

    def push_light_userdata(self, pointer: Pointer) -> None:
        self._grow(1)
        self._vm.lib.lua_pushlightuserdata(self._state, _address(pointer))

    def push_cfunction(self, address: int, upvalues: int = 0) -> None:
        """Push a native function, closing over the top ``upvalues`` values. ``[-n, +1, m]``"""
        state = self._live()
        if not 0 <= upvalues <= stack_index.MAX_UPVALUES:
            raise ValueError(f"a closure holds at most {stack_index.MAX_UPVALUES} upvalues")
        if upvalues > self.top:
            raise IndexError(f"{upvalues} upvalues requested but the stack holds {self.top}")
        self._grow(1)
        self._vm.lib.lua_pushcclosure(state, address, upvalues)

    def push_function(self, fn: HostFunction, upvalues: int = 0) -> None:
        """Expose a Python callable to Lua. ``[-n, +1, m]``

        ``fn`` is called with a view on the calling stack, whose arguments sit
        at indices ``1..top``; it pushes its results and returns how many
        (``None`` means none). Upvalues are read at
        ``ctx.upvalue_index(i)``. An exception raised by ``fn`` becomes a Lua
        error at the call site.
        """
        vm = self._vm
        callback = lua_CFunction(lambda state: _call_host_function(vm, fn, state))
        vm.callbacks.append(callback)
        self.push_cfunction(ctypes.cast(callback, c_void_p).value, upvalues)
        # Stack: ... [cfunction]
        self._push_trampoline("guard")
        self.rotate(-2, 1)
        # Stack: ... [guard] [cfunction]
        self.pcall(1, 1)
        # Stack: ... [guarded function]

    def push_thread(self) -> bool:
        """Push this context's own thread; ``True`` if it is the main thread. ``[-0, +1, -]``"""
        self._grow(1)
        return self._vm.lib.lua_pushthread(self._state) != 0

    def push(self, value: Any) -> None:
        """Push a host value, choosing the VM type from its Python type."""
        if value is None:
            self.push_nil()
        elif isinstance(value, bool):
            self.push_boolean(value)
        elif isinstance(value, int):
            self.push_integer(value)
        elif isinstance(value, float):
            self.push_number(value)
        elif isinstance(value, (str, bytes)):
            self.push_string(value)
        elif isinstance(value, c_void_p):
            self.push_light_userdata(value)
        elif isinstance(value, LuaContext):
            value.push_thread()
            value.xmove(self, 1)
        elif callable(value):
            self.push_function(value)
        else:
            raise TypeError(f"cannot push {type(value).__name__} onto a Lua stack")

    # ------------------------------------------------------------------ protected calls
    def pcall(
        self,
        nargs: int = 0,
        nresults: int = MULTRET,
        errfunc: int = 0,
        *,
        continuation: Optional[Union[Continuation, int]] = None,
        context: int = 0,
    ) -> None:
        """Call ``[callable] [arg1] ... [argN]`` in protected mode.

        On success the callable and arguments are replaced by ``nresults``
        results (all of them for ``MULTRET``). On failure they are replaced
        by the single error value and the matching :class:`LuaError` is
        raised. ``[-(nargs + 1), +(nresults|1), -]``

        ``continuation`` and ``context`` are handed to ``lua_pcallk``
        unchanged; scheduling a resumed call is left to the VM. A yield that
        reaches the continuation discards the Python frames between it and
        the resume point, so it is only sound for continuations given as
        native function addresses called outside any host function.
        """
        state = self._live()
        top = self.top
        if nargs < 0 or nargs + 1 > top:
            raise IndexError(f"pcall needs a callable and {nargs} arguments, stack depth is {top}")
        if errfunc:
            errfunc = stack_index.require_slot(errfunc, top)
        if nresults > nargs:
            # The VM pads missing results with nil but never grows the stack for them.
            self._grow(nresults - nargs)
        status = self._vm.lib.lua_pcallk(
            state, nargs, nresults, errfunc, context, self._continuation_address(continuation)
        )
        self._check_status(status)

    def _check_status(self, code: int) -> LuaStatus:
        status = self._vm.lib.decode_status(code)
        if not status.is_error:
            return status
        message = self._error_message(-1)
        logger.debug("protected call failed with %s: %s", status.value, message)
        raise error_for_status(status, message)

    def _error_message(self, index: int) -> str:
        tag = self.type_of(index)
        if tag in (LuaType.STRING, LuaType.NUMBER):
            message = self.to_string(index)
            if message is None:
                # The error path has no fallback left if the message cannot be read.
                raise SystemError("error value could not be read")
            return message
        return f"(error object is a {self.type_name(tag)} value)"

    def _continuation_address(self, continuation: Optional[Union[Continuation, int]]) -> Optional[int]:
        if continuation is None or isinstance(continuation, int):
            return continuation
        vm = self._vm

        def entry(state: int, status: int, context: int) -> int:
            return continuation(LuaContext._view(vm, state), vm.lib.decode_status(status), context)

        callback = lua_KFunction(entry)
        vm.callbacks.append(callback)
        return ctypes.cast(callback, c_void_p).value

    def _push_trampoline(self, name: str) -> None:
        self._grow(1)
        self._vm.lib.lua_rawgeti(self._state, REGISTRY_INDEX, self._vm.refs[name])

    def _install_trampolines(self) -> None:
        lib, state = self._vm.lib, self._state
        self.load_buffer(TRAMPOLINE_SOURCE.encode("utf-8"), CHUNK_NAME, mode="t")
        self.pcall(0, 1)
        # Stack: [trampolines]
        for name in NAMES:
            self.push_string(name)
            lib.lua_rawget(state, -2)
            self._vm.refs[name] = lib.luaL_ref(state, REGISTRY_INDEX)
        self.pop()
        logger.debug("installed %d trampolines", len(self._vm.refs))

    # ------------------------------------------------------------------ loading and running
    def load_buffer(self, data: bytes, name: Union[str, bytes, None] = None, mode: str = "bt") -> None:
        """Compile a text or binary chunk into a function on the stack. ``[-0, +1, -]``

        On a compile error the pushed value is the error message and
        :class:`LuaSyntaxError` is raised.
        """
        state = self._live()
        if name is None:
            name = b"=(load)"
        if isinstance(name, str):
            name = name.encode("utf-8", "surrogateescape")
        self._grow(1)
        status = self._vm.lib.luaL_loadbufferx(state, data, len(data), name, mode.encode("ascii"))
        self._check_status(status)

    def load_string(self, source: str, name: Optional[str] = None) -> None:
        """Compile source text; the chunk is named after the text itself by default."""
        data = source.encode("utf-8", "surrogateescape")
        self.load_buffer(data, data if name is None else name, mode="t")

    def run(self, source: str, name: Optional[str] = None) -> None:
        """Compile and call ``source``, discarding its results. ``[-0, +(0|1), e]``"""
        self.load_string(source, name)
        self.pcall(0, 0)

    def run_file(self, path: Union[str, pathlib.Path]) -> None:
        path = pathlib.Path(path)
        self.load_buffer(path.read_bytes(), f"@{path}")
        self.pcall(0, 0)

    def evaluate(self, source: str, name: Optional[str] = None) -> int:
        """Compile and call ``source`` keeping every result; returns their count."""
        base = self.top
        self.load_string(source, name)
        self.pcall(0, MULTRET)
        return self.top - base

    # ------------------------------------------------------------------ globals and tables
    def get_global(self, name: str) -> LuaType:
        """Push the global ``name``. ``[-0, +1, e]``"""
        self._grow(2)
        self._push_trampoline("getglobal")
        self.push_string(name)
        # Stack: ... [getglobal] [name]
        self.pcall(1, 1)
        return self.type_of(-1)

    def set_global(self, name: str) -> None:
        """Pop a value into the global ``name``. ``[-1, +0, e]``"""
        self._require_depth(1)
        self._grow(2)
        self._push_trampoline("setglobal")
        self.rotate(-2, 1)
        self.push_string(name)
        # Stack: ... [setglobal] [value] [name]
        self.pcall(2, 0)

    def new_table(self, narr: int = 0, nrec: int = 0) -> None:
        """``[-0, +1, m]``"""
        self._grow(1)
        self._vm.lib.lua_createtable(self._state, narr, nrec)

    def get_metatable(self, index: int = -1) -> bool:
        """Push the metatable of the value at ``index`` if it has one. ``[-0, +(0|1), -]``"""
        state = self._live()
        index = stack_index.require_acceptable(index, self.top)
        self._grow(1)
        return self._vm.lib.lua_getmetatable(state, index) != 0

    def set_metatable(self, index: int) -> None:
        """Pop a table (or nil) and make it the metatable of the value at ``index``. ``[-1, +0, -]``"""
        state = self._live()
        target = stack_index.require_acceptable(index, self.top)
        if self.type_of(-1) not in (LuaType.TABLE, LuaType.NIL):
            raise TypeError("metatable must be a table or nil")
        self._vm.lib.lua_setmetatable(state, target)

    def get_in_table(self, index: int, raw: bool = False) -> LuaType:
        """Replace the key on top with ``t[key]``, ``t`` being the value at ``index``.

        Raw: ``[-1, +1, -]``, otherwise ``[-1, +1, e]``.
        """
        table = self._table_index(index, raw)
        self._require_depth(1)
        if raw:
            return LuaType(self._vm.lib.lua_rawget(self._state, table))
        # Stack: ... [key]
        self._grow(2)
        self._push_trampoline("gettable")
        self.push_value(table)
        self.rotate(-3, -1)
        # Stack: ... [gettable] [table] [key]
        self.pcall(2, 1)
        return self.type_of(-1)

    def get_field_in_table(self, index: int, name: str, raw: bool = False) -> LuaType:
        """Push ``t[name]``. ``[-0, +1, e]``"""
        table = self._table_index(index, raw)
        self.push_string(name)
        return self.get_in_table(table, raw)

    def get_index_in_table(self, index: int, n: int, raw: bool = False) -> LuaType:
        """Push ``t[n]``. ``[-0, +1, e]``"""
        table = self._table_index(index, raw)
        if raw:
            self._grow(1)
            return LuaType(self._vm.lib.lua_rawgeti(self._state, table, n))
        self.push_integer(n)
        return self.get_in_table(table)

    def set_in_table(self, index: int, raw: bool = False) -> None:
        """Pop key and value (value on top) and do ``t[key] = value``.

        Raw: ``[-2, +0, m]``, otherwise ``[-2, +0, e]``.
        """
        table = self._table_index(index, raw)
        self._require_depth(2)
        if raw:
            self._check_raw_key(-2)
            self._vm.lib.lua_rawset(self._state, table)
            return
        # Stack: ... [key] [value]
        self._grow(2)
        self._push_trampoline("settable")
        self.push_value(table)
        self.rotate(-4, 2)
        # Stack: ... [settable] [table] [key] [value]
        self.pcall(3, 0)

    def set_field_in_table(self, index: int, name: str, raw: bool = False) -> None:
        """Pop a value and do ``t[name] = value``. ``[-1, +0, e]``"""
        table = self._table_index(index, raw)
        self._require_depth(1)
        self.push_string(name)
        self.swap()
        self.set_in_table(table, raw)

    def set_index_in_table(self, index: int, n: int, raw: bool = False) -> None:
        """Pop a value and do ``t[n] = value``. ``[-1, +0, e]``"""
        table = self._table_index(index, raw)
        self._require_depth(1)
        if raw:
            self._vm.lib.lua_rawseti(self._state, table, n)
            return
        self.push_integer(n)
        self.swap()
        self.set_in_table(table)

    def raw_get_pointer(self, index: int, pointer: Pointer) -> LuaType:
        """Push ``t[p]`` for a light userdata key, without metamethods. ``[-0, +1, -]``"""
        table = self._table_index(index, raw=True)
        self._grow(1)
        return LuaType(self._vm.lib.lua_rawgetp(self._state, table, _address(pointer)))

    def raw_set_pointer(self, index: int, pointer: Pointer) -> None:
        """Pop a value into ``t[p]`` for a light userdata key. ``[-1, +0, m]``"""
        table = self._table_index(index, raw=True)
        self._require_depth(1)
        self._vm.lib.lua_rawsetp(self._state, table, _address(pointer))

    # ------------------------------------------------------------------ arithmetic and comparison
    def arith(self, op: LuaOperator) -> None:
        """Apply ``op`` to the top one or two values, leaving the result. ``[-(2|1), +1, e]``"""
        op = LuaOperator(op)
        operands = op.operand_count
        self._require_depth(operands)
        self._grow(2)
        # Stack: ... [a] [b] | ... [a]
        self._push_trampoline("arith")
        self.push_integer(op.value)
        self.rotate(-(operands + 2), 2)
        # Stack: ... [arith] [op] [a] [b] | ... [arith] [op] [a]
        self.pcall(operands + 1, 1)

    def compare(self, index1: int, index2: int, comparison: LuaComparison) -> bool:
        """Evaluate ``v1 <op> v2`` with metamethods. ``[-0, +0, e]``

        Invalid indices compare as ``False``. On failure the error value is
        left on the stack.
        """
        comparison = LuaComparison(comparison)
        if self.is_none(index1) or self.is_none(index2):
            return False
        first = self.abs_index(index1)
        second = self.abs_index(index2)
        self._grow(4)
        self._push_trampoline("compare")
        self.push_value(first)
        self.push_value(second)
        self.push_integer(comparison.value)
        # Stack: ... [compare] [v1] [v2] [comparison]
        self.pcall(3, 1)
        result = self.to_boolean(-1)
        self.pop()
        return result

    def is_comparable(self, index1: int, index2: int, comparison: LuaComparison) -> bool:
        return self.compare(index1, index2, comparison)

    # ------------------------------------------------------------------ threads
    def new_thread(self) -> "LuaContext":
        """Push a new thread sharing this VM's globals and return a view on it. ``[-0, +1, m]``

        The pushed reference keeps the thread alive; once it becomes
        unreachable the VM collects it.
        """
        self._push_trampoline("newthread")
        self.pcall(0, 1)
        thread = self.to_thread(-1)
        assert thread is not None
        # The coroutine body placed on the new stack is not part of a fresh thread.
        self._vm.lib.lua_settop(thread._state, 0)
        return thread

    @property
    def status(self) -> LuaStatus:
        return self._vm.lib.decode_status(self._vm.lib.lua_status(self._live()))

    def resume(self, nargs: int = 0, from_context: Optional["LuaContext"] = None) -> Tuple[LuaStatus, int]:
        """Start or continue this thread as a coroutine.

        Returns ``(OK, n)`` when the body returned or ``(YIELD, n)`` when it
        yielded, ``n`` values being left on top of this stack. Errors raise
        :class:`LuaError` with the error value left on this stack.
        """
        state = self._live()
        if not 0 <= nargs <= self.top:
            raise IndexError(f"cannot resume with {nargs} arguments, stack depth is {self.top}")
        from_state = from_context._state if from_context is not None else None
        code, nresults = self._vm.lib.resume(state, from_state, nargs)
        status = self._check_status(code)
        return status, nresults

    # ------------------------------------------------------------------ debug
    @property
    def stack_description(self) -> str:
        """Every slot from bottom to top as ``[literal]``, or ``empty``."""
        top = self.top
        if top == 0:
            return "empty"
        return " ".join(f"[{self._describe_slot(i)}]" for i in range(1, top + 1))

    def print_stack(self) -> None:
        print(self.stack_description)

    def to_display(self, index: int = -1) -> str:
        """Render a slot like ``tostring`` does, ignoring ``__tostring``."""
        tag = self.type_of(index)
        if tag in (LuaType.NONE, LuaType.NIL):
            return "nil"
        if tag is LuaType.BOOLEAN:
            return "true" if self.to_boolean(index) else "false"
        if tag is LuaType.NUMBER:
            return format_number(self.to_numeric(index))
        if tag is LuaType.STRING:
            return self.to_string(index)
        address = self.to_pointer(index) or 0
        return f"{self.type_name(tag)}: 0x{address:x}"

    def _describe_slot(self, i: int) -> str:
        tag = self.type_of(i)
        if tag is LuaType.BOOLEAN:
            return "true" if self.to_boolean(i) else "false"
        if tag is LuaType.NUMBER:
            return format_number(self.to_numeric(i))
        if tag is LuaType.STRING:
            return f"'{self.to_string(i)}'"
        if tag is LuaType.NONE:
            raise AssertionError(f"slot {i} is below the top but has no value")
        return _SLOT_NAMES[tag]

    # ------------------------------------------------------------------ helpers
    def _live(self) -> int:
        if self._vm.closed:
            raise LuaStateClosed("the Lua state has been closed")
        return self._state

    def _grow(self, extra: int) -> None:
        if extra > 0 and not self._vm.lib.lua_checkstack(self._live(), extra):
            raise LuaMemoryError(f"stack overflow (cannot grow by {extra} slots)")

    def _require_depth(self, needed: int) -> None:
        top = self.top
        if top < needed:
            raise IndexError(f"operation needs {needed} values on the stack, depth is {top}")

    def _table_index(self, index: int, raw: bool) -> int:
        position = stack_index.require_acceptable(index, self.top)
        if raw and self.type_of(position) is not LuaType.TABLE:
            raise TypeError(f"raw access needs a table, found {self.type_name(self.type_of(position))}")
        return position

    def _check_raw_key(self, index: int) -> None:
        tag = self.type_of(index)
        if tag is LuaType.NIL:
            raise TypeError("table index is nil")
        if tag is LuaType.NUMBER and not self.is_integer(index) and math.isnan(self.to_number(index)):
            raise ValueError("table index is NaN")

    def _query(self, name: str, index: int) -> bool:
        if self.is_none(index):
            return False
        return getattr(self._vm.lib, name)(self._state, index) != 0

    def _pointer_query(self, name: str, index: int) -> Optional[int]:
        if self.is_none(index):
            return None
        return getattr(self._vm.lib, name)(self._state, index) or None


_SLOT_NAMES = {
    LuaType.NIL: "nil",
    LuaType.FUNCTION: "Function",
    LuaType.LIGHT_USERDATA: "LightUserData",
    LuaType.TABLE: "Table",
    LuaType.THREAD: "Thread",
    LuaType.USERDATA: "UserData",
}


def _call_host_function(vm: _VMInstance, fn: HostFunction, state: int) -> int:
    """Native entry of a host function.

    Returns ``true, results...`` on success and ``false, message`` on failure;
    the ``guard`` trampoline turns the latter into a Lua error so that no
    error ever unwinds through this frame.
    """
    view = LuaContext._view(vm, state)
    lib = vm.lib
    try:
        count = fn(view)
        count = 0 if count is None else int(count)
        if not 0 <= count <= view.top:
            raise ValueError(f"host function returned {count} results with {view.top} values on the stack")
    except Exception as exc:
        message = str(exc) if isinstance(exc, LuaError) else f"{type(exc).__name__}: {exc}"
        logger.debug("host function %r raised: %s", fn, message)
        lib.lua_settop(state, 0)
        view.push_boolean(False)
        view.push_string(message)
        return 2
    view._grow(1)
    lib.lua_pushboolean(state, 1)
    lib.lua_rotate(state, -(count + 1), 1)
    return count + 1


__all__ = ["LuaContext", "format_number"]

from __future__ import annotations

from .lua_types import LuaStatus


class LuaError(RuntimeError):
    """A failed protected call, tagged with the VM status that caused it."""

    status = LuaStatus.ERROR

    def __init__(self, message: str, status: LuaStatus | None = None):
        super().__init__(message)
        if status is not None:
            self.status = status
        self.message = message

    def __str__(self) -> str:
        return self.message


class LuaRuntimeError(LuaError):
    status = LuaStatus.ERROR_RUN


class LuaSyntaxError(LuaError):
    status = LuaStatus.ERROR_SYNTAX


class LuaMemoryError(LuaError):
    status = LuaStatus.ERROR_MEM


class LuaGCError(LuaError):
    """Raised when a ``__gc`` metamethod failed (5.3 libraries only)."""

    status = LuaStatus.ERROR_GC


class LuaHandlerError(LuaError):
    """Generic failure, typically an error inside the message handler."""

    status = LuaStatus.ERROR


class LuaStateClosed(RuntimeError):
    pass


class LuaLibraryNotFound(ImportError):
    pass


_ERRORS_BY_STATUS = {
    LuaStatus.ERROR_RUN: LuaRuntimeError,
    LuaStatus.ERROR_SYNTAX: LuaSyntaxError,
    LuaStatus.ERROR_MEM: LuaMemoryError,
    LuaStatus.ERROR_GC: LuaGCError,
    LuaStatus.ERROR: LuaHandlerError,
}


def error_for_status(status: LuaStatus, message: str) -> LuaError:
    if not status.is_error:
        raise ValueError(f"status {status.value} is not an error")
    return _ERRORS_BY_STATUS[status](message)


__all__ = [
    "LuaError",
    "LuaGCError",
    "LuaHandlerError",
    "LuaLibraryNotFound",
    "LuaMemoryError",
    "LuaRuntimeError",
    "LuaStateClosed",
    "LuaSyntaxError",
    "error_for_status",
]

"""Stack index arithmetic.

Positive indices count from the bottom of a stack (1 is the first pushed
value), negative indices count from the top (-1 is the top). Indices at or
below ``REGISTRY_INDEX`` are pseudo-indices: they name VM-reserved slots such
as the registry or a C closure's upvalues and never move when the stack
grows or shrinks.
"""

from __future__ import annotations

LUAI_MAXSTACK = 1_000_000
REGISTRY_INDEX = -LUAI_MAXSTACK - 1000
MAX_UPVALUES = 255

# ``pcall`` result count meaning "keep every result".
MULTRET = -1


def is_pseudo(index: int) -> bool:
    return index <= REGISTRY_INDEX


def upvalue_index(n: int) -> int:
    if not 1 <= n <= MAX_UPVALUES:
        raise ValueError(f"upvalue number must be in 1..{MAX_UPVALUES}, got {n}")
    return REGISTRY_INDEX - n


def absolute(index: int, top: int) -> int:
    """Convert ``index`` into one that no longer depends on the stack top."""
    if index > 0 or is_pseudo(index):
        return index
    return top + index + 1


def is_valid(index: int, top: int) -> bool:
    if is_pseudo(index):
        return True
    if index > 0:
        return index <= top
    return index < 0 and -index <= top


def require_slot(index: int, top: int) -> int:
    """Return the absolute position of an ordinary, occupied stack slot."""
    if is_pseudo(index):
        raise ValueError(f"pseudo-index {index} does not name a stack position")
    if not is_valid(index, top):
        raise IndexError(f"stack index {index} is outside a stack of depth {top}")
    return absolute(index, top)


def require_acceptable(index: int, top: int) -> int:
    """Like :func:`require_slot` but pseudo-indices are passed through."""
    if is_pseudo(index):
        return index
    return require_slot(index, top)


def rotation_bounds_ok(index: int, count: int, top: int) -> bool:
    """Whether ``|count|`` fits in the slice from ``index`` to the top."""
    start = absolute(index, top)
    return abs(count) <= top - start + 1


__all__ = [
    "LUAI_MAXSTACK",
    "MAX_UPVALUES",
    "MULTRET",
    "REGISTRY_INDEX",
    "absolute",
    "is_pseudo",
    "is_valid",
    "require_acceptable",
    "require_slot",
    "rotation_bounds_ok",
    "upvalue_index",
]

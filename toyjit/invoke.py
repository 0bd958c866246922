"""Calling finalized machine code.

`invoke_raw` is the unchecked seam: it reinterprets an address as a C
function taking `arity` int64 arguments and calls it. Nothing verifies that
the code at that address actually has that shape; a mismatch corrupts the
native stack or returns garbage. Use it only with addresses whose signature
you know.

`CompiledFunction` is the handle the JIT hands out. It records the
signature at finalize time, checks every call against it and refuses to
run once its owning JIT has been closed.
"""

from __future__ import annotations

import ctypes
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Sequence, Tuple, Union

from .errors import InvocationError

if TYPE_CHECKING:  # pragma: no cover
    from .jit import JIT

MAX_ARITY = 3
MAX_RETURNS = 2
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1

Result = Union[int, Tuple[int, ...]]


@dataclass(frozen=True)
class Signature:
    arity: int
    returns: int = 1

    def __str__(self) -> str:
        return f"({self.arity} args) -> {self.returns}"


@lru_cache(maxsize=None)
def _prototype(arity: int, returns: int):
    if not 0 <= arity <= MAX_ARITY:
        raise InvocationError(f"native calls take 0..{MAX_ARITY} arguments, got {arity}")
    if returns == 1:
        restype = ctypes.c_int64
    elif 1 < returns <= MAX_RETURNS:
        fields = [(f"v{idx}", ctypes.c_int64) for idx in range(returns)]
        restype = type(f"I64x{returns}", (ctypes.Structure,), {"_fields_": fields})
    else:
        raise InvocationError(f"native calls return 1..{MAX_RETURNS} values, got {returns}")
    return ctypes.CFUNCTYPE(restype, *([ctypes.c_int64] * arity))


def _unpack(raw, returns: int) -> Result:
    if returns == 1:
        return int(raw)
    return tuple(int(getattr(raw, f"v{idx}")) for idx in range(returns))


def _to_i64(value: object) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise InvocationError(f"argument {value!r} is not an integer") from exc
    if not I64_MIN <= number <= I64_MAX:
        raise InvocationError(f"argument {number} does not fit in a signed 64-bit integer")
    return number


def invoke_raw(address: int, arity: int, args: Sequence[int], returns: int = 1) -> Result:
    """Call `address` as `int64 f(int64 x arity)` without any checking.

    The caller asserts the shape. Only the ABI limits are checked (at most
    three arguments, one or two results); everything else is trusted.
    """
    cfunc = _prototype(arity, returns)(address)
    return _unpack(cfunc(*args), returns)


class CompiledFunction:
    """Capability handle for one finalized toy function."""

    def __init__(self, name: str, address: int, signature: Signature, owner: "JIT") -> None:
        self.name = name
        self.address = address
        self.signature = signature
        # Holding the owner keeps its execution engine (and our code) alive.
        self._owner = owner
        self._cfunc = None

    @property
    def arity(self) -> int:
        return self.signature.arity

    @property
    def valid(self) -> bool:
        return not self._owner.closed

    def __call__(self, *args: int) -> Result:
        if self._owner.closed:
            raise InvocationError(f"{self.name}: owning JIT has been closed")
        if len(args) != self.signature.arity:
            raise InvocationError(
                f"{self.name} takes {self.signature.arity} arguments, got {len(args)}"
            )
        values = [_to_i64(arg) for arg in args]
        if self._cfunc is None:
            self._cfunc = _prototype(self.signature.arity, self.signature.returns)(self.address)
        return _unpack(self._cfunc(*values), self.signature.returns)

    def __repr__(self) -> str:
        state = "" if self.valid else ", closed"
        return f"<CompiledFunction {self.name}{self.signature} at {self.address:#x}{state}>"

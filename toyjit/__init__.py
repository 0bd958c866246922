"""toyjit: compile a small imperative toy language to native code at runtime."""

from .config import JITOptions
from .errors import (
    CompileError,
    DuplicateDefinition,
    InvocationError,
    LexError,
    ParseError,
    SignatureMismatch,
    UndefinedSymbol,
    UnresolvedExternal,
)
from .invoke import CompiledFunction, Signature, invoke_raw
from .jit import JIT
from .lexer import Token, tokenize
from .parser import parse_function, parse_unit
from .printer import format_unit

__all__ = [
    "JIT",
    "JITOptions",
    "CompiledFunction",
    "Signature",
    "invoke_raw",
    "tokenize",
    "Token",
    "parse_unit",
    "parse_function",
    "format_unit",
    "CompileError",
    "LexError",
    "ParseError",
    "UndefinedSymbol",
    "DuplicateDefinition",
    "SignatureMismatch",
    "UnresolvedExternal",
    "InvocationError",
]

"""Checked error taxonomy for the compile pipeline.

Every `CompileError` is raised before any generated code runs. Invocation
problems that the capability handle can detect are reported separately as
`InvocationError`.
"""

from __future__ import annotations

from typing import Optional, Sequence


class CompileError(Exception):
    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None) -> None:
        if line is not None:
            message = f"{message} at line {line}, column {column}"
        super().__init__(message)
        self.line = line
        self.column = column


class LexError(CompileError):
    def __init__(self, char: str, line: int, column: int, offset: int) -> None:
        super().__init__(f"unexpected character {char!r}", line, column)
        self.char = char
        self.offset = offset


class ParseError(CompileError):
    def __init__(self, expected: Sequence[str], found: str, line: Optional[int], column: Optional[int]) -> None:
        self.expected = sorted(expected)
        self.found = found
        wanted = ", ".join(self.expected) or "<nothing>"
        super().__init__(f"expected one of {wanted}, found {found!r}", line, column)


class UndefinedSymbol(CompileError):
    def __init__(self, name: str, kind: str, line: Optional[int] = None, column: Optional[int] = None) -> None:
        super().__init__(f"undefined {kind} {name!r}", line, column)
        self.name = name
        self.kind = kind


class DuplicateDefinition(CompileError):
    def __init__(self, name: str, detail: str = "already defined") -> None:
        super().__init__(f"{name!r} {detail}")
        self.name = name


class SignatureMismatch(CompileError):
    def __init__(self, name: str, expected: object, found: object, line: Optional[int] = None, column: Optional[int] = None) -> None:
        super().__init__(f"signature mismatch for {name!r}: expected {expected}, found {found}", line, column)
        self.name = name
        self.expected = expected
        self.found = found


class UnresolvedExternal(CompileError):
    def __init__(self, name: str) -> None:
        super().__init__(f"external symbol {name!r} not found in host process")
        self.name = name


class InvocationError(Exception):
    pass

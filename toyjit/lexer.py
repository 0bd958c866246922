"""Token stream for toy sources.

Lexing is done by lark's basic lexer using the terminals from grammar.lark.
`TerminatorInserter` runs as a post-lexer and turns significant NEWLINE/SEMI
tokens into TERMINATOR tokens, so the grammar never sees raw newlines.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from lark import Lark, Token as LarkToken
from lark.exceptions import UnexpectedCharacters

from .errors import LexError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

EOF = "EOF"


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int
    column: int
    offset: int


class TerminatorInserter:
    """Post-lexer deciding which line breaks end a statement.

    A NEWLINE becomes a TERMINATOR only inside a `{ }` block, outside any
    parentheses, and after a token that can end an expression. A SEMI is an
    explicit terminator. No terminator is produced right after `{`, and a
    second one is never queued while one is pending. A pending terminator
    is emitted with the next token unless that token is `}` or `else`, and
    is dropped at the end of the input.
    """

    always_accept = ("NEWLINE", "SEMI")

    TERMINABLE = {
        "NAME",
        "INT",
        "RPAR",
        "RBRACE",
    }

    def process(self, stream):
        paren_depth = 0
        brace_depth = 0
        can_terminate = False
        last_type: Optional[str] = None
        pending: Optional[LarkToken] = None
        for token in stream:
            ttype = token.type
            if ttype == "NEWLINE" or (ttype == "SEMI" and paren_depth == 0):
                explicit = ttype == "SEMI"
                if (
                    pending is None
                    and brace_depth
                    and not paren_depth
                    and last_type not in (None, "LBRACE")
                    and (explicit or can_terminate)
                ):
                    pending = LarkToken.new_borrow_pos("TERMINATOR", token.value, token)
                can_terminate = False
                continue
            if pending is not None:
                if ttype not in ("RBRACE", "ELSE"):
                    yield pending
                pending = None
            yield token
            if ttype == "LPAR":
                paren_depth += 1
            elif ttype == "RPAR" and paren_depth:
                paren_depth -= 1
            elif ttype == "LBRACE":
                brace_depth += 1
            elif ttype == "RBRACE" and brace_depth:
                brace_depth -= 1
            can_terminate = ttype in self.TERMINABLE
            last_type = ttype


_LARK = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    lexer="basic",
    start="unit",
    propagate_positions=True,
    maybe_placeholders=False,
    postlex=TerminatorInserter(),
)


def tokenize(source: str) -> Iterator[Token]:
    """Lazily yield the tokens of `source`, ending with a single EOF token."""
    stream = _LARK.lex(source)
    try:
        for tok in stream:
            yield Token(kind=tok.type, text=str(tok), line=tok.line, column=tok.column, offset=tok.start_pos)
    except UnexpectedCharacters as exc:
        raise lex_error(exc, source) from None
    line = source.count("\n") + 1
    column = len(source) - (source.rfind("\n") + 1) + 1
    yield Token(kind=EOF, text="", line=line, column=column, offset=len(source))


def lex_error(exc: UnexpectedCharacters, source: str) -> LexError:
    offset = exc.pos_in_stream
    char = getattr(exc, "char", None) or source[offset : offset + 1]
    return LexError(char, exc.line, exc.column, offset)

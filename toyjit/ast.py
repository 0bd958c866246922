from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class Located:
    line: int
    column: int


NOWHERE = Located(line=0, column=0)


class Expr:
    loc: Located


@dataclass
class Literal(Expr):
    value: int
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class VarRef(Expr):
    name: str
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class DataRef(Expr):
    """`&name`: address of a registered data object."""

    name: str
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class BinaryOp(Expr):
    op: str
    lhs: Expr
    rhs: Expr
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class Call(Expr):
    name: str
    args: List[Expr]
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class Assign(Expr):
    name: str
    value: Expr
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class Block:
    statements: List[Expr]
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class If(Expr):
    cond: Expr
    then_block: Block
    # `else if` chains keep the nested If here instead of wrapping it in a Block.
    else_block: Optional[Union[Block, "If"]] = None
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class While(Expr):
    cond: Expr
    body: Block
    loc: Located = field(default=NOWHERE, compare=False, repr=False)


@dataclass
class Function:
    name: str
    params: List[str]
    returns: List[str]
    body: Block
    loc: Located = field(default=NOWHERE, compare=False, repr=False)

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass
class Unit:
    functions: List[Function]

    def function(self, name: str) -> Function:
        for fn in self.functions:
            if fn.name == name:
                return fn
        raise KeyError(name)


def assigned_names(block: Block) -> List[str]:
    """Names assigned anywhere in `block`, in first-assignment order."""
    seen: dict[str, None] = {}
    stack: List[object] = list(reversed(block.statements))
    while stack:
        node = stack.pop()
        if isinstance(node, Assign):
            seen.setdefault(node.name, None)
            stack.append(node.value)
        elif isinstance(node, If):
            if node.else_block is not None:
                stack.append(node.else_block)
            stack.append(node.then_block)
            stack.append(node.cond)
        elif isinstance(node, While):
            stack.append(node.body)
            stack.append(node.cond)
        elif isinstance(node, Block):
            stack.extend(reversed(node.statements))
        elif isinstance(node, BinaryOp):
            stack.append(node.rhs)
            stack.append(node.lhs)
        elif isinstance(node, Call):
            stack.extend(reversed(node.args))
    return list(seen)

from __future__ import annotations

from typing import List, Optional, Union

from lark import Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedToken

from .ast import (
    Assign,
    BinaryOp,
    Block,
    Call,
    DataRef,
    Expr,
    Function,
    If,
    Literal,
    Located,
    Unit,
    VarRef,
    While,
)
from .errors import CompileError, ParseError
from .lexer import EOF, _LARK, lex_error


def parse_unit(source: str) -> Unit:
    """Parse a compilation unit (zero or more `fn` definitions)."""
    try:
        tree = _LARK.parse(source)
    except UnexpectedCharacters as exc:
        raise lex_error(exc, source) from None
    except UnexpectedToken as exc:
        raise _parse_error(exc.expected, exc.token, exc.line, exc.column) from None
    except UnexpectedEOF as exc:
        line = source.count("\n") + 1
        column = len(source) - (source.rfind("\n") + 1) + 1
        raise ParseError(_kinds(exc.expected), EOF, line, column) from None
    except RecursionError:
        raise CompileError("source is nested too deeply to parse") from None
    try:
        return _build_unit(tree)
    except RecursionError:
        raise CompileError("source is nested too deeply to parse") from None


def parse_function(source: str) -> Function:
    unit = parse_unit(source)
    if len(unit.functions) != 1:
        raise ParseError(["FN"], f"{len(unit.functions)} functions", None, None)
    return unit.functions[0]


def _parse_error(expected, token: Token, line, column) -> ParseError:
    found = EOF if token.type == "$END" else str(token)
    if line is None or line < 0:
        line = getattr(token, "line", None)
        column = getattr(token, "column", None)
    return ParseError(_kinds(expected), found, line, column)


def _kinds(expected) -> List[str]:
    return sorted({EOF if kind == "$END" else kind for kind in expected})


def _build_unit(tree: Tree) -> Unit:
    functions = [_build_function(child) for child in tree.children if isinstance(child, Tree)]
    return Unit(functions=functions)


def _build_function(tree: Tree) -> Function:
    children = list(tree.children)
    name_token = children[0]
    params: List[str] = []
    returns: List[str] = []
    body: Optional[Block] = None
    for child in children[1:]:
        kind = _name(child)
        if kind == "params":
            params = _names(child)
        elif kind == "returns":
            returns = _names(child)
        elif kind == "block":
            body = _build_block(child)
    if body is None:
        raise ValueError("function missing body")
    return Function(name=name_token.value, params=params, returns=returns, body=body, loc=_loc(tree))


def _names(tree: Tree) -> List[str]:
    return [child.value for child in tree.children if isinstance(child, Token) and child.type == "NAME"]


def _build_block(tree: Tree) -> Block:
    statements = [_build_expr(child) for child in tree.children if isinstance(child, Tree)]
    return Block(statements=statements, loc=_loc(tree))


def _build_if(tree: Tree) -> If:
    parts = [child for child in tree.children if isinstance(child, Tree)]
    if len(parts) < 2:
        raise ValueError("malformed if expression")
    cond = _build_expr(parts[0])
    then_block = _build_block(parts[1])
    else_block: Optional[Union[Block, If]] = None
    if len(parts) > 2:
        tail = parts[2]
        else_block = _build_if(tail) if _name(tail) == "if_expr" else _build_block(tail)
    return If(cond=cond, then_block=then_block, else_block=else_block, loc=_loc(tree))


def _build_expr(node) -> Expr:
    if not isinstance(node, Tree):
        raise TypeError(f"Unexpected node type: {type(node)}")
    name = _name(node)
    if name == "assign":
        name_token = node.children[0]
        value = _build_expr(node.children[1])
        return Assign(name=name_token.value, value=value, loc=_loc(node))
    if name == "if_expr":
        return _build_if(node)
    if name == "while_loop":
        parts = [child for child in node.children if isinstance(child, Tree)]
        return While(cond=_build_expr(parts[0]), body=_build_block(parts[1]), loc=_loc(node))
    if name == "comparison":
        return _fold_chain(node, "comparison_tail")
    if name == "sum":
        return _fold_chain(node, "sum_tail")
    if name == "term":
        return _fold_chain(node, "term_tail")
    if name == "int_lit":
        return Literal(value=int(node.children[0].value), loc=_loc(node))
    if name == "var":
        return VarRef(name=node.children[0].value, loc=_loc(node))
    if name == "data_ref":
        token = next(child for child in node.children if isinstance(child, Token) and child.type == "NAME")
        return DataRef(name=token.value, loc=_loc(node))
    if name == "call":
        return _build_call(node)
    raise ValueError(f"Unsupported expression node: {name}")


def _build_call(tree: Tree) -> Call:
    name_token = tree.children[0]
    args: List[Expr] = []
    for child in tree.children[1:]:
        if isinstance(child, Tree) and _name(child) == "args":
            args = [_build_expr(arg) for arg in child.children if isinstance(arg, Tree)]
    return Call(name=name_token.value, args=args, loc=_loc(tree))


def _fold_chain(tree: Tree, tail_name: str) -> Expr:
    child_nodes = [child for child in tree.children if isinstance(child, Tree)]
    result = _build_expr(child_nodes[0])
    for child in child_nodes[1:]:
        if _name(child) != tail_name:
            continue
        result = _binary_tail(result, child)
    return result


def _binary_tail(left: Expr, tail: Tree) -> BinaryOp:
    op_token = tail.children[0]
    right = _build_expr(tail.children[1])
    return BinaryOp(op=op_token.value, lhs=left, rhs=right, loc=_loc_from_token(op_token))


def _loc(tree: Tree) -> Located:
    meta = tree.meta
    if getattr(meta, "empty", True):
        return Located(line=0, column=0)
    return Located(line=meta.line, column=meta.column)


def _loc_from_token(token: Token) -> Located:
    return Located(line=token.line, column=token.column)


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    if isinstance(node, Token):
        return node.type
    return str(node)

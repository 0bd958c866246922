from __future__ import annotations

from typing import List

from . import ast

_PRECEDENCE = {
    "==": 1,
    "!=": 1,
    "<": 1,
    "<=": 1,
    ">": 1,
    ">=": 1,
    "+": 2,
    "-": 2,
    "*": 3,
    "/": 3,
}

INDENT = "    "


def format_expr(expr: ast.Expr, level: int = 0) -> str:
    if isinstance(expr, ast.Literal):
        return str(expr.value)
    if isinstance(expr, ast.VarRef):
        return expr.name
    if isinstance(expr, ast.DataRef):
        return f"&{expr.name}"
    if isinstance(expr, ast.Call):
        args = ", ".join(format_expr(arg, level) for arg in expr.args)
        return f"{expr.name}({args})"
    if isinstance(expr, ast.BinaryOp):
        return _format_binary(expr, level)
    if isinstance(expr, ast.Assign):
        return f"{expr.name} = {format_expr(expr.value, level)}"
    if isinstance(expr, ast.If):
        return _format_if(expr, level)
    if isinstance(expr, ast.While):
        return f"while {format_expr(expr.cond, level)} {format_block(expr.body, level)}"
    raise TypeError(f"cannot format {type(expr).__name__}")


def _format_binary(expr: ast.BinaryOp, level: int) -> str:
    # Walk the unparenthesized left spine iteratively; chains are left-deep.
    spine: List[ast.BinaryOp] = [expr]
    node = expr.lhs
    while isinstance(node, ast.BinaryOp) and not _binds_looser(node, _PRECEDENCE[spine[-1].op], strict=True):
        spine.append(node)
        node = node.lhs
    text = format_expr(node, level)
    if isinstance(node, ast.BinaryOp):
        text = f"({text})"
    for op_node in reversed(spine):
        rhs = format_expr(op_node.rhs, level)
        # Operators are left-associative: the right operand needs parens on ties.
        if _binds_looser(op_node.rhs, _PRECEDENCE[op_node.op], strict=False):
            rhs = f"({rhs})"
        text = f"{text} {op_node.op} {rhs}"
    return text


def _binds_looser(expr: ast.Expr, prec: int, strict: bool) -> bool:
    if not isinstance(expr, ast.BinaryOp):
        return False
    child = _PRECEDENCE[expr.op]
    return child < prec if strict else child <= prec


def _format_if(expr: ast.If, level: int) -> str:
    text = f"if {format_expr(expr.cond, level)} {format_block(expr.then_block, level)}"
    if isinstance(expr.else_block, ast.If):
        text += f" else {_format_if(expr.else_block, level)}"
    elif expr.else_block is not None:
        text += f" else {format_block(expr.else_block, level)}"
    return text


def format_block(block: ast.Block, level: int = 0) -> str:
    if not block.statements:
        return "{}"
    inner = INDENT * (level + 1)
    lines: List[str] = ["{"]
    for stmt in block.statements:
        lines.append(f"{inner}{format_expr(stmt, level + 1)}")
    lines.append(f"{INDENT * level}}}")
    return "\n".join(lines)


def format_function(fn: ast.Function) -> str:
    params = ", ".join(fn.params)
    returns = ", ".join(fn.returns)
    return f"fn {fn.name}({params}) -> ({returns}) {format_block(fn.body)}"


def format_unit(unit: ast.Unit) -> str:
    return "\n\n".join(format_function(fn) for fn in unit.functions) + "\n"

"""AST -> llvmlite IR lowering for one toy function.

Every toy value is an i64. Statements are expressions: an assignment yields
the assigned value, `if` yields the value of the last statement of the
branch taken (0 for an empty or missing branch), `while` yields 0.
Comparisons yield 0/1 and conditions test `!= 0`.
"""

from __future__ import annotations

import logging
from typing import List, Protocol

from llvmlite import ir  # type: ignore

from . import ast
from .ast import assigned_names
from .errors import CompileError, DuplicateDefinition, UndefinedSymbol
from .ssa_env import SSAEnv

logger = logging.getLogger(__name__)

I64 = ir.IntType(64)
ZERO = ir.Constant(I64, 0)
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1

_ARITH = {
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "sdiv",
}
_COMPARE = {"==", "!=", "<", "<=", ">", ">="}


def function_type(arity: int, returns: int = 1) -> ir.FunctionType:
    ret_ty: ir.Type = I64 if returns == 1 else ir.LiteralStructType([I64] * returns)
    return ir.FunctionType(ret_ty, [I64] * arity)


class SymbolResolver(Protocol):
    def resolve_function(self, name: str, arity: int, loc: ast.Located) -> ir.Function: ...

    def resolve_data(self, name: str, loc: ast.Located) -> ir.GlobalVariable: ...


class FunctionTranslator:
    """Lower `fn` into the body of `llvm_fn`.

    `llvm_fn` must be a declaration (no blocks) whose type matches the
    function's arity and return count. Call targets and `&data` references
    go through `resolver`, which owns the module's symbol table.
    """

    def __init__(self, llvm_fn: ir.Function, fn: ast.Function, resolver: SymbolResolver) -> None:
        self.llvm_fn = llvm_fn
        self.fn = fn
        self.resolver = resolver
        self.env = SSAEnv(ty=I64)
        self.builder: ir.IRBuilder | None = None
        self._if_counter = 0

    def translate(self) -> ir.Function:
        fn = self.fn
        if self.llvm_fn.blocks:
            raise DuplicateDefinition(fn.name, "already has a body")
        entry = self.llvm_fn.append_basic_block(name="entry")
        self.builder = ir.IRBuilder(entry)
        self.env.seal_block(entry)

        for param, arg in zip(fn.params, self.llvm_fn.args):
            if self.env.is_declared(param):
                raise DuplicateDefinition(param, f"declared twice as a parameter of {fn.name!r}")
            arg.name = param
            self.env.declare(param)
            self.env.def_var(param, entry, arg)
        # Return names and every assigned local start out as 0.
        for name in [*fn.returns, *assigned_names(fn.body)]:
            if not self.env.is_declared(name):
                self.env.declare(name)
                self.env.def_var(name, entry, ZERO)

        self._block(fn.body)

        builder = self.builder
        values = [self._read(name) for name in fn.returns]
        if len(values) == 1:
            builder.ret(values[0])
        else:
            agg = ir.Constant(self.llvm_fn.ftype.return_type, ir.Undefined)
            for idx, value in enumerate(values):
                agg = builder.insert_value(agg, value, idx)
            builder.ret(agg)
        pending = self.env.unsealed()
        if pending:
            raise RuntimeError(f"{len(pending)} unsealed blocks left in {fn.name}")
        logger.debug("translated %s (%d blocks)", fn.name, len(self.llvm_fn.blocks))
        return self.llvm_fn

    # --- statements / blocks -------------------------------------------

    def _block(self, block: ast.Block) -> ir.Value:
        value: ir.Value = ZERO
        for stmt in block.statements:
            value = self._expr(stmt)
        return value

    def _expr(self, expr: ast.Expr) -> ir.Value:
        builder = self.builder
        if isinstance(expr, ast.Literal):
            if not I64_MIN <= expr.value <= I64_MAX:
                raise CompileError(f"integer literal {expr.value} does not fit in 64 bits", expr.loc.line, expr.loc.column)
            return ir.Constant(I64, expr.value)
        if isinstance(expr, ast.VarRef):
            return self._use(expr.name, expr.loc)
        if isinstance(expr, ast.DataRef):
            gv = self.resolver.resolve_data(expr.name, expr.loc)
            return builder.ptrtoint(gv, I64, name=f"{expr.name}.addr")
        if isinstance(expr, ast.BinaryOp):
            return self._binary(expr)
        if isinstance(expr, ast.Call):
            callee = self.resolver.resolve_function(expr.name, len(expr.args), expr.loc)
            args = [self._expr(arg) for arg in expr.args]
            return builder.call(callee, args, name=f"{expr.name}.ret")
        if isinstance(expr, ast.Assign):
            value = self._expr(expr.value)
            self.env.def_var(expr.name, builder.block, value)
            return value
        if isinstance(expr, ast.If):
            return self._if(expr)
        if isinstance(expr, ast.While):
            return self._while(expr)
        raise TypeError(f"unsupported node {type(expr).__name__}")

    def _use(self, name: str, loc: ast.Located) -> ir.Value:
        if not self.env.is_declared(name):
            raise UndefinedSymbol(name, "variable", loc.line, loc.column)
        return self._read(name)

    def _read(self, name: str) -> ir.Value:
        block = self.builder.block
        value = self.env.use_var(name, block)
        # A read may insert phis at the top of the current block; keep
        # appending after them.
        self.builder.position_at_end(block)
        return value

    def _binary(self, expr: ast.BinaryOp) -> ir.Value:
        # Chains are left-deep; walk the left spine iteratively.
        spine: List[ast.BinaryOp] = []
        node: ast.Expr = expr
        while isinstance(node, ast.BinaryOp):
            spine.append(node)
            node = node.lhs
        value = self._expr(node)
        for op_node in reversed(spine):
            value = self._apply(op_node.op, value, self._expr(op_node.rhs))
        return value

    def _apply(self, op: str, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        builder = self.builder
        if op in _ARITH:
            return getattr(builder, _ARITH[op])(lhs, rhs)
        if op in _COMPARE:
            flag = builder.icmp_signed(op, lhs, rhs)
            return builder.zext(flag, I64)
        raise NotImplementedError(f"binary op {op}")

    def _truthy(self, cond: ast.Expr) -> ir.Value:
        value = self._expr(cond)
        return self.builder.icmp_signed("!=", value, ZERO)

    def _jump(self, target: ir.Block) -> None:
        self.env.add_predecessor(target, self.builder.block)
        self.builder.branch(target)

    # --- control flow --------------------------------------------------

    def _if(self, expr: ast.If) -> ir.Value:
        builder = self.builder
        env = self.env
        # The if's value travels to the merge block as a hidden binding so the
        # SSA env builds the phi like for any other name.
        result = f"if.{self._if_counter}"
        self._if_counter += 1
        env.declare(result)

        flag = self._truthy(expr.cond)
        then_bb = self.llvm_fn.append_basic_block(name="then")
        else_bb = self.llvm_fn.append_basic_block(name="else")
        merge_bb = self.llvm_fn.append_basic_block(name="merge")
        env.add_predecessor(then_bb, builder.block)
        env.add_predecessor(else_bb, builder.block)
        builder.cbranch(flag, then_bb, else_bb)
        env.seal_block(then_bb)
        env.seal_block(else_bb)

        builder.position_at_end(then_bb)
        then_value = self._block(expr.then_block)
        env.def_var(result, builder.block, then_value)
        self._jump(merge_bb)

        builder.position_at_end(else_bb)
        if isinstance(expr.else_block, ast.If):
            else_value = self._if(expr.else_block)
        elif expr.else_block is not None:
            else_value = self._block(expr.else_block)
        else:
            else_value = ZERO
        env.def_var(result, builder.block, else_value)
        self._jump(merge_bb)

        env.seal_block(merge_bb)
        builder.position_at_end(merge_bb)
        return self._read(result)

    def _while(self, expr: ast.While) -> ir.Value:
        builder = self.builder
        env = self.env
        header_bb = self.llvm_fn.append_basic_block(name="while.header")
        body_bb = self.llvm_fn.append_basic_block(name="while.body")
        exit_bb = self.llvm_fn.append_basic_block(name="while.exit")
        self._jump(header_bb)

        builder.position_at_end(header_bb)
        flag = self._truthy(expr.cond)
        env.add_predecessor(body_bb, builder.block)
        env.add_predecessor(exit_bb, builder.block)
        builder.cbranch(flag, body_bb, exit_bb)
        env.seal_block(body_bb)

        builder.position_at_end(body_bb)
        self._block(expr.body)
        self._jump(header_bb)

        # The back edge is known now; header phis can be completed.
        env.seal_block(header_bb)
        env.seal_block(exit_bb)
        builder.position_at_end(exit_bb)
        return ZERO


def translate_function(llvm_fn: ir.Function, fn: ast.Function, resolver: SymbolResolver) -> ir.Function:
    return FunctionTranslator(llvm_fn, fn, resolver).translate()

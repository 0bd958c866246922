from __future__ import annotations

import re

import pytest

pytest.importorskip("llvmlite")

from llvmlite import binding as llvm  # type: ignore
from llvmlite import ir  # type: ignore

from toyjit.errors import CompileError, DuplicateDefinition, UndefinedSymbol
from toyjit.parser import parse_unit
from toyjit.ssa_env import SSAEnv
from toyjit.translate import I64, function_type, translate_function


class _ModuleResolver:
    """Resolves every callee to a declaration in the same module."""

    def __init__(self, module: ir.Module, data: dict[str, bytes] | None = None) -> None:
        self.module = module
        self.data = data or {}

    def resolve_function(self, name, arity, loc):
        existing = self.module.globals.get(name)
        if existing is not None:
            return existing
        return ir.Function(self.module, function_type(arity), name=name)

    def resolve_data(self, name, loc):
        if name not in self.data:
            raise UndefinedSymbol(name, "data", loc.line, loc.column)
        existing = self.module.globals.get(name)
        if existing is not None:
            return existing
        return ir.GlobalVariable(self.module, ir.ArrayType(ir.IntType(8), len(self.data[name])), name=name)


def _lower(source: str, data: dict[str, bytes] | None = None) -> ir.Module:
    module = ir.Module(name="translate_test")
    unit = parse_unit(source)
    for fn in unit.functions:
        ir.Function(module, function_type(len(fn.params), len(fn.returns)), name=fn.name)
    resolver = _ModuleResolver(module, data)
    for fn in unit.functions:
        translate_function(module.get_global(fn.name), fn, resolver)
    return module


def _verify(module: ir.Module) -> str:
    text = str(module)
    llvm.parse_assembly(text).verify()
    return text


def test_straight_line_arithmetic() -> None:
    text = _verify(_lower("fn f(a, b) -> (r) { r = (a + b) * (a - b) / 2 }"))
    assert "define i64 @\"f\"(i64 %\"a\", i64 %\"b\")" in text
    for op in ("add i64", "sub i64", "mul i64", "sdiv i64"):
        assert op in text


def test_comparison_is_zero_extended() -> None:
    text = _verify(_lower("fn f(a, b) -> (r) { r = a <= b }"))
    assert "icmp sle i64" in text
    assert "zext i1" in text


def test_if_merges_through_phi() -> None:
    text = _verify(_lower("fn f(a) -> (r) { r = if a { 1 } else { 2 } }"))
    assert "icmp ne i64" in text
    assert re.search(r"phi\s+i64", text)
    assert "br i1" in text


def test_loop_header_phi() -> None:
    text = _verify(_lower("fn sum(n) -> (t) {\n    t = 0\n    while n > 0 {\n        t = t + n\n        n = n - 1\n    }\n}"))
    assert "while.header" in text
    assert len(re.findall(r"phi\s+i64", text)) >= 2


def test_calls_are_declared() -> None:
    text = _verify(_lower("fn f(x) -> (r) { r = ext(x, 1) + f(x) }"))
    assert 'declare i64 @"ext"(i64' in text
    assert "call i64 @\"f\"" in text


def test_data_reference_is_pointer_to_int() -> None:
    text = _verify(_lower("fn f() -> (r) { r = &msg }", data={"msg": b"hi\0"}))
    assert "ptrtoint" in text
    assert "[3 x i8]" in text


def test_multiple_returns_use_struct() -> None:
    text = _verify(_lower("fn pair(a) -> (x, y) { x = a; y = a + 1 }"))
    assert "{i64, i64}" in text
    assert "insertvalue" in text


def test_unassigned_return_defaults_to_zero() -> None:
    text = _verify(_lower("fn f() -> (r) { 1 }"))
    assert "ret i64 0" in text


def _phis_lead_blocks(fn: ir.Function) -> bool:
    for block in fn.blocks:
        kinds = [isinstance(instr, ir.PhiInstr) for instr in block.instructions]
        if kinds != sorted(kinds, reverse=True):
            return False
    return True


def test_if_without_else_then_return_verifies() -> None:
    module = _lower("fn f(a) -> (r) {\n    if a { r = r + 1 }\n}")
    text = _verify(module)
    assert "merge" in text
    assert _phis_lead_blocks(module.get_global("f"))


def test_loop_header_phis_precede_condition() -> None:
    module = _lower("fn g(n) -> (r) {\n    while n > 0 { n = n - 1; r = r + 2 }\n}")
    _verify(module)
    assert _phis_lead_blocks(module.get_global("g"))


def test_nested_control_flow_verifies() -> None:
    source = (
        "fn h(a, b) -> (r) {\n"
        "    while a > 0 {\n"
        "        if b { r = r + a } else if a == 3 { r = r * 2 }\n"
        "        a = a - 1\n"
        "    }\n"
        "    r = if r > 10 { r } else { 0 - r }\n"
        "}"
    )
    module = _lower(source)
    _verify(module)
    assert _phis_lead_blocks(module.get_global("h"))


def test_long_left_chain_lowers_without_recursion() -> None:
    terms = " + ".join(["1"] * 1500)
    text = _verify(_lower(f"fn f() -> (r) {{ r = {terms} }}"))
    assert text.count("add i64") == 1499


def test_undefined_variable() -> None:
    with pytest.raises(UndefinedSymbol) as info:
        _lower("fn f() -> (r) {\n    r = missing + 1\n}")
    assert info.value.kind == "variable"
    assert info.value.line == 2


def test_undefined_data() -> None:
    with pytest.raises(UndefinedSymbol) as info:
        _lower("fn f() -> (r) { r = &nothing }")
    assert info.value.kind == "data"


def test_duplicate_parameter() -> None:
    with pytest.raises(DuplicateDefinition):
        _lower("fn f(a, a) -> (r) { r = a }")


def test_literal_out_of_range() -> None:
    with pytest.raises(CompileError):
        _lower("fn f() -> (r) { r = 9223372036854775808 }")


def test_ssa_env_builds_phi_for_diamond() -> None:
    fn = ir.Function(ir.Module(), ir.FunctionType(I64, [I64]), name="diamond")
    entry, left, right, merge = (fn.append_basic_block(name) for name in ("entry", "left", "right", "merge"))
    env = SSAEnv(ty=I64)
    env.declare("x")
    env.seal_block(entry)
    env.def_var("x", entry, fn.args[0])
    for block in (left, right):
        env.add_predecessor(block, entry)
        env.seal_block(block)
        env.add_predecessor(merge, block)
    env.def_var("x", left, ir.Constant(I64, 1))
    env.seal_block(merge)
    value = env.use_var("x", merge)
    assert isinstance(value, ir.PhiInstr)
    # Reading from `right` falls through to the entry definition.
    assert env.use_var("x", right) is fn.args[0]
    assert env.unsealed() == []


def test_ssa_env_completes_incomplete_phi_on_seal() -> None:
    fn = ir.Function(ir.Module(), ir.FunctionType(I64, []), name="loop")
    entry, header, body = (fn.append_basic_block(name) for name in ("entry", "header", "body"))
    env = SSAEnv(ty=I64)
    env.declare("i")
    env.seal_block(entry)
    env.def_var("i", entry, ir.Constant(I64, 0))
    env.add_predecessor(header, entry)
    phi = env.use_var("i", header)
    assert env.incomplete
    env.add_predecessor(header, body)
    env.def_var("i", body, ir.Constant(I64, 5))
    env.seal_block(header)
    assert not env.incomplete
    assert len(phi.incomings) == 2


def test_ssa_env_rejects_undeclared_and_late_predecessors() -> None:
    fn = ir.Function(ir.Module(), ir.FunctionType(I64, []), name="f")
    entry = fn.append_basic_block("entry")
    env = SSAEnv(ty=I64)
    with pytest.raises(UndefinedSymbol):
        env.use_var("ghost", entry)
    env.seal_block(entry)
    with pytest.raises(RuntimeError):
        env.add_predecessor(entry, fn.append_basic_block("other"))

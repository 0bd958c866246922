from __future__ import annotations

from pathlib import Path

import pytest

from toyjit.ast import (
    Assign,
    BinaryOp,
    Block,
    Call,
    DataRef,
    Function,
    If,
    Literal,
    VarRef,
    While,
    assigned_names,
)
from toyjit.errors import CompileError, LexError, ParseError
from toyjit.parser import parse_function, parse_unit
from toyjit.printer import format_expr, format_unit

PROGRAMS = Path(__file__).parent / "programs"


def _body(source: str) -> list:
    return parse_function(source).body.statements


def test_parse_foo_structure() -> None:
    fn = parse_function((PROGRAMS / "foo.toy").read_text())
    inner = If(cond=VarRef("b"), then_block=Block([Literal(30)]), else_block=Block([Literal(40)]))
    outer = If(cond=VarRef("a"), then_block=Block([inner]), else_block=Block([Literal(50)]))
    assert fn == Function(
        name="foo",
        params=["a", "b"],
        returns=["c"],
        body=Block([
            Assign("c", outer),
            Assign("c", BinaryOp("+", VarRef("c"), Literal(2))),
        ]),
    )
    assert fn.arity == 2


def test_precedence_and_left_associativity() -> None:
    (stmt,) = _body("fn f() -> (r) { r = 1 + 2 * 3 - 4 / 2 }")
    assert stmt.value == BinaryOp(
        "-",
        BinaryOp("+", Literal(1), BinaryOp("*", Literal(2), Literal(3))),
        BinaryOp("/", Literal(4), Literal(2)),
    )


def test_comparison_binds_loosest() -> None:
    (stmt,) = _body("fn f(a, b) -> (r) { r = a < b + 1 }")
    assert stmt.value == BinaryOp("<", VarRef("a"), BinaryOp("+", VarRef("b"), Literal(1)))


def test_parenthesized_expression() -> None:
    (stmt,) = _body("fn f(a, b) -> (r) { r = (a - b) - (a - b) }")
    diff = BinaryOp("-", VarRef("a"), VarRef("b"))
    assert stmt.value == BinaryOp("-", diff, diff)


def test_calls_data_refs_and_statements() -> None:
    stmts = _body("fn f() -> (r) {\n    puts(&greeting)\n    r = g(1, h())\n}")
    assert stmts == [
        Call("puts", [DataRef("greeting")]),
        Assign("r", Call("g", [Literal(1), Call("h", [])])),
    ]


def test_else_if_chain_and_while() -> None:
    source = (
        "fn f(x) -> (r) {\n"
        "    while x > 0 { x = x - 1 }\n"
        "    if x == 0 { r = 1 } else if x == 1 { r = 2 } else { r = 3 }\n"
        "}"
    )
    loop, branch = _body(source)
    assert isinstance(loop, While)
    assert loop.cond == BinaryOp(">", VarRef("x"), Literal(0))
    assert isinstance(branch.else_block, If)
    assert branch.else_block.else_block == Block([Assign("r", Literal(3))])


def test_multiple_returns_and_empty_params() -> None:
    fn = parse_function("fn pair() -> (a, b) { a = 1; b = 2 }")
    assert fn.params == [] and fn.returns == ["a", "b"]


def test_unit_with_several_functions() -> None:
    unit = parse_unit((PROGRAMS / "fib.toy").read_text())
    assert [fn.name for fn in unit.functions] == ["recursive_fib", "iterative_fib"]
    assert unit.function("iterative_fib").params == ["n"]
    assert parse_unit("").functions == []


def test_positions_are_recorded() -> None:
    fn = parse_function("fn f() -> (r) {\n    r = 1\n}")
    assign = fn.body.statements[0]
    assert (assign.loc.line, assign.loc.column) == (2, 5)


def test_assigned_names_in_order() -> None:
    fn = parse_function((PROGRAMS / "fib.toy").read_text().split("\n\n")[1])
    assert assigned_names(fn.body) == ["r", "n", "a", "t"]


def test_parse_error_expected_and_found() -> None:
    with pytest.raises(ParseError) as info:
        parse_unit("fn f( -> (r) {}")
    err = info.value
    assert err.found == "->"
    assert "NAME" in err.expected and "RPAR" in err.expected
    assert err.expected == sorted(err.expected)
    assert (err.line, err.column) == (1, 7)


def test_parse_error_at_eof() -> None:
    with pytest.raises(ParseError) as info:
        parse_unit("fn f() -> (r) {")
    assert info.value.found == "EOF"
    assert "RBRACE" in info.value.expected


def test_missing_terminator_is_parse_error() -> None:
    with pytest.raises(ParseError) as info:
        parse_unit("fn f() -> (r) { r = 1 r = 2 }")
    assert info.value.found == "r"
    assert "TERMINATOR" in info.value.expected


def test_empty_return_list_rejected() -> None:
    with pytest.raises(ParseError):
        parse_unit("fn f() -> () {}")


def test_lex_error_surfaces_through_parser() -> None:
    with pytest.raises(LexError):
        parse_unit("fn f() -> (r) { r = 1 # }")


def test_parse_function_requires_single_function() -> None:
    with pytest.raises(ParseError):
        parse_function("fn a() -> (r) {}\nfn b() -> (r) {}")


@pytest.mark.parametrize("path", sorted(PROGRAMS.glob("*.toy")), ids=lambda p: p.name)
def test_print_then_reparse_is_identity(path: Path) -> None:
    unit = parse_unit(path.read_text())
    printed = format_unit(unit)
    assert parse_unit(printed) == unit
    # Printing is canonical: a second pass is stable.
    assert format_unit(parse_unit(printed)) == printed


def test_printer_parenthesizes_by_precedence() -> None:
    expr = BinaryOp("*", BinaryOp("+", VarRef("a"), Literal(1)), BinaryOp("-", VarRef("b"), VarRef("c")))
    assert format_expr(expr) == "(a + 1) * (b - c)"
    right_nested = BinaryOp("-", VarRef("a"), BinaryOp("-", VarRef("b"), VarRef("c")))
    assert format_expr(right_nested) == "a - (b - c)"


def test_long_chain_parses_and_prints() -> None:
    terms = " - ".join(str(n) for n in range(1500))
    unit = parse_unit(f"fn f() -> (r) {{ r = {terms} }}")
    printed = format_unit(unit)
    assert f"r = {terms}" in printed
    assert format_unit(parse_unit(printed)) == printed


def test_deep_nesting_is_compile_error() -> None:
    depth = 3000
    nested = "1 - (" * depth + "1" + ")" * depth
    with pytest.raises(CompileError):
        parse_unit(f"fn deep() -> (r) {{ r = {nested} }}")

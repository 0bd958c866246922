"""Module manager: symbol table, compilation units and MCJIT finalization.

A `JIT` owns one llvmlite MCJIT execution engine and a module-wide symbol
table. Work happens in *units*: `declare`/`define` stage functions into a
pending `ir.Module`, and `finalize_all` hands that module to the engine and
returns a `CompiledFunction` per defined function. A unit either finalizes
completely or is discarded completely: symbol changes made while it was
pending are rolled back, and no handle for any of its functions escapes.

Data objects are not part of a unit. `create_data` finalizes each one into a
module of its own right away, and units reference it as an external global
that MCJIT links across modules. Functions finalized by an earlier unit are
referenced the same way.

Calls to names with no local definition link against the host process
(`llvmlite.binding.address_of_symbol`, plus anything added through
`register_symbol`). Missing host symbols are detected before the module is
given to MCJIT, which would otherwise abort the process.

Not thread-safe: serialize declare/define/finalize on one instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Union

from llvmlite import binding as llvm  # type: ignore
from llvmlite import ir  # type: ignore

from . import ast
from .config import JITOptions
from .errors import (
    CompileError,
    DuplicateDefinition,
    InvocationError,
    SignatureMismatch,
    UndefinedSymbol,
    UnresolvedExternal,
)
from .invoke import CompiledFunction, Signature
from .parser import parse_unit
from .translate import function_type, translate_function

logger = logging.getLogger(__name__)

DECLARED = "declared"
DEFINED = "defined"
FINALIZED = "finalized"
IMPORTED = "imported"

_I8 = ir.IntType(8)
_native_ready = False


def _init_native() -> None:
    global _native_ready
    if _native_ready:
        return
    llvm.initialize_native_target()
    llvm.initialize_native_asmprinter()
    _native_ready = True


@dataclass
class FunctionSymbol:
    name: str
    signature: Signature
    kind: str = DECLARED
    address: Optional[int] = None


@dataclass(frozen=True)
class DataSymbol:
    name: str
    content: bytes
    address: int


Symbol = Union[FunctionSymbol, DataSymbol]


class _PendingUnit:
    def __init__(self, module: ir.Module, symbols: Dict[str, FunctionSymbol]) -> None:
        self.module = module
        self.symbols = symbols
        self.defined: List[str] = []


class _UnitResolver:
    """Resolves call targets and `&data` for one pending unit."""

    def __init__(self, jit: "JIT", unit: _PendingUnit) -> None:
        self.jit = jit
        self.unit = unit

    def resolve_function(self, name: str, arity: int, loc: ast.Located) -> ir.Function:
        sym = self.unit.symbols.get(name)
        if sym is None:
            if name in self.jit._data:
                raise SignatureMismatch(name, "a function", "a data object", loc.line, loc.column)
            if not (self.jit.options.auto_import and llvm.address_of_symbol(name)):
                raise UndefinedSymbol(name, "function", loc.line, loc.column)
            sym = FunctionSymbol(name=name, signature=Signature(arity=arity), kind=IMPORTED)
            self.unit.symbols[name] = sym
            logger.debug("auto-imported host symbol %s/%d", name, arity)
        if sym.signature.returns != 1:
            raise SignatureMismatch(name, "a single return value", f"{sym.signature.returns} values", loc.line, loc.column)
        if sym.signature.arity != arity:
            raise SignatureMismatch(name, f"{sym.signature.arity} arguments", f"{arity}", loc.line, loc.column)
        return self.jit._llvm_function(self.unit, sym)

    def resolve_data(self, name: str, loc: ast.Located) -> ir.GlobalVariable:
        data = self.jit._data.get(name)
        if data is None:
            raise UndefinedSymbol(name, "data", loc.line, loc.column)
        module = self.unit.module
        existing = module.globals.get(name)
        if existing is not None:
            return existing
        # Declaration only; the definition lives in the data object's module.
        return ir.GlobalVariable(module, ir.ArrayType(_I8, len(data.content)), name=name)


class JIT:
    """Compile toy sources into callable native functions."""

    def __init__(self, options: Optional[JITOptions] = None) -> None:
        _init_native()
        self.options = options or JITOptions()
        for lib in self.options.libraries:
            logger.debug("loading library %s", lib)
            try:
                llvm.load_library_permanently(lib)
            except RuntimeError as exc:
                raise OSError(f"cannot load library {lib}: {exc}") from None
        target = llvm.Target.from_default_triple()
        self._target_machine = target.create_target_machine(opt=self.options.opt_level)
        backing = llvm.parse_assembly("")
        self._engine = llvm.create_mcjit_compiler(backing, self._target_machine)
        self._symbols: Dict[str, FunctionSymbol] = {}
        self._data: Dict[str, DataSymbol] = {}
        self._handles: Dict[str, CompiledFunction] = {}
        self._pending: Optional[_PendingUnit] = None
        self._unit_counter = 0
        self._last_ir: Optional[str] = None
        self._closed = False

    # --- lifecycle -----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the engine. Handles from this JIT stop working."""
        if self._closed:
            return
        self._pending = None
        self._closed = True
        self._engine.close()
        logger.debug("closed JIT (%d functions)", len(self._handles))

    def __enter__(self) -> "JIT":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise InvocationError("JIT has been closed")

    # --- symbol table --------------------------------------------------

    def lookup(self, name: str) -> Optional[Symbol]:
        """Committed or pending symbol registered under `name`."""
        if name in self._data:
            return self._data[name]
        return self._current_symbols().get(name)

    def _current_symbols(self) -> Dict[str, FunctionSymbol]:
        return self._pending.symbols if self._pending is not None else self._symbols

    def declare(self, name: str, signature: Signature) -> FunctionSymbol:
        """Register a function signature; idempotent for an identical signature."""
        self._check_open()
        if name in self._data:
            raise DuplicateDefinition(name, "already registered as a data object")
        unit = self._unit()
        sym = unit.symbols.get(name)
        if sym is not None:
            if sym.signature != signature:
                raise SignatureMismatch(name, sym.signature, signature)
            return sym
        sym = FunctionSymbol(name=name, signature=signature)
        unit.symbols[name] = sym
        self._llvm_function(unit, sym)
        logger.debug("declared %s%s", name, signature)
        return sym

    def import_function(self, name: str, arity: int) -> FunctionSymbol:
        """Declare a host-process function taking `arity` int64 arguments."""
        sym = self.declare(name, Signature(arity=arity))
        if sym.kind == DECLARED:
            sym.kind = IMPORTED
        return sym

    def define(self, name: str, fn: ast.Function) -> FunctionSymbol:
        """Translate `fn` as the body of the declared function `name`."""
        self._check_open()
        unit = self._unit()
        sym = unit.symbols.get(name)
        if sym is None:
            raise UndefinedSymbol(name, "function")
        if sym.kind in (DEFINED, FINALIZED):
            raise DuplicateDefinition(name)
        if sym.kind == IMPORTED:
            raise DuplicateDefinition(name, "already imported from the host process")
        found = Signature(arity=len(fn.params), returns=len(fn.returns))
        if found != sym.signature:
            raise SignatureMismatch(name, sym.signature, found)
        try:
            translate_function(self._llvm_function(unit, sym), fn, _UnitResolver(self, unit))
        except RecursionError:
            self._discard(f"translation of {name} exceeded the recursion limit")
            raise CompileError(f"{name!r} is nested too deeply to translate", fn.loc.line, fn.loc.column) from None
        except Exception as exc:
            self._discard(f"translation of {name} failed: {exc}")
            raise
        sym.kind = DEFINED
        unit.defined.append(name)
        logger.debug("defined %s", name)
        return sym

    def create_data(self, name: str, content: bytes) -> DataSymbol:
        """Register an immutable byte buffer addressable as `&name`.

        The bytes are stored exactly as given; no terminator is appended.
        """
        self._check_open()
        if name in self._data or name in self._current_symbols():
            raise DuplicateDefinition(name)
        content = bytes(content)
        module = self._new_module(f"toyjit.data.{name}")
        ty = ir.ArrayType(_I8, len(content))
        gv = ir.GlobalVariable(module, ty, name=name)
        gv.initializer = ir.Constant(ty, bytearray(content))
        gv.global_constant = True
        llvm_mod = llvm.parse_assembly(str(module))
        llvm_mod.verify()
        self._engine.add_module(llvm_mod)
        self._engine.finalize_object()
        address = self._engine.get_global_value_address(name)
        data = DataSymbol(name=name, content=content, address=address)
        self._data[name] = data
        logger.debug("created data %s (%d bytes) at %#x", name, len(content), address)
        return data

    def data_address(self, name: str) -> int:
        data = self._data.get(name)
        if data is None:
            raise UndefinedSymbol(name, "data")
        return data.address

    def register_symbol(self, name: str, address: int) -> None:
        """Make `address` resolvable as the host symbol `name`.

        The registration is process-wide (it goes into LLVM's dynamic symbol
        table), so it is visible to every JIT instance.
        """
        llvm.add_symbol(name, address)
        logger.debug("registered host symbol %s at %#x", name, address)

    # --- units ---------------------------------------------------------

    def _new_module(self, name: str) -> ir.Module:
        module = ir.Module(name=name)
        module.triple = self._target_machine.triple
        module.data_layout = str(self._target_machine.target_data)
        return module

    def _unit(self) -> _PendingUnit:
        if self._pending is None:
            self._unit_counter += 1
            symbols = {name: replace(sym) for name, sym in self._symbols.items()}
            self._pending = _PendingUnit(self._new_module(f"toyjit.unit{self._unit_counter}"), symbols)
        return self._pending

    def _llvm_function(self, unit: _PendingUnit, sym: FunctionSymbol) -> ir.Function:
        existing = unit.module.globals.get(sym.name)
        if existing is not None:
            return existing
        return ir.Function(unit.module, function_type(sym.signature.arity, sym.signature.returns), name=sym.name)

    def _discard(self, reason: str) -> None:
        if self._pending is not None:
            logger.debug("discarding unit %s: %s", self._pending.module.name, reason)
        self._pending = None

    def finalize_all(self) -> Dict[str, CompiledFunction]:
        """Emit machine code for the pending unit and return its handles."""
        self._check_open()
        unit = self._pending
        if unit is None:
            return {}
        try:
            self._resolve_externals(unit)
            ir_text = str(unit.module)
            if self.options.dump_ir:
                logger.debug("IR for %s:\n%s", unit.module.name, ir_text)
            llvm_mod = llvm.parse_assembly(ir_text)
            llvm_mod.verify()
        except Exception as exc:
            self._discard(f"finalization failed: {exc}")
            raise
        self._engine.add_module(llvm_mod)
        try:
            self._engine.finalize_object()
        except Exception as exc:
            self._engine.remove_module(llvm_mod)
            self._discard(f"finalization failed: {exc}")
            raise

        handles: Dict[str, CompiledFunction] = {}
        for name in unit.defined:
            sym = unit.symbols[name]
            address = self._engine.get_function_address(name)
            if not address:
                raise RuntimeError(f"no machine code emitted for {name}")
            sym.kind = FINALIZED
            sym.address = address
            handles[name] = CompiledFunction(name, address, sym.signature, self)
        self._symbols = unit.symbols
        self._handles.update(handles)
        self._last_ir = ir_text
        self._pending = None
        logger.info("finalized %s: %d functions", unit.module.name, len(handles))
        return handles

    def _resolve_externals(self, unit: _PendingUnit) -> None:
        for fn in unit.module.functions:
            if not fn.is_declaration:
                continue
            sym = unit.symbols[fn.name]
            if sym.kind == FINALIZED:
                continue
            if not llvm.address_of_symbol(fn.name):
                raise UnresolvedExternal(fn.name)
            sym.kind = IMPORTED

    # --- source-level entry points ------------------------------------

    def compile(self, source: str) -> Dict[str, CompiledFunction]:
        """Lex, parse, declare, define and finalize every function in `source`."""
        return self._compile_unit(parse_unit(source))

    def compile_function(self, source: str, name: Optional[str] = None) -> CompiledFunction:
        """Compile `source` and return the handle for `name` (default: first function)."""
        unit = parse_unit(source)
        if not unit.functions:
            raise CompileError("source defines no functions")
        name = name or unit.functions[0].name
        if all(fn.name != name for fn in unit.functions):
            raise UndefinedSymbol(name, "function")
        return self._compile_unit(unit)[name]

    def _compile_unit(self, unit_ast: ast.Unit) -> Dict[str, CompiledFunction]:
        self._check_open()
        seen = set()
        for fn in unit_ast.functions:
            if fn.name in seen:
                raise DuplicateDefinition(fn.name, f"defined twice in one unit (line {fn.loc.line})")
            seen.add(fn.name)
        try:
            for fn in unit_ast.functions:
                self.declare(fn.name, Signature(arity=len(fn.params), returns=len(fn.returns)))
            for fn in unit_ast.functions:
                self.define(fn.name, fn)
            return self.finalize_all()
        except Exception as exc:
            self._discard(str(exc))
            raise

    # --- introspection -------------------------------------------------

    def function(self, name: str) -> CompiledFunction:
        handle = self._handles.get(name)
        if handle is None:
            raise UndefinedSymbol(name, "function")
        return handle

    def ir_text(self) -> Optional[str]:
        """LLVM IR of the most recently finalized unit."""
        return self._last_ir

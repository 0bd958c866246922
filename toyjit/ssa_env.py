"""SSA construction for toy bindings.

Toy code assigns to names repeatedly; LLVM wants every value defined once.
`SSAEnv` bridges the two with the on-the-fly algorithm of Braun et al.
("Simple and Efficient Construction of Static Single Assignment Form"):
each block records the current value of every name written in it, reads
walk predecessors, and merge points get phi nodes. Blocks whose
predecessors are not all known yet (loop headers) get incomplete phis that
are filled in when the block is sealed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set

from llvmlite import ir  # type: ignore

from .errors import UndefinedSymbol


@dataclass
class SSAEnv:
    """Per-function SSA state.

    - `ty` is the LLVM type of every binding (all toy values are i64).
    - `defs` maps block -> {user name -> current value in that block}.
    - `preds` maps block -> predecessor blocks, in edge order.
    - `incomplete` holds phis created in unsealed blocks, keyed by name.

    Blocks are keyed by identity; llvmlite blocks are not hashable by name.
    """

    ty: ir.Type
    declared: Set[str] = field(default_factory=set)
    defs: Dict[int, Dict[str, ir.Value]] = field(default_factory=dict)
    preds: Dict[int, List[ir.Block]] = field(default_factory=dict)
    sealed: Set[int] = field(default_factory=set)
    incomplete: Dict[int, Dict[str, ir.PhiInstr]] = field(default_factory=dict)

    # --- user names ----------------------------------------------------

    def declare(self, name: str) -> None:
        self.declared.add(name)

    def is_declared(self, name: str) -> bool:
        return name in self.declared

    def def_var(self, name: str, block: ir.Block, value: ir.Value) -> None:
        if name not in self.declared:
            raise UndefinedSymbol(name, "variable")
        self.defs.setdefault(id(block), {})[name] = value

    def use_var(self, name: str, block: ir.Block) -> ir.Value:
        if name not in self.declared:
            raise UndefinedSymbol(name, "variable")
        return self._read(name, block)

    # --- CFG bookkeeping -----------------------------------------------

    def add_predecessor(self, block: ir.Block, pred: ir.Block) -> None:
        if id(block) in self.sealed:
            raise RuntimeError(f"block {block.name} is sealed; cannot add predecessor {pred.name}")
        self.preds.setdefault(id(block), []).append(pred)

    def seal_block(self, block: ir.Block) -> None:
        key = id(block)
        if key in self.sealed:
            return
        for name, phi in self.incomplete.pop(key, {}).items():
            self._add_phi_operands(name, block, phi)
        self.sealed.add(key)

    def unsealed(self) -> List[int]:
        return [key for key in self.preds if key not in self.sealed]

    # --- internals -----------------------------------------------------

    def _read(self, name: str, block: ir.Block) -> ir.Value:
        current = self.defs.get(id(block), {})
        if name in current:
            return current[name]
        return self._read_recursive(name, block)

    def _read_recursive(self, name: str, block: ir.Block) -> ir.Value:
        key = id(block)
        preds = self.preds.get(key, [])
        if key not in self.sealed:
            phi = self._new_phi(name, block)
            self.incomplete.setdefault(key, {})[name] = phi
            value: ir.Value = phi
        elif len(preds) == 1:
            value = self._read(name, preds[0])
        elif not preds:
            # Only the entry block has no predecessors, and every declared
            # name is defined there before any read.
            raise UndefinedSymbol(name, "variable")
        else:
            # Record the phi before reading operands to break cycles.
            phi = self._new_phi(name, block)
            self.def_var(name, block, phi)
            self._add_phi_operands(name, block, phi)
            value = phi
        self.def_var(name, block, value)
        return value

    def _new_phi(self, name: str, block: ir.Block) -> ir.PhiInstr:
        builder = ir.IRBuilder(block)
        builder.position_at_start(block)
        return builder.phi(self.ty, name=f"{name}.phi")

    def _add_phi_operands(self, name: str, block: ir.Block, phi: ir.PhiInstr) -> None:
        for pred in self.preds.get(id(block), []):
            phi.add_incoming(self._read(name, pred), pred)

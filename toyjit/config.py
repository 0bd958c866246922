from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class JITOptions:
    """Knobs for a `JIT` instance.

    - `opt_level`   LLVM codegen optimization level (0-3).
    - `auto_import` resolve calls to unknown names against host symbols.
    - `dump_ir`     log each unit's LLVM IR at DEBUG before finalization.
    - `libraries`   shared libraries loaded permanently for external linkage.
    """

    opt_level: int = 2
    auto_import: bool = True
    dump_ir: bool = False
    libraries: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.opt_level <= 3:
            raise ValueError(f"opt_level must be in 0..3, got {self.opt_level}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "JITOptions":
        """Build options from TOYJIT_* variables; keyword overrides win."""
        env = os.environ if environ is None else environ
        opts = cls()
        if "TOYJIT_OPT_LEVEL" in env:
            opts = replace(opts, opt_level=int(env["TOYJIT_OPT_LEVEL"]))
        if "TOYJIT_AUTO_IMPORT" in env:
            opts = replace(opts, auto_import=_parse_bool("TOYJIT_AUTO_IMPORT", env["TOYJIT_AUTO_IMPORT"]))
        if "TOYJIT_DUMP_IR" in env:
            opts = replace(opts, dump_ir=_parse_bool("TOYJIT_DUMP_IR", env["TOYJIT_DUMP_IR"]))
        if env.get("TOYJIT_LIBRARIES"):
            libs = tuple(p for p in env["TOYJIT_LIBRARIES"].split(os.pathsep) if p)
            opts = replace(opts, libraries=libs)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(opts, **overrides) if overrides else opts


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{key}: expected a boolean, got {raw!r}")

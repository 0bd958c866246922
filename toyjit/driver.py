#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import JITOptions
from .errors import CompileError, InvocationError
from .invoke import MAX_ARITY
from .jit import JIT

logger = logging.getLogger(__name__)


def _data_arg(raw: str) -> tuple[str, bytes]:
    name, sep, text = raw.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=TEXT, got {raw!r}")
    # C consumers expect a terminated string.
    return name, text.encode("utf-8") + b"\0"


def _configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def run_source(
    source: str,
    args: list[int],
    entry: str | None,
    emit_ir: bool,
    options: JITOptions,
    data: list[tuple[str, bytes]],
) -> int:
    """Compile `source`, call `entry` with `args` and print the result."""
    with JIT(options) as jit:
        for name, content in data:
            jit.create_data(name, content)
        fn = jit.compile_function(source, entry)
        if emit_ir:
            print(jit.ir_text())
        result = fn(*args)
    if isinstance(result, tuple):
        print(" ".join(str(value) for value in result))
    else:
        print(result)
    return 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="toyjit", description="toyjit: compile a toy source file and run it natively")
    ap.add_argument("source", type=Path, help="Toy source file")
    ap.add_argument("args", nargs="*", type=int, help=f"Integer arguments for the entry function (at most {MAX_ARITY})")
    ap.add_argument("--entry", help="Function to run (default: first function in the file)")
    ap.add_argument("--emit-ir", action="store_true", help="Print the generated LLVM IR to stdout before running")
    ap.add_argument("-O", dest="opt_level", type=int, choices=range(4), default=None, help="LLVM codegen optimization level")
    ap.add_argument(
        "--no-auto-import",
        dest="auto_import",
        action="store_false",
        default=None,
        help="Do not resolve unknown callees against host process symbols",
    )
    ap.add_argument(
        "--data",
        action="append",
        type=_data_arg,
        default=[],
        metavar="NAME=TEXT",
        help="Register a NUL-terminated data object addressable as &NAME",
    )
    ap.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    ap.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    ns = ap.parse_args(argv)

    if len(ns.args) > MAX_ARITY:
        ap.error(f"at most {MAX_ARITY} integer arguments are supported, got {len(ns.args)}")
    _configure_logging(ns.verbose, ns.quiet)

    try:
        options = JITOptions.from_env(opt_level=ns.opt_level, auto_import=ns.auto_import)
    except ValueError as e:
        ap.error(str(e))
    try:
        source = ns.source.read_text()
    except OSError as e:
        print(f"error: cannot read {ns.source}: {e.strerror}", file=sys.stderr)
        return 1
    try:
        return run_source(source, ns.args, ns.entry, ns.emit_ir, options, ns.data)
    except (CompileError, InvocationError, OSError) as e:
        logger.debug("compilation of %s failed", ns.source, exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

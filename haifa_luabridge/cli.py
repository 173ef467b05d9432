from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .context import LuaContext
from .errors import LuaError, LuaLibraryNotFound
from .repl import ReplSession


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="haifa-lua", description="Run Lua code through the stack bridge")
    parser.add_argument("script", nargs="?", help="Path to Lua script (.lua)")
    parser.add_argument("-e", "--execute", dest="inline", help="Execute Lua code string")
    parser.add_argument("--stack", action="store_true", help="Print the stack contents after running")
    parser.add_argument("--repl", action="store_true", help="Start an interactive REPL session")
    parser.add_argument("--library", help="Path or soname of the Lua shared library")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log bridge activity to stderr")
    args = parser.parse_args(argv)

    if args.inline and args.script:
        parser.error("cannot use script path and --execute together")
    if args.repl and (args.inline or args.script):
        parser.error("--repl cannot be combined with script or --execute")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        context = LuaContext(library=args.library)
    except LuaLibraryNotFound as exc:
        print(f"Lua library unavailable: {exc}", file=sys.stderr)
        return 1

    with context:
        if args.repl or (not args.inline and not args.script and sys.stdin.isatty()):
            ReplSession(context=context, show_stack=args.stack).run()
            return 0
        try:
            if args.inline:
                context.run(args.inline, "=(command line)")
            elif args.script:
                context.run_file(args.script)
            else:
                context.run(sys.stdin.read(), "=stdin")
        except LuaError as exc:
            if args.stack:
                context.print_stack()
            print(f"Lua execution failed: {exc.status.value}: {exc}", file=sys.stderr)
            return 1
        except OSError as exc:
            print(f"cannot read script: {exc}", file=sys.stderr)
            return 1
        if args.stack:
            context.print_stack()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

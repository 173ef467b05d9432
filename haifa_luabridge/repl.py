from __future__ import annotations

import atexit
import sys
from pathlib import Path
from typing import Optional

from .context import LuaContext
from .errors import LuaError, LuaSyntaxError
from .index import MULTRET

try:  # pragma: no cover - platform specific
    import readline  # type: ignore
except ImportError:  # pragma: no cover - Windows fallback
    readline = None  # type: ignore


_HISTORY_FILE = Path.home() / ".haifa_lua_history"

_GLOBAL_NAMES = """
local names = {}
for key in pairs(_G) do
  if type(key) == "string" then names[#names + 1] = key end
end
table.sort(names)
return table.concat(names, "\\n")
"""


class ReplSession:
    MAIN_PROMPT = "> "
    CONTINUATION_PROMPT = ">> "

    def __init__(
        self,
        *,
        context: Optional[LuaContext] = None,
        show_stack: bool = False,
        enable_readline: bool = True,
        library: Optional[str] = None,
    ) -> None:
        self.context = context or LuaContext(library=library)
        self.show_stack = show_stack
        self._buffer: list[str] = []
        self._enable_readline = enable_readline
        self._configure_readline()

    # ------------------------------------------------------------------ public API
    def run(self) -> None:
        while True:
            prompt = self.CONTINUATION_PROMPT if self._buffer else self.MAIN_PROMPT
            try:
                line = self._read_line(prompt)
            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                print()
                self._buffer.clear()
                continue
            result = self.process_line(line)
            if result is True:
                break

    def process_line(self, line: str) -> Optional[bool]:
        if not self._buffer:
            command_result = self._try_command(line)
            if command_result is not None:
                return command_result
        if not self._buffer and line.lstrip().startswith("="):
            line = self.normalize_source(line)
        self._buffer.append(line)
        source = "\n".join(self._buffer)
        ctx = self.context
        base = ctx.top
        try:
            ctx.load_string(source, "=stdin")
        except LuaSyntaxError as exc:
            ctx.top = base
            if self.is_incomplete(str(exc)):
                return None
            print(exc, file=sys.stderr)
            self._buffer.clear()
            return None
        self._buffer.clear()
        try:
            ctx.pcall(0, MULTRET)
        except LuaError as exc:
            ctx.top = base
            print(exc, file=sys.stderr)
            return None
        if ctx.top > base:
            self.print_results(base + 1)
        ctx.top = base
        if self.show_stack:
            ctx.print_stack()
        return None

    def is_incomplete(self, message: str) -> bool:
        return message.rstrip().endswith("<eof>")

    def normalize_source(self, line: str) -> str:
        stripped = line.lstrip()
        if not stripped.startswith("="):
            return line
        prefix = line[: len(line) - len(stripped)]
        expression = stripped[1:].lstrip()
        return f"{prefix}return {expression}"

    def print_results(self, first: int) -> None:
        ctx = self.context
        text = "\t".join(ctx.to_display(i) for i in range(first, ctx.top + 1))
        print(text)

    # ------------------------------------------------------------------ helpers
    def _try_command(self, line: str) -> Optional[bool]:
        stripped = line.strip()
        if not stripped.startswith(":"):
            return None
        parts = stripped[1:].split(maxsplit=1)
        if not parts:
            return None
        command, *args = parts
        if command in {"quit", "q"}:
            return True
        if command == "help":
            self._print_help()
            return None
        if command == "stack":
            self.context.print_stack()
            return None
        if command == "clear":
            self.context.top = 0
            return None
        if command == "push":
            self._push_expression(args[0] if args else "")
            return None
        if command == "pop":
            self._pop(args[0] if args else "1")
            return None
        if command == "globals":
            self._print_globals()
            return None
        print(f"Unknown command: :{command}")
        return None

    def _push_expression(self, expression: str) -> None:
        if not expression:
            print("usage: :push <expression>")
            return
        ctx = self.context
        base = ctx.top
        try:
            ctx.evaluate(f"return {expression}", "=stdin")
        except LuaError as exc:
            ctx.top = base
            print(exc, file=sys.stderr)
            return
        ctx.print_stack()

    def _pop(self, argument: str) -> None:
        try:
            self.context.pop(int(argument))
        except (ValueError, IndexError) as exc:
            print(exc, file=sys.stderr)
            return
        self.context.print_stack()

    def _global_names(self) -> list[str]:
        ctx = self.context
        base = ctx.top
        try:
            ctx.evaluate(_GLOBAL_NAMES, "=globals")
            names = ctx.to_string(-1) or ""
        finally:
            ctx.top = base
        return names.split("\n") if names else []

    def _print_globals(self) -> None:
        print("Globals:")
        for key in self._global_names():
            print(f"  {key}")

    def _print_help(self) -> None:
        print("Commands:")
        print("  :help             Show this help message")
        print("  :quit / :q        Exit the REPL")
        print("  :stack            Show the values on the context's stack")
        print("  :push <expr>      Evaluate an expression and keep its values on the stack")
        print("  :pop [n]          Pop n values (default 1)")
        print("  :clear            Empty the stack")
        print("  :globals          List global names")
        print("Expressions prefixed with '=' are treated as return statements.")

    def _configure_readline(self) -> None:
        if not self._enable_readline or readline is None:
            return
        if not sys.stdin.isatty():  # pragma: no cover - interactive only
            return
        try:
            readline.parse_and_bind("tab: complete")
            readline.set_completer(self._complete)
            if _HISTORY_FILE.exists():
                readline.read_history_file(str(_HISTORY_FILE))
        except OSError:  # pragma: no cover - unreadable history
            return
        atexit.register(self._save_history)

    def _complete(self, text: str, state: int) -> Optional[str]:
        candidates = [name for name in self._global_names() if name.startswith(text)]
        if state < len(candidates):
            return candidates[state]
        return None

    def _save_history(self) -> None:  # pragma: no cover - interactive only
        if readline is None:
            return
        try:
            readline.write_history_file(str(_HISTORY_FILE))
        except OSError:
            pass

    def _read_line(self, prompt: str) -> str:
        return input(prompt)


__all__ = ["ReplSession"]

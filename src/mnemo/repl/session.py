"""Interactive REPL session: read a line, handle it, prompt again."""

from __future__ import annotations

import asyncio
import logging
import queue
import sys
import threading
from typing import IO

from mnemo.client import MemoryClient
from mnemo.config import MnemoConfig
from mnemo.engines import build_backends
from mnemo.orchestrator import Orchestrator, TurnResult
from mnemo.orchestrator.actions import SearchAction
from mnemo.orchestrator.render import RULE, format_related
from mnemo.repl.commands import CommandRegistry, MemoryCommands, split_line
from mnemo.repl.guard import SessionGuard

logger = logging.getLogger(__name__)

PROMPT = "mnemo> "

_ON = ("on", "true", "1", "yes")
_OFF = ("off", "false", "0", "no")


class InputPump:
    """Reads input on a daemon thread, one line per readline() call."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream
        self._requests: queue.Queue[str | None] = queue.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: asyncio.Future[str | None] | None = None
        self._thread: threading.Thread | None = None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._thread is not None:
            return
        self._loop = loop
        self._thread = threading.Thread(target=self._run, name="mnemo-input", daemon=True)
        self._thread.start()

    async def readline(self, prompt: str = PROMPT) -> str | None:
        """Next input line, or None at end of input or after close()."""
        if self._loop is None:
            raise RuntimeError("InputPump not started")
        self._pending = self._loop.create_future()
        self._requests.put(prompt)
        return await self._pending

    def close(self) -> None:
        self._requests.put(None)
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(None)

    def _run(self) -> None:
        stream = self._stream or sys.stdin
        while True:
            prompt = self._requests.get()
            if prompt is None:
                return
            try:
                sys.stdout.write(prompt)
                sys.stdout.flush()
                raw = stream.readline()
                line = raw.rstrip("\r\n") if raw else None
            except (OSError, ValueError) as e:
                logger.warning("Input error: %s", e)
                line = None
            try:
                self._loop.call_soon_threadsafe(self._deliver, line)
            except RuntimeError:
                # Event loop already closed
                return
            if line is None:
                return

    def _deliver(self, line: str | None) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(line)


class ReplSession:
    """Routes each line to a command or, in natural-language mode, to the orchestrator."""

    def __init__(
        self,
        client: MemoryClient,
        orchestrator: Orchestrator,
        *,
        nl_mode: bool = True,
        stream: IO[str] | None = None,
    ) -> None:
        self.client = client
        self.orchestrator = orchestrator
        self.nl_mode = nl_mode
        self.registry = CommandRegistry()
        self.memory_commands = MemoryCommands(client)
        self.memory_commands.register(self.registry)
        self._register_system_commands()

        self.guard = SessionGuard(self.request_shutdown, self._recovered)
        self._input = InputPump(stream)
        self._running = False
        self._current: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self):
        return self.memory_commands.last_result

    # ── System commands ──────────────────────────────────────

    def _register_system_commands(self) -> None:
        self.registry.register("nl", self._cmd_nl, help="nl [on|off]  toggle natural language mode")
        self.registry.register("mode", self._cmd_mode, help="mode [natural|command]  show or switch input mode")
        self.registry.register("reset", self._cmd_reset, help="reset  clear conversation history")
        self.registry.register("status", self._cmd_status, help="status  show current status")
        self.registry.register("help", self._cmd_help, help="help  show this help", aliases=("?", "h"))
        self.registry.register("exit", self._cmd_exit, help="exit  leave the session", aliases=("quit", "q"))

    async def _cmd_nl(self, args: list[str]) -> None:
        if not args:
            print(f"Natural Language mode: {'ON' if self.nl_mode else 'OFF'}")
            return
        toggle = args[0].lower()
        if toggle in _ON:
            self.nl_mode = True
            print("Natural Language mode enabled")
        elif toggle in _OFF:
            self.nl_mode = False
            print("Natural Language mode disabled, switched to command-only mode")
        else:
            print(f"Unknown option: {toggle}")
            print("Usage: nl [on|off]")

    async def _cmd_mode(self, args: list[str]) -> None:
        if not args:
            print(f"Mode: {'natural' if self.nl_mode else 'command'}")
            return
        choice = args[0].lower()
        if choice in ("natural", "nl"):
            await self._cmd_nl(["on"])
        elif choice in ("command", "cmd"):
            await self._cmd_nl(["off"])
        else:
            print("Usage: mode [natural|command]")

    async def _cmd_reset(self, args: list[str]) -> None:
        self.orchestrator.reset()
        print("Conversation history cleared")

    async def _cmd_status(self, args: list[str]) -> None:
        backends = ", ".join(b.name for b in self.orchestrator.backends) or "none (rule matching)"
        print(f"API: {self.client.base_url}")
        print(f"Auth: {'configured' if self.client.has_auth else 'not configured'}")
        print(f"Reasoning backends: {backends}")
        print(f"Mode: {'natural' if self.nl_mode else 'command'}")
        print(f"History: {len(self.orchestrator.history)} messages")
        last = self.last_result
        if isinstance(last, list):
            print(f"Last result: {len(last)} item(s)")
        elif last is not None:
            print(f"Last result: {type(last).__name__}")

    async def _cmd_help(self, args: list[str]) -> None:
        print("\nNatural Language Mode:")
        print('  "Remember that I prefer dark mode"')
        print('  "What do I know about TypeScript?"')
        print('  "Show me my recent memories"')
        print('  "Please refine this prompt: ..."')
        print("\nCommands:")
        for command in self.registry.commands:
            aliases = f" (aliases: {', '.join(command.aliases)})" if command.aliases else ""
            print(f"  {command.help or command.name}{aliases}")
        print()

    async def _cmd_exit(self, args: list[str]) -> None:
        self.request_shutdown()

    # ── Line handling ────────────────────────────────────────

    async def handle_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        words = split_line(text)
        if not words:
            return

        if await self.registry.execute(words[0], words[1:]):
            return
        if self.nl_mode:
            await self.handle_natural(text)
        else:
            print(f'Unknown command: {words[0]}. Type "help" for commands or "nl on" for natural language.')

    async def handle_natural(self, text: str) -> None:
        result = await self.orchestrator.process(text)
        self.print_turn(result)
        if result.data is not None:
            self.memory_commands.last_result = result.data

    @staticmethod
    def print_turn(result: TurnResult) -> None:
        if result.answer:
            print(f"\n{result.answer}\n")
        if result.related:
            heading = "Related Context" if isinstance(result.action, SearchAction) else "Additional Information"
            print(format_related(result.related, heading))
            print()

    def _recovered(self, message: str) -> None:
        print(f"\nRecovered from an error: {message}")
        print("The session is still running. You can continue.\n")

    # ── Lifecycle ────────────────────────────────────────────

    def print_banner(self) -> None:
        backends = ", ".join(b.name for b in self.orchestrator.backends) or "rule matching"
        print("mnemo interactive memory assistant (type 'exit' or Ctrl+C to quit)")
        print(RULE)
        print(f"API: {self.client.base_url} | Auth: {'yes' if self.client.has_auth else 'no'}")
        print(f"Natural Language: {'ON' if self.nl_mode else 'OFF'} | Intent: {backends}")
        print(RULE)
        print('Type naturally, e.g. "Remember that I prefer TypeScript", or use commands.')
        print('Type "help" for all commands.\n')

    def request_shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        print("\nBye!")
        current = self._current
        if current is not None and not current.done() and current is not asyncio.current_task():
            current.cancel()
        self._input.close()

    async def run(self) -> int:
        """Run until exit, end of input or interrupt. Returns the exit status."""
        loop = asyncio.get_running_loop()
        self.guard.install(loop)
        self._running = True
        self._input.start(loop)
        self.print_banner()

        try:
            while self._running:
                line = await self._input.readline(PROMPT)
                if line is None:
                    if self._running:
                        print("\nBye!")
                    break

                self._current = asyncio.ensure_future(self.handle_line(line))
                try:
                    await self._current
                except asyncio.CancelledError:
                    if self._running:
                        raise
                    logger.info("Turn interrupted by shutdown")
                except Exception as e:
                    logger.exception("Unexpected error handling input")
                    print(f"\nUnexpected error: {e}")
                    print('The session is still running. Try again or type "help".\n')
                finally:
                    self._current = None
        finally:
            await self.shutdown()
        return 0

    async def shutdown(self) -> None:
        self._running = False
        self._input.close()
        self.orchestrator.reset()
        await self.orchestrator.close()
        await self.client.close()
        self.guard.dispose()


def build_session(config: MnemoConfig) -> ReplSession:
    client = MemoryClient(config.api)
    orchestrator = Orchestrator(
        client,
        build_backends(config.engine),
        max_history=config.repl.max_history,
        context_search=config.repl.context_search,
    )
    return ReplSession(client, orchestrator, nl_mode=config.repl.nl_mode)

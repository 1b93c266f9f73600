"""Entry point: python -m mnemo [chat]

- No args / "chat": Interactive REPL
- "health":         Check the memory service and exit
"""

from __future__ import annotations

import asyncio
import logging
import sys

from mnemo.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_repl() -> int:
    """Interactive REPL mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from mnemo.repl.session import build_session

    session = build_session(config)
    try:
        return asyncio.run(session.run())
    except KeyboardInterrupt:
        # Platforms without loop signal handlers
        print("\nBye!")
        return 0


def _run_health() -> int:
    """One-shot health check against the configured API."""
    config = load_config()
    _setup_logging(config.log_level)

    from mnemo.client import MemoryClient
    from mnemo.orchestrator.render import describe_error

    async def check() -> int:
        async with MemoryClient(config.api) as client:
            envelope = await client.health_check()
        if envelope.error:
            print(describe_error(envelope.error), file=sys.stderr)
            return 1
        print(f"OK ({client.base_url}, {envelope.meta.duration_ms}ms)")
        return 0

    return asyncio.run(check())


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "chat"

    if cmd in ("chat", "repl"):
        sys.exit(_run_repl())
    elif cmd == "health":
        sys.exit(_run_health())
    else:
        print("Usage: python -m mnemo [chat|health]")
        print("  chat    Interactive REPL (default)")
        print("  health  Check the memory service and exit")
        sys.exit(1)


if __name__ == "__main__":
    main()

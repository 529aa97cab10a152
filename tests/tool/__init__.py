"""Test helpers for cuckoo tools."""

import sys

from cuckoo.command import Command, run

CUCKOO_BIN = [sys.executable, "-m", "cuckoo"]


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command(CUCKOO_BIN + args, env=env))

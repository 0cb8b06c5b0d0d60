"""Local stand-in for the agent CLI used by integration tests.

Accepts the same flags the session runner passes and echoes the prompt back.
``TASK_BRIDGE_ECHO_SLEEP_SECONDS`` delays the reply and
``TASK_BRIDGE_ECHO_EXIT_CODE`` forces a failing exit. ``TASK_BRIDGE_ECHO_STDERR``
is written to stderr before exiting.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt, working directory and allow-list."""

    parser = argparse.ArgumentParser(prog="echo-agent")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--print", dest="print_mode", action="store_true")
    parser.add_argument("--dangerously-skip-permissions", action="store_true")
    parser.add_argument("-p", dest="prompt", default="")
    parser.add_argument("--allowedTools", dest="allowed_tools", default="")
    args = parser.parse_args(argv)

    if args.version:
        print("echo-agent 1.0")
        return 0

    sleep_seconds = float(os.getenv("TASK_BRIDGE_ECHO_SLEEP_SECONDS", "0") or 0)
    if sleep_seconds > 0:
        time.sleep(sleep_seconds)

    print(f"cwd: {Path.cwd()}")
    print(f"tools: {args.allowed_tools}")
    print(args.prompt)
    sys.stdout.flush()

    stderr_text = os.getenv("TASK_BRIDGE_ECHO_STDERR")
    if stderr_text:
        print(stderr_text, file=sys.stderr)

    exit_code = int(os.getenv("TASK_BRIDGE_ECHO_EXIT_CODE", "0") or 0)
    if exit_code:
        print("echo-agent forced failure", file=sys.stderr)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

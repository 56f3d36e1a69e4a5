#!/usr/bin/env python3
"""Generate sources and compile firmware, streaming the build events.

Runs the build orchestrator and prints every event as it arrives:
compiler output lines verbatim, progress milestones prefixed with ``>>``.
Ctrl+C cancels the build (the compiler receives SIGTERM) and waits for
the ``Cancelled`` event.

Usage:
    keyforge-build --keyboard-info crkbd/info.json \\
                   --variant LAYOUT_split_3x6_3 \\
                   --layout layouts/corne.yaml \\
                   --out-dir build/corne

Exit codes:
    0  firmware built (artifact path printed last)
    1  validation, generation or compilation failed
    130  cancelled
"""

import argparse
import sys

from keyforge.build.events import Cancelled, Failed, LogOutput, Progress, Success
from keyforge.build.orchestrator import BuildHandle, BuildOrchestrator
from keyforge.scripts.common import add_input_arguments, load_inputs
from keyforge.utils.logging_config import install_excepthook


def _print_event(event) -> None:
    if isinstance(event, LogOutput):
        print(event.line)
    elif isinstance(event, Progress):
        pct = f" {event.percent}%" if event.percent is not None else ""
        print(f">> {event.phase}{pct}")
    elif isinstance(event, Success):
        print(f">> built {event.artifact_path} ({event.size_bytes} bytes)")
    elif isinstance(event, Failed):
        code = f" (exit code {event.exit_code})" if event.exit_code is not None else ""
        print(f">> build failed{code}", file=sys.stderr)
        for err in event.errors:
            print(f"  {err}", file=sys.stderr)
    elif isinstance(event, Cancelled):
        print(">> build cancelled", file=sys.stderr)


def _follow(handle: BuildHandle):
    """Print events until the terminal one; Ctrl+C cancels once."""
    last = None
    while last is None or not last.is_terminal:
        try:
            for event in handle.events():
                _print_event(event)
                last = event
        except KeyboardInterrupt:
            if handle.cancel_requested:
                continue
            print(">> cancelling...", file=sys.stderr)
            handle.cancel()
    handle.wait()
    return last


def main(argv=None) -> int:
    """CLI entrypoint for a full firmware build."""
    parser = argparse.ArgumentParser(
        description="Generate sources and compile QMK firmware for a keyforge layout",
    )
    add_input_arguments(parser)
    args = parser.parse_args(argv)

    install_excepthook()
    inputs = load_inputs(args)

    orchestrator = BuildOrchestrator(inputs.config, inputs.registry)
    handle = orchestrator.start(inputs.layout, inputs.geometry, inputs.mapping, args.out_dir)
    final = _follow(handle)

    if isinstance(final, Success):
        return 0
    if isinstance(final, Cancelled):
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())

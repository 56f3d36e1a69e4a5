#!/usr/bin/env python3
"""Generate QMK sources (keymap.c, config.h, rules.mk) from a layout file.

Loads the keyboard description, builds the coordinate mapping for the
selected layout variant, validates the layout and writes the generated
files.  Nothing is written when validation fails; every problem is
printed instead.

Usage:
    keyforge-generate --keyboard-info crkbd/info.json \\
                      --variant LAYOUT_split_3x6_3 \\
                      --layout layouts/corne.yaml \\
                      --out-dir build/corne

    # Reproducible output (no timestamp line)
    keyforge-generate ... --deterministic
"""

import argparse
import sys

from keyforge.codegen.generator import FirmwareGenerator, GenerationError
from keyforge.scripts.common import add_input_arguments, load_inputs
from keyforge.utils.logging_config import install_excepthook


def main(argv=None) -> int:
    """CLI entrypoint for source generation."""
    parser = argparse.ArgumentParser(
        description="Generate QMK firmware sources from a keyforge layout",
    )
    add_input_arguments(parser)
    parser.add_argument(
        "--deterministic",
        action="store_true",
        help="Omit the generation timestamp so identical input gives identical output",
    )
    args = parser.parse_args(argv)

    install_excepthook()
    inputs = load_inputs(args)

    generator = FirmwareGenerator(inputs.registry, inputs.config.generation)
    try:
        files = generator.generate(
            inputs.layout,
            inputs.geometry,
            inputs.mapping,
            deterministic=True if args.deterministic else None,
        )
    except GenerationError as e:
        print(f"Error: {len(e.issues)} validation problem(s):", file=sys.stderr)
        for issue in e.issues:
            print(f"  {issue}", file=sys.stderr)
        return 1

    written = files.write_to(args.out_dir)
    for path in written:
        print(path)
    print(f"digest: {files.digest()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

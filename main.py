# main.py
"""CLI entry point for the film-package engine."""

from __future__ import annotations

import argparse
import sys

from models import InboundRequest
from orchestration.cli_runner import EXIT_FAILED, run
from orchestration.engine import REQUIRED_INPUTS
from yaml_parser import load_brief

STEPS = list(REQUIRED_INPUTS)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate film-package artifacts from a short brief."
    )
    parser.add_argument("--brief", default=None, help="Path to a YAML brief file")
    parser.add_argument("--idea", default=None, help="One-line film idea")
    parser.add_argument("--genre", default=None, help="Film genre")
    parser.add_argument("--length", default=None, help='Target length, e.g. "10 min"')
    parser.add_argument(
        "--step",
        action="append",
        choices=STEPS,
        dest="steps",
        help="Step to run; repeat to run several steps concurrently",
    )
    parser.add_argument("--script-file", default=None, help="Screenplay text for domain steps")
    parser.add_argument(
        "--low-budget", action="store_true", default=None, help="Halve budget amounts"
    )
    parser.add_argument("--output", default=None, help="Write JSON here instead of stdout")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse command-line arguments and run the engine."""
    parser = build_parser()
    args = parser.parse_args(argv)

    script = None
    if args.script_file:
        with open(args.script_file, encoding="utf-8") as f:
            script = f.read()

    overrides = {
        "idea": args.idea,
        "genre": args.genre,
        "target_length": args.length,
        "script": script,
        "low_budget": args.low_budget,
    }
    if args.brief:
        request = load_brief(args.brief, **overrides)
        if request is None:
            sys.exit(EXIT_FAILED)
    else:
        request = InboundRequest.model_validate(
            {k: v for k, v in overrides.items() if v is not None}
        )

    steps = args.steps or [request.domain_step]
    sys.exit(run(request, steps, args.output))


if __name__ == "__main__":
    main()

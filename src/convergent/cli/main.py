"""
Convergent CLI

Usage:
    convergent apply --plan plan.yaml [--dry-run] [--vars vars.yaml] [--var KEY=VALUE]
    convergent plan --plan plan.yaml
    convergent validate --plan plan.yaml
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from convergent import __version__
from convergent.config.settings import get_settings
from convergent.logging import configure_logging


def _add_plan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--plan",
        dest="plan_file",
        help="Plan file (YAML or JSON); defaults to ./convergent.yaml",
    )
    parser.add_argument("--vars", dest="vars_file", help="Template variables file")
    parser.add_argument(
        "--var",
        dest="var_overrides",
        action="append",
        metavar="KEY=VALUE",
        help="Template variable override (repeatable)",
    )
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="convergent", description="Convergent CLI")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Log level (default from CONVERGENT_LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command")

    apply_parser = subparsers.add_parser("apply", help="Converge the host towards a plan")
    _add_plan_arguments(apply_parser)
    apply_parser.add_argument(
        "--dry-run", action="store_true", help="Report diffs without applying them"
    )
    apply_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show attribute changes"
    )

    plan_parser = subparsers.add_parser("plan", help="Preview changes (same as apply --dry-run)")
    _add_plan_arguments(plan_parser)

    validate_parser = subparsers.add_parser(
        "validate", help="Check a plan and print its convergence order"
    )
    _add_plan_arguments(validate_parser)

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)

    if args.command == "apply":
        from convergent.cli.apply import apply_command

        sys.exit(
            apply_command(
                args.plan_file,
                dry_run=args.dry_run,
                vars_file=args.vars_file,
                var_overrides=args.var_overrides,
                output_format=args.output,
                verbose=args.verbose,
                settings=settings,
            )
        )

    if args.command == "plan":
        from convergent.cli.apply import plan_command

        sys.exit(
            plan_command(
                args.plan_file,
                vars_file=args.vars_file,
                var_overrides=args.var_overrides,
                output_format=args.output,
                settings=settings,
            )
        )

    if args.command == "validate":
        from convergent.cli.validate import validate_command

        sys.exit(
            validate_command(
                args.plan_file,
                vars_file=args.vars_file,
                var_overrides=args.var_overrides,
                output_format=args.output,
            )
        )


if __name__ == "__main__":  # pragma: no cover
    main()

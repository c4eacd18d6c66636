"""
Command-line interface for intentflow.

Usage:
    intentflow validate graph.json
    intentflow templates
    intentflow templates --name portfolio_review_alert --params '{"token": "SOL", "target_price": 200}'
    intentflow run graph.json --handlers my_bot.handlers:registry
"""

import argparse
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="intentflow",
        description="intentflow - validate and execute intent dependency graphs",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    from intentflow.runner.cli import register_commands

    register_commands(subparsers)

    args = parser.parse_args(argv)

    from intentflow.observability import configure_logging

    configure_logging(level=args.log_level, format=args.log_format)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

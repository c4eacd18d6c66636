"""
CLI commands for validating and running intent graphs.

    intentflow validate graph.json
    intentflow templates --name research_scan_trade --params '{"token": "BONK", "amount": 5}'
    intentflow run graph.json --handlers my_bot.handlers:registry --deadline 20
"""

import argparse
import asyncio
import importlib
import json
import sys
from pathlib import Path
from typing import Any

from intentflow.errors import GraphValidationError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    """Register the validate, templates and run commands."""
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate an intent graph",
        description="Check a graph for cycles, dangling references and bad expressions.",
    )
    validate_parser.add_argument("graph", type=str, help="Path to graph JSON ('-' for stdin)")
    validate_parser.set_defaults(func=cmd_validate)

    templates_parser = subparsers.add_parser(
        "templates",
        help="List plan templates or build a graph from one",
    )
    templates_parser.add_argument("--name", type=str, default=None, help="Template to build")
    templates_parser.add_argument(
        "--params",
        type=str,
        default="{}",
        help="Template parameters as a JSON object",
    )
    templates_parser.set_defaults(func=cmd_templates)

    run_parser = subparsers.add_parser(
        "run",
        help="Execute an intent graph",
        description="Execute a graph with handlers imported from a Python module.",
    )
    run_parser.add_argument("graph", type=str, help="Path to graph JSON ('-' for stdin)")
    run_parser.add_argument(
        "--handlers",
        type=str,
        required=True,
        help="OperationHandlerRegistry to use, as 'module:attribute'",
    )
    run_parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Deadline in seconds (default: from configuration)",
    )
    run_parser.set_defaults(func=cmd_run)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _read_graph(path: str) -> dict:
    if path == "-":
        return json.load(sys.stdin)
    with open(Path(path), encoding="utf-8") as f:
        return json.load(f)


def load_registry(target: str):
    """
    Import an OperationHandlerRegistry from 'package.module:attribute'.

    The attribute may also be a zero-argument factory returning a registry.
    """
    from intentflow.runner.handler_registry import OperationHandlerRegistry

    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")
    obj = getattr(importlib.import_module(module_name), attribute)
    if callable(obj) and not isinstance(obj, OperationHandlerRegistry):
        obj = obj()
    if not isinstance(obj, OperationHandlerRegistry):
        raise TypeError(f"'{target}' is not an OperationHandlerRegistry")
    return obj


def cmd_validate(args: argparse.Namespace) -> int:
    from intentflow.config import EngineConfig
    from intentflow.graph.builder import DependencyGraphBuilder

    try:
        draft = _read_graph(args.graph)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error reading graph: {e}", file=sys.stderr)
        return EXIT_FAILED

    builder = DependencyGraphBuilder(max_nodes=EngineConfig.load().max_nodes)
    try:
        validated = builder.build(draft)
    except GraphValidationError as e:
        _print_json({"valid": False, "error": e.to_dict()})
        return EXIT_FAILED

    _print_json({"valid": True, "order": validated.order})
    return EXIT_OK


def cmd_templates(args: argparse.Namespace) -> int:
    from intentflow.graph.templates import build_from_template, get_template, list_templates

    if args.name is None:
        _print_json([get_template(name).to_dict() for name in list_templates()])
        return EXIT_OK

    try:
        params = json.loads(args.params)
        graph = build_from_template(args.name, params)
    except (json.JSONDecodeError, KeyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    _print_json(graph.to_dict())
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    from intentflow.config import EngineConfig
    from intentflow.runtime.aggregator import OverallStatus
    from intentflow.runtime.engine import IntentEngine

    try:
        draft = _read_graph(args.graph)
        registry = load_registry(args.handlers)
    except (OSError, json.JSONDecodeError, ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    engine = IntentEngine(registry, config=EngineConfig.load())
    try:
        response = asyncio.run(engine.run(draft, deadline_seconds=args.deadline))
    except GraphValidationError as e:
        _print_json({"valid": False, "error": e.to_dict()})
        return EXIT_FAILED

    _print_json(response.to_dict())
    if response.overall_status == OverallStatus.COMPLETED:
        return EXIT_OK
    if response.overall_status == OverallStatus.PARTIAL_FAILURE:
        return EXIT_PARTIAL
    return EXIT_FAILED

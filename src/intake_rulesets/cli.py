"""Command-line entry point: ``intake-rulesets``.

Subcommands:

  check   compile every condition in the ruleset and report labeled errors
  route   print the routing decision for a set of completed processes and vars
  tools   list registered built-in and dynamic tools

Examples::

    intake-rulesets check
    intake-rulesets route --completed 01_welcome_user --var ch2_building_selected=true
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

import yaml

from intake_rulesets.config import configure_logging, load_settings
from intake_rulesets.errors import IntakeConfigError, ToolRegistrationError
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.router import FlowRouter
from intake_rulesets.ruleset import RulesetStore

logger = logging.getLogger(__name__)


def parse_var(item: str) -> tuple[str, Any]:
    """``key=value`` with the value read as a YAML scalar (``true``, ``5``, ``abc``)."""
    key, sep, raw = item.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected key=value, got {item!r}")
    try:
        value = yaml.safe_load(raw) if raw else ""
    except yaml.YAMLError:
        value = raw
    return key.strip(), value


def _load_store(ruleset_dir: str | None) -> RulesetStore:
    store = RulesetStore(ruleset_dir)
    store.load()
    return store


def cmd_check(args: argparse.Namespace) -> int:
    store = _load_store(args.ruleset_dir)
    errors = store.validate_conditions(ConditionEvaluator())
    for name in store.missing_files:
        print(f"warning: process file not found: {name}")
    for err in errors:
        print(f"error: {err}")
    if errors:
        print(f"{len(errors)} invalid condition(s)")
        return 1
    print(f"ok: {sum(1 for _ in store.iter_conditions())} conditions compiled")
    return 0


def cmd_route(args: argparse.Namespace) -> int:
    store = _load_store(args.ruleset_dir)
    manifest, questionnaire = store.require()
    router = FlowRouter(manifest, questionnaire=questionnaire)
    completed = [k for item in args.completed for k in item.split(",") if k.strip()]
    flags = dict(args.var)
    decision = router.next([k.strip() for k in completed], flags)
    print(json.dumps(decision.model_dump(), ensure_ascii=False, indent=2))
    return 0


def cmd_tools(args: argparse.Namespace) -> int:
    from intake_rulesets.pipeline import IntakePipeline

    store = _load_store(args.ruleset_dir)
    pipeline = IntakePipeline.from_store(store, load_settings())
    for tool in pipeline.executor.registry.list_tools():
        print(f"{tool['name']}\t{tool['kind']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intake-rulesets",
        description="Inspect and validate insurance intake rulesets.",
    )
    parser.add_argument(
        "--ruleset-dir",
        default=None,
        help="Ruleset directory (default: INTAKE_RULESET_DIR or v1/ under the repo root)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Compile every condition ahead of runtime")
    check.set_defaults(func=cmd_check)

    route = sub.add_parser("route", help="Print the next routing decision as JSON")
    route.add_argument(
        "--completed",
        action="append",
        default=[],
        help="Completed process key(s); repeat or comma-separate",
    )
    route.add_argument(
        "--var",
        action="append",
        type=parse_var,
        default=[],
        help="Variable as key=value (repeatable)",
    )
    route.set_defaults(func=cmd_route)

    tools = sub.add_parser("tools", help="List registered tools")
    tools.set_defaults(func=cmd_tools)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings)
    if args.ruleset_dir is None:
        args.ruleset_dir = settings.ruleset_dir

    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except (IntakeConfigError, ToolRegistrationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

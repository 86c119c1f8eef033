"""Command-line interface for deploy-agent."""

from __future__ import annotations

import argparse
import json
import signal
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .config import load_config
from .errors import DeploymentError
from .utils.logging import get_logger, set_verbose
from .variables import VariableDictionary
from .workflow import DeploymentRequest, DeploymentWorkflow

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-agent",
        description="Run installation conventions for a package against a set of deployment variables.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    deploy_parser = subparsers.add_parser("deploy", help="Deploy a package")
    deploy_parser.add_argument("--package", default=None, help="Package file to extract")
    deploy_parser.add_argument(
        "--variables", default=None,
        help="JSON file holding the deployment variables",
    )
    deploy_parser.add_argument(
        "--variable", action="append", default=[], metavar="NAME=VALUE",
        help="Set a variable (may be repeated; wins over --variables)",
    )
    deploy_parser.add_argument(
        "--staging-root", default=None,
        help="Directory packages are extracted under",
    )
    deploy_parser.add_argument(
        "--output-variables", default=None,
        help="Write the final variables to this JSON file",
    )
    return parser


def _parse_overrides(pairs: List[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid variable '{pair}', expected NAME=VALUE")
        overrides[name.strip()] = value
    return overrides


def handle_deploy_command(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    variables = VariableDictionary.from_file(args.variables) if args.variables else VariableDictionary()
    try:
        overrides = _parse_overrides(args.variable)
    except ValueError as exc:
        logger.error(str(exc))
        return 2

    cancellation = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancellation.set())

    workflow = DeploymentWorkflow(config, cancellation=cancellation)
    request = DeploymentRequest(
        package_path=args.package,
        variables=variables,
        overrides=overrides,
        staging_root=args.staging_root,
    )
    try:
        workflow.run(request)
        exit_code = 0
    except DeploymentError as exc:
        logger.error("%s deployment failure: %s", exc.kind.value, exc)
        exit_code = 1
    except Exception as exc:
        logger.error("Deployment failed: %s", exc)
        exit_code = 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.output_variables:
        Path(args.output_variables).write_text(
            json.dumps(variables.to_dict(), indent=2),
            encoding="utf-8",
        )
    return exit_code


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbose(args.verbose)
    if args.command == "deploy":
        return handle_deploy_command(args)
    return 2


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)

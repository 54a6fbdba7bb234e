"""Tandem command line: run harness suites and inspect configuration."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Final, List, Optional

import yaml
from rich.console import Console
from rich.markup import escape

from .config import configure_registry, load_config
from .exceptions import BridgeError
from .runtime import DEFAULT_RUNTIME, default_registry
from .testing import display_report, load_suite, run
from .utils.platform_utils import get_platform_info
from .utils.structured_logging import setup_structured_logging
from .version import __version__

__all__: Final = ["create_parser", "main"]

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tandem",
        description="Bridge asyncio coroutines and native thread runtimes.",
        epilog=(
            "Quick examples:\n"
            "  tandem test tests/smoke_cases.py\n"
            "  tandem test mypkg.checks:SUITE --filter sleep\n"
            "  tandem config print --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", type=Path, help="Path to a tandem.yaml file (default: ./tandem.yaml)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    test = sub.add_parser("test", help="Run a harness suite")
    test.add_argument("suite", help="file.py[:NAME] or module.path[:NAME]")
    test.add_argument("--filter", dest="name_filter", metavar="SUBSTRING")
    test.add_argument("--list", action="store_true", help="List case names and exit")
    test.add_argument("--quiet", "-q", action="store_true")
    test.add_argument("--debug", action="store_true", help="Echo debug logs to stderr")
    test.add_argument("--logs-dir", type=Path, help="Write JSONL logs under this directory")
    test.add_argument("--workers", type=int, dest="worker_threads")
    test.add_argument("--io-driver", choices=["none", "asyncio"])

    config = sub.add_parser("config", help="Configuration helpers")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    show = config_sub.add_parser("print", help="Print the merged configuration")
    show.add_argument("--json", action="store_true", help="Emit JSON instead of YAML")
    return parser


def _cli_overrides(args: argparse.Namespace) -> dict:
    runtime = {
        "worker_threads": getattr(args, "worker_threads", None),
        "io_driver": getattr(args, "io_driver", None),
    }
    overrides: dict = {"runtime": {k: v for k, v in runtime.items() if v is not None}}
    logs_dir = getattr(args, "logs_dir", None)
    if logs_dir is not None:
        overrides["logging"] = {"logs_dir": str(logs_dir)}
    return overrides


def run_config_print(console: Console, args: argparse.Namespace) -> int:
    config = load_config(_cli_overrides(args), yaml_path=args.config)
    if args.json:
        console.print_json(json.dumps(config))
    else:
        text = yaml.safe_dump(config, sort_keys=True, default_flow_style=False)
        console.print(text.rstrip(), markup=False, highlight=False)
    return 0


def run_test(console: Console, args: argparse.Namespace) -> int:
    suite = load_suite(args.suite)

    if args.list:
        for case in suite:
            if args.name_filter and args.name_filter not in case.name:
                continue
            kind = case.kind.value if case.kind else "?"
            console.print(f"{case.name}: {kind}", markup=False)
        return 0

    config = load_config(_cli_overrides(args), yaml_path=args.config)
    if args.logs_dir is not None:
        run_id = f"{suite.name}_{time.strftime('%Y%m%d_%H%M%S')}"
        setup_structured_logging(args.logs_dir, run_id, debug=args.debug, quiet=args.quiet)
    else:
        level = "DEBUG" if args.debug else str(config["logging"].get("level", "INFO")).upper()
        logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logger.debug("Platform: %s", get_platform_info())

    registry = default_registry()
    runtime_config = configure_registry(registry, config)
    registry.initialize(DEFAULT_RUNTIME, runtime_config, strict=False)

    report = run(
        suite.name,
        suite,
        name_filter=args.name_filter,
        console=None if args.quiet else console,
    )
    display_report(console, report, quiet=True)
    return report.exit_code


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint."""
    parser = create_parser()
    args = parser.parse_args(argv)
    console = Console()

    try:
        if args.command == "config":
            rc = run_config_print(console, args)
        else:
            rc = run_test(console, args)
    except (BridgeError, ImportError, FileNotFoundError, TypeError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}", highlight=False)
        rc = 2
    sys.exit(int(rc))


if __name__ == "__main__":
    main()

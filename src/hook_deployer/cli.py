"""Command-line interface for hook-deployer."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import IO, Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from .config import AppConfig, load_config
from .gitops import parse_updates
from .provision import HookConflictError, Provisioner
from .state import DeploymentResult, RunRecordStore
from .utils.logging import get_logger, set_verbose
from .workflow import DeploymentTrigger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hook-deployer",
        description="Deploy nginx configuration on every push to a bare git repository.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Project name used to derive repository and work tree paths.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    install_parser = subparsers.add_parser(
        "install", help="Create the bare repository and install the post-receive hook"
    )
    install_parser.add_argument(
        "--force", action="store_true",
        help="Overwrite an existing post-receive hook without asking",
    )
    install_parser.add_argument(
        "--no-start-nginx", action="store_true",
        help="Do not enable/start the nginx service",
    )

    subparsers.add_parser(
        "hook", help="Run a deployment from post-receive (reads ref updates on stdin)"
    )

    deploy_parser = subparsers.add_parser("deploy", help="Deploy the current tip by hand")
    deploy_parser.add_argument("--ref", default=None, help="Branch to deploy instead of HEAD")

    status_parser = subparsers.add_parser("status", help="Show the last deployment")
    status_parser.add_argument("--json", action="store_true", help="Print the raw run record")

    return parser


def _load(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config)
    if args.project:
        config.repository.project = args.project
    return config


def handle_install(args: argparse.Namespace, config: AppConfig) -> int:
    provisioner = Provisioner(config, config_path=args.config)

    def confirm(path: Path) -> bool:
        if not sys.stdin.isatty():
            return False
        return Confirm.ask(f"{path} was not written by hook-deployer. Replace it?", default=False)

    try:
        report = provisioner.install(
            force=args.force,
            start_nginx=not args.no_start_nginx,
            confirm_overwrite=confirm,
        )
    except HookConflictError as exc:
        print(f"❌ {exc}")
        return 1

    print("=" * 55)
    print("✅ Done:")
    print(f"  Bare repository: {report.git_dir}")
    print(f"  Work tree:       {report.work_tree}")
    print(f"  Hook:            {report.hook_path}")
    if report.nginx_started:
        print("  nginx enabled and started")
    if report.missing_binaries:
        print(f"  ⚠️  Missing on PATH: {', '.join(report.missing_binaries)}")
    print("=" * 55)
    print("Push from your local project with:")
    print("")
    print(f"  git remote add production ssh://<SERVER_USER>@<SERVER_IP>{report.git_dir}")
    print("  git push production main")
    print("")
    print(f"Each push checks out to {report.work_tree} and reloads nginx.")
    return 0


def handle_hook(args: argparse.Namespace, config: AppConfig, stdin: Optional[IO[str]] = None) -> int:
    stream = stdin if stdin is not None else sys.stdin
    try:
        updates = parse_updates(stream)
    except ValueError as exc:
        logger.error("[post-receive] %s", exc)
        return 1
    result = DeploymentTrigger(config).run(updates)
    _print_result(result)
    return result.exit_code


def handle_deploy(args: argparse.Namespace, config: AppConfig) -> int:
    result = DeploymentTrigger(config).run(ref=args.ref)
    _print_result(result)
    return result.exit_code


def handle_status(args: argparse.Namespace, config: AppConfig) -> int:
    record = RunRecordStore(config.repository.state_dir_path).load()
    if record is None:
        print("📁 No deployment recorded yet.")
        return 0
    if args.json:
        print(json.dumps(record.to_dict(), indent=2))
        return 0

    console = Console()
    table = Table(title=f"Last deployment of {config.repository.project}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("State", record.state.value)
    table.add_row("Commit", record.commit or "-")
    table.add_row("Ref", record.ref or "-")
    if record.pushed_commit and record.pushed_commit != record.commit:
        table.add_row("Pushed", record.pushed_commit)
    table.add_row("Started", record.started_at)
    table.add_row("Finished", record.finished_at or "-")
    table.add_row("Message", record.message or "-")
    table.add_row("Steps", " -> ".join(item.state for item in record.transitions))
    console.print(table)
    if record.diagnostics:
        console.print("[bold]Diagnostics:[/bold]")
        console.print(record.diagnostics, markup=False)
    return 0


def _print_result(result: DeploymentResult) -> None:
    status_emoji = {
        "reloaded": "✅",
        "skipped": "⏭️",
        "validation_failed": "❌",
        "aborted": "❌",
    }.get(result.state.value, "❓")
    print(f"[post-receive] {status_emoji} {result.state.value}: {result.message}")
    if result.diagnostics and not result.state.successful:
        print(result.diagnostics)


def run_cli(argv: Optional[Sequence[str]] = None, stdin: Optional[IO[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)

    try:
        config = _load(args)
    except (FileNotFoundError, ValueError) as exc:
        print(f"❌ {exc}")
        return 1

    if args.command == "install":
        return handle_install(args, config)
    if args.command == "hook":
        return handle_hook(args, config, stdin=stdin)
    if args.command == "deploy":
        return handle_deploy(args, config)
    if args.command == "status":
        return handle_status(args, config)

    parser.error(f"Unknown command: {args.command}")
    return 2

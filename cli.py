#!/usr/bin/env python
"""
Converge - Workstation Configuration CLI

Usage:
    python cli.py test workstation.yaml
    python cli.py apply workstation.yaml --dry-run
    python cli.py recommend --profile profile.yaml --category Development
    python cli.py resolve Packages Development
    python cli.py cache --warm Packages Terminal

Features:
    - Test/apply configuration aggregates loaded from YAML or JSON
    - Recommendations from the loaded recommendation plugins
    - Layered topic resolution (built-in definitions + user overrides)
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment must be loaded before converge.constants reads it
load_dotenv()

from converge.dependencies import (  # noqa: E402
    get_config_bridge,
    get_item_factory,
    get_plugin_manager,
    get_recommendation_engine,
)
from converge.errors import ConvergeError, CriticalOperationError  # noqa: E402
from converge.items.aggregate import ConfigurationAggregate  # noqa: E402
from converge.models.results import ItemStatus  # noqa: E402

logger = logging.getLogger(__name__)

# Global console
console = Console()

STATUS_STYLES = {
    ItemStatus.PASSED: "green",
    ItemStatus.APPLIED: "green",
    ItemStatus.SKIPPED: "dim",
    ItemStatus.WOULD_APPLY: "cyan",
    ItemStatus.FAILED: "red",
    ItemStatus.ERROR: "bold red",
}

PRIORITY_STYLES = {
    "Critical": "bold red",
    "High": "red",
    "Medium": "yellow",
    "Low": "dim",
}


def setup_logging() -> None:
    """File handler gets INFO and above, the console only WARNING and above."""
    log_dir = Path(__file__).parent / "logs"
    log_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    file_handler = logging.FileHandler(
        log_dir / f"converge_{datetime.now().strftime('%Y%m%d')}.log",
        encoding='utf-8'
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Keep INFO logs out of the rendered CLI output
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def load_plugins() -> None:
    manager = get_plugin_manager()
    results = manager.load_all()
    for name, result in results.items():
        if not result.success:
            console.print(f"[yellow]Plugin '{name}' not loaded: {result.error}[/yellow]")


def load_document(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def render_report(report, title: str) -> None:
    table = Table(title=title)
    table.add_column("Item", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Detail")
    for key, outcome in report.results.items():
        style = STATUS_STYLES.get(outcome.status, "")
        table.add_row(
            key,
            outcome.type,
            f"[{style}]{outcome.status.value}[/{style}]" if style else outcome.status.value,
            outcome.error or outcome.message,
        )
    console.print(table)


def cmd_test(args) -> int:
    load_plugins()
    aggregate = ConfigurationAggregate.load_file(Path(args.file), get_item_factory())
    report = aggregate.test_all(
        include_type=args.include_type,
        exclude_type=args.exclude_type,
        parallel=args.parallel,
        max_workers=args.max_workers,
    )
    render_report(report, f"Test: {aggregate.name}")
    console.print(
        f"[bold]{report.total}[/bold] tested, "
        f"[green]{report.passed} passed[/green], [red]{report.failed} failed[/red]"
    )
    return 0 if report.failed == 0 else 1


def cmd_apply(args) -> int:
    load_plugins()
    aggregate = ConfigurationAggregate.load_file(Path(args.file), get_item_factory())
    try:
        report = aggregate.apply_all(
            force=args.force,
            include_type=args.include_type,
            exclude_type=args.exclude_type,
            parallel=args.parallel,
            max_workers=args.max_workers,
            dry_run=args.dry_run,
        )
    except CriticalOperationError as e:
        if e.report is not None:
            render_report(e.report, f"Apply (aborted): {aggregate.name}")
        console.print(f"[bold red]{e}[/bold red]")
        return 2

    title = f"{'Dry run' if args.dry_run else 'Apply'}: {aggregate.name}"
    render_report(report, title)
    console.print(
        f"[green]{report.applied} {'would apply' if args.dry_run else 'applied'}[/green], "
        f"[dim]{report.skipped} skipped[/dim], [red]{report.failed} failed[/red]"
    )
    return 0 if report.success else 1


def cmd_recommend(args) -> int:
    load_plugins()
    profile: Dict[str, Any] = {}
    if args.profile:
        profile = load_document(Path(args.profile)) or {}

    engine = get_recommendation_engine()
    recommendations = engine.generate(
        profile,
        category=args.category,
        priority=args.priority,
        max_results=args.max_results,
        include_conflicts=args.include_conflicts,
    )

    if not recommendations:
        console.print("[yellow]No recommendations for this profile[/yellow]")
        return 0

    table = Table(title="Recommendations")
    table.add_column("Priority")
    table.add_column("Title", style="cyan")
    table.add_column("Category")
    table.add_column("Score", justify="right")
    table.add_column("Auto")
    table.add_column("Source", style="dim")
    for r in recommendations:
        style = PRIORITY_STYLES.get(r.priority.value, "")
        title = f"{r.title} [yellow](conflict)[/yellow]" if r.has_conflict else r.title
        table.add_row(
            f"[{style}]{r.priority.value}[/{style}]",
            title,
            r.category,
            f"{r.score:.2f}",
            "yes" if r.auto_apply else "",
            f"{r.source}/{r.rule}",
        )
    console.print(table)

    if args.apply or args.dry_run:
        try:
            report = engine.apply_recommendations(
                recommendations,
                dry_run=args.dry_run,
                include_manual=args.include_manual,
            )
        except CriticalOperationError as e:
            console.print(f"[bold red]{e}[/bold red]")
            return 2
        render_report(report, "Dry run" if args.dry_run else "Applied recommendations")
        return 0 if report.success else 1
    return 0


def cmd_resolve(args) -> int:
    bridge = get_config_bridge()
    if args.no_cache:
        bridge.set_caching(False)
    value = bridge.resolve(args.topic, *args.params)
    console.print(Panel(
        yaml.safe_dump(value, sort_keys=False, allow_unicode=True).rstrip(),
        title=f"{args.topic}({', '.join(args.params)})" if args.params else args.topic,
        border_style="blue",
    ))
    return 0


def cmd_cache(args) -> int:
    bridge = get_config_bridge()
    for topic in args.warm or []:
        bridge.resolve(topic)
    if args.clear:
        bridge.clear_cache()

    stats = bridge.get_cache_statistics()
    table = Table(title="Configuration cache")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Enabled", str(stats["enabled"]))
    table.add_row("TTL (s)", str(stats["ttl_seconds"]))
    table.add_row("Entries", str(stats["entries"]))
    table.add_row("Last updated", stats["last_updated"] or "-")
    table.add_row("Keys", ", ".join(stats["keys"]) or "-")
    console.print(table)
    return 0


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", help="Aggregate file (YAML or JSON)")
    parser.add_argument("--include-type", action="append", help="Only process this item type (repeatable)")
    parser.add_argument("--exclude-type", action="append", help="Skip this item type (repeatable)")
    parser.add_argument("--parallel", action="store_true", help="Run items on a worker pool")
    parser.add_argument("--max-workers", type=int, default=None, help="Worker pool size")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Converge workstation configuration")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # test
    test_parser = subparsers.add_parser("test", help="Test items against the current system")
    add_filter_arguments(test_parser)

    # apply
    apply_parser = subparsers.add_parser("apply", help="Apply items not in their desired state")
    add_filter_arguments(apply_parser)
    apply_parser.add_argument("--force", action="store_true", help="Apply items that already pass")
    apply_parser.add_argument("--dry-run", action="store_true", help="Report without changing anything")

    # recommend
    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations for a profile")
    rec_parser.add_argument("--profile", help="System profile file (YAML or JSON)")
    rec_parser.add_argument("--category", help="Only this category")
    rec_parser.add_argument("--priority", help="Only this priority (Low/Medium/High/Critical)")
    rec_parser.add_argument("--max-results", type=int, default=None, help="Result cap")
    rec_parser.add_argument("--include-conflicts", action="store_true", help="Keep duplicate titles")
    rec_parser.add_argument("--apply", action="store_true", help="Apply auto-applicable recommendations")
    rec_parser.add_argument("--dry-run", action="store_true", help="Show what --apply would do")
    rec_parser.add_argument("--include-manual", action="store_true", help="Also apply non-auto recommendations")

    # resolve
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a configuration topic")
    resolve_parser.add_argument("topic", help="Topic name, e.g. Packages")
    resolve_parser.add_argument("params", nargs="*", help="Topic parameters, e.g. Development")
    resolve_parser.add_argument("--no-cache", action="store_true", help="Bypass the cache")

    # cache
    cache_parser = subparsers.add_parser("cache", help="Show configuration cache statistics")
    cache_parser.add_argument("--warm", nargs="*", help="Resolve these topics first")
    cache_parser.add_argument("--clear", action="store_true", help="Clear the cache")

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging()

    commands = {
        "test": cmd_test,
        "apply": cmd_apply,
        "recommend": cmd_recommend,
        "resolve": cmd_resolve,
        "cache": cmd_cache,
    }

    try:
        return commands[args.command](args)
    except ConvergeError as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.error(f"Command '{args.command}' failed: {e}")
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)

#!/usr/bin/env python3
"""
Journey Engine CLI.

Inspect catalogs and drive a user's journey against a local database.

Usage:
    journey-engine catalog rookie-cut
    journey-engine bootstrap --user 3f2a... --persona rookie-cut
    journey-engine stages --user 3f2a...
    journey-engine complete --user 3f2a... --stage <stage-id> --task <task-id>
    journey-engine points --user 3f2a...
    journey-engine serve
"""

import argparse
import sys
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .api.deps import build_journey_service
from .config import get_settings
from .db.repositories import JourneyRepository, MetricsRepository, TargetsRepository
from .exceptions import JourneyError
from .models.journey import StageStatus
from .services.catalog import StageCatalog
from .services.journey_service import JourneyService
from .utils.log_sanitizer import configure_logging


console = Console()
err_console = Console(stderr=True)


def get_status_color(status: StageStatus) -> str:
    """Get rich color for a stage status."""
    colors = {
        StageStatus.COMPLETED: "green",
        StageStatus.IN_PROGRESS: "yellow",
        StageStatus.AVAILABLE: "blue",
        StageStatus.LOCKED: "red",
    }
    return colors.get(status, "white")


def progress_bar(progress: float, width: int = 20) -> str:
    filled = int(round(progress * width))
    return "[" + "#" * filled + "-" * (width - filled) + f"] {progress * 100:5.1f}%"


def build_service(db_path: Optional[str] = None) -> JourneyService:
    """Wire the service against a database file (defaults to settings)."""
    settings = get_settings()
    path = db_path or settings.db_path
    targets = TargetsRepository(path)
    catalog = StageCatalog.load(
        settings.catalog_path,
        default_persona=settings.default_persona,
        min_stages=settings.min_stages,
        max_stages=settings.max_stages,
    )
    return build_journey_service(
        store=JourneyRepository(path),
        metrics=MetricsRepository(path, targets=targets),
        targets=targets,
        catalog=catalog,
    )


def cmd_catalog(args, service: JourneyService):
    """Show the templates selected for a persona."""
    catalog = service.catalog
    persona = catalog.resolve_persona(args.persona)

    console.print()
    console.print(Panel(f"[bold]Stage catalog v{escape(catalog.version)} - {persona}[/bold]"))
    console.print()

    table = Table(box=box.ROUNDED)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Stage", style="white")
    table.add_column("Tasks", style="white")
    table.add_column("XP", style="green", justify="right")

    for template in catalog.select_templates(persona):
        tasks = "\n".join(
            f"{escape(t.title)} ({t.check.get('type')}) +{t.xp}" for t in template.tasks
        )
        table.add_row(
            str(template.order_index),
            f"{escape(template.title)}\n[dim]{template.code}[/dim]",
            tasks,
            str(sum(t.xp for t in template.tasks)),
        )

    console.print(table)
    console.print()


def cmd_bootstrap(args, service: JourneyService):
    """Seed the user's journey."""
    result = service.bootstrap(args.user, args.persona)
    if result.created:
        console.print(f"[green]Created {result.stage_count} stages ({result.persona})[/green]")
    else:
        console.print(f"[yellow]Journey already exists ({result.stage_count} stages)[/yellow]")


def cmd_stages(args, service: JourneyService):
    """Print the evaluated journey."""
    snapshot = service.get_stages(args.user)
    if not snapshot.stages:
        console.print("No journey yet. Run 'journey-engine bootstrap' first.")
        return

    console.print()
    console.print(Panel(f"[bold]Journey for {escape(args.user)}[/bold]"))
    console.print()

    for index, stage in enumerate(snapshot.stages):
        color = get_status_color(stage.status)
        marker = ">" if index == snapshot.active_stage_index else " "
        console.print(
            f"{marker} {stage.position + 1}. [bold]{escape(stage.title)}[/bold]  "
            f"[{color}]{stage.status.value}[/{color}]  "
            f"{escape(progress_bar(stage.progress))}  {stage.xp_current}/{stage.xp_total} XP"
        )
        console.print(f"     [dim]id: {stage.id}[/dim]")
        for task in stage.tasks:
            check = "[green]x[/green]" if task.is_completed else " "
            extra = f" ({escape(task.details)})" if task.details else ""
            console.print(
                f"     \\[{check}] {escape(task.title)} "
                f"{escape(progress_bar(task.progress, 10))}{extra}"
            )
            if args.verbose:
                console.print(f"         [dim]task id: {task.id}[/dim]")
        for step in stage.next_steps:
            console.print(f"     [cyan]next:[/cyan] {escape(step)}")

    console.print()
    console.print(f"Unlocked up to stage index: {snapshot.unlocked_up_to_index}")


def cmd_complete(args, service: JourneyService):
    """Complete a task and show the refreshed stage."""
    snapshot = service.get_stages(args.user)
    result = service.complete_task(args.user, args.stage, args.task)
    if result.already_completed:
        console.print("[yellow]Task was already completed[/yellow]")
        return
    console.print(f"[green]+{result.points_awarded} points[/green]")
    if result.stage_completed:
        console.print("[green]Stage completed![/green]")
    if result.unlocked_next:
        console.print("[blue]Next stage unlocked[/blue]")

    snapshot = service.refresh_task(snapshot, args.user, args.stage, args.task)
    stage = next(s for s in snapshot.stages if s.id == args.stage)
    color = get_status_color(stage.status)
    console.print(
        f"{escape(stage.title)}: [{color}]{stage.status.value}[/{color}]  "
        f"{escape(progress_bar(stage.progress))}  {stage.xp_current}/{stage.xp_total} XP"
    )


def cmd_points(args, service: JourneyService):
    """Show the points summary."""
    summary = service.points_summary(args.user)

    console.print()
    console.print(f"[bold]Points: {summary.total}[/bold]")
    console.print()

    table = Table(box=box.ROUNDED)
    table.add_column("Stage", style="cyan")
    table.add_column("Points", style="green", justify="right")
    table.add_column("Tasks", style="white", justify="right")
    for stage in summary.by_stage:
        table.add_row(escape(stage.stage_title), str(stage.points), str(stage.completed_tasks))

    console.print(table)
    console.print()


def cmd_serve(args):
    """Run the HTTP API."""
    from .main import run

    run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Journey Engine - stage/task progression",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  journey-engine catalog rookie-cut
  journey-engine bootstrap --user <user-id> --persona rookie-cut
  journey-engine stages --user <user-id> --verbose
  journey-engine complete --user <user-id> --stage <stage-id> --task <task-id>
  journey-engine points --user <user-id>
        """,
    )
    parser.add_argument("--db", help="SQLite database path (default: JOURNEY_DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Catalog command
    catalog_p = subparsers.add_parser("catalog", help="Show the stage templates for a persona")
    catalog_p.add_argument("persona", nargs="?", default=None, help="Persona key")

    # Bootstrap command
    bootstrap_p = subparsers.add_parser("bootstrap", help="Seed a user's journey")
    bootstrap_p.add_argument("--user", "-u", required=True, help="User id")
    bootstrap_p.add_argument("--persona", "-p", help="Persona key")

    # Stages command
    stages_p = subparsers.add_parser("stages", help="Show a user's journey")
    stages_p.add_argument("--user", "-u", required=True, help="User id")
    stages_p.add_argument("--verbose", "-v", action="store_true", help="Show task ids")

    # Complete command
    complete_p = subparsers.add_parser("complete", help="Complete a task")
    complete_p.add_argument("--user", "-u", required=True, help="User id")
    complete_p.add_argument("--stage", "-s", required=True, help="Stage id")
    complete_p.add_argument("--task", "-t", required=True, help="Task id")

    # Points command
    points_p = subparsers.add_parser("points", help="Show a user's points")
    points_p.add_argument("--user", "-u", required=True, help="User id")

    # Serve command
    subparsers.add_parser("serve", help="Run the HTTP API")

    args = parser.parse_args(argv)

    commands = {
        "catalog": cmd_catalog,
        "bootstrap": cmd_bootstrap,
        "stages": cmd_stages,
        "complete": cmd_complete,
        "points": cmd_points,
    }

    if args.command == "serve":
        cmd_serve(args)
        return 0
    if args.command not in commands:
        parser.print_help()
        return 1

    configure_logging(get_settings().log_level)
    try:
        commands[args.command](args, build_service(args.db))
    except JourneyError as e:
        err_console.print(f"[red]Error: {escape(e.message)}[/red]")
        if e.details:
            err_console.print(escape(str(e.details)))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

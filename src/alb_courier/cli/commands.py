"""
``courier`` commands: apply a rule configuration or show the compiled request.
"""

import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..config.settings import CourierSettings, load_settings
from ..controller import ApplyAction, ApplyResult, create_or_update_listener_rule
from ..errors import CourierError, ShiftError
from ..logging import setup_unified_logging
from ..routing.compiler import compile_create_rule_request

console = Console()


def _load(config_file: Path) -> CourierSettings:
    try:
        return load_settings(config_file)
    except CourierError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(2)


async def _apply(settings: CourierSettings, dry_run: bool) -> ApplyResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Unsupported on some platforms; Ctrl-C then cancels the task instead
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, cancel_event.set)

    try:
        return await create_or_update_listener_rule(
            settings, cancel_event=cancel_event, dry_run=dry_run
        )
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)


def _print_result(result: ApplyResult) -> None:
    if result.action in (ApplyAction.CREATED, ApplyAction.PLANNED_CREATE):
        verb = "Created" if result.action is ApplyAction.CREATED else "Would create"
        console.print(f"✅ {verb} listener rule", style="bold green")
        if result.rule is not None:
            console.print(f"   Rule: {result.rule.get('RuleArn')}", style="blue")
        if result.request is not None:
            console.print_json(json.dumps(result.request))
        return

    table = Table(title="Traffic Shift" if result.shift else "Traffic Shift Plan")
    table.add_column("Step", style="cyan")
    table.add_column("Current", style="yellow")
    table.add_column("Desired", style="green")

    snapshots = result.shift.history if result.shift else result.plan
    for i, snapshot in enumerate(snapshots, start=1):
        table.add_row(
            str(i),
            f"{snapshot.current_tg_arn} = {snapshot.current_weight}",
            f"{snapshot.desired_tg_arn} = {snapshot.desired_weight}",
        )

    console.print(table)
    if result.shift:
        console.print(f"✅ Shift finished in {result.shift.steps} steps", style="bold green")


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="Logging level")
@click.option("--log-format", type=click.Choice(["json", "text"]), default="text", show_default=True)
def main(log_level: str, log_format: str):
    """Create ALB listener rules and shift traffic between target groups."""
    setup_unified_logging(log_level=log_level, enable_json=log_format == "json")


@main.command()
@click.option(
    "-f",
    "--file",
    "config_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Rule configuration (YAML)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be written without writing")
def apply(config_file: Path, dry_run: bool):
    """Create the rule, or gradually shift traffic on the existing one."""
    settings = _load(config_file)
    console.print(
        f"🔄 Applying rule at priority {settings.priority} on {settings.listener_arn}",
        style="bold blue",
    )
    if dry_run:
        console.print("🔍 Dry-run mode: nothing will be written", style="yellow")

    try:
        result = asyncio.run(_apply(settings, dry_run))
    except ShiftError as e:
        console.print(f"❌ {type(e).__name__} during {e.phase.value}: {e}", style="bold red")
        if e.rolled_back:
            console.print("↩️  Original weights restored", style="yellow")
        if e.last_written is not None:
            console.print(f"   Last written weights: {e.last_written.weights()}", style="yellow")
        sys.exit(1)
    except CourierError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(1)

    _print_result(result)


@main.command("compile")
@click.option(
    "-f",
    "--file",
    "config_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Rule configuration (YAML)",
)
def compile_rule(config_file: Path):
    """Print the create_rule request for a configuration."""
    settings = _load(config_file)
    try:
        request = compile_create_rule_request(settings.listener_arn, settings.listener_rule())
    except CourierError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(1)
    click.echo(json.dumps(request, indent=2))


if __name__ == "__main__":
    main()

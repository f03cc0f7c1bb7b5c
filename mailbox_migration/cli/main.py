"""
Main CLI entry point for the Mailbox Migration Assistant.

This module provides the command-line interface using Click with Rich
formatting: ``run`` drives a migration run and ``status`` shows the
persisted state of one.
"""

import asyncio
import json
import sys
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeRemainingColumn
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from mailbox_migration import __version__
from mailbox_migration.batch.decision import ClassifiedResults, PolicyPrompt
from mailbox_migration.core.exceptions import MailboxMigrationError
from mailbox_migration.models.batch import InclusionPolicy
from mailbox_migration.models.config import MAX_CONCURRENCY, RunConfig, ValidationDepth, load_run_config
from mailbox_migration.models.state import MigrationRunState, RunStage
from mailbox_migration.monitoring.progress import ProgressEvent, ProgressEventType
from mailbox_migration.orchestrator.orchestrator import MailboxMigrationOrchestrator
from mailbox_migration.orchestrator.state_store import RunStateStore
from mailbox_migration.utils.logging import setup_logging

console = Console()

POLICY_CHOICES = {
    "ready": InclusionPolicy.READY_ONLY,
    "all": InclusionPolicy.READY_AND_WARNING,
    "abort": InclusionPolicy.ABORT,
}


def parse_gateway_options(values: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` pairs into a dict; values are parsed as YAML scalars."""
    options: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got '{item}'", param_hint="--gateway-option")
        try:
            options[key.strip()] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            options[key.strip()] = raw
    return options


def build_overrides(**options: Any) -> Dict[str, Any]:
    """Nested RunConfig overrides from the CLI options that were given."""
    overrides: Dict[str, Any] = {}

    def put(section: Optional[str], key: str, value: Any):
        if value is None:
            return
        target = overrides.setdefault(section, {}) if section else overrides
        target[key] = value

    put("validation", "depth", options.get("depth"))
    put("validation", "concurrency", options.get("concurrency"))
    put("validation", "window_size", options.get("window_size"))
    put("batch", "name", options.get("batch_name"))
    put("batch", "source_endpoint", options.get("source_endpoint"))
    put("batch", "target_delivery_domain", options.get("target_domain"))
    if options.get("per_mailbox_tolerance"):
        put("batch", "strategy", "per_mailbox")
    put("output", "state_file", options.get("state_file"))
    put("output", "work_dir", options.get("work_dir"))
    put("logging", "log_file", options.get("log_file"))
    put("gateway", "type", options.get("gateway"))
    if options.get("gateway_options"):
        put("gateway", "options", options["gateway_options"])
    if options.get("verbose"):
        put("logging", "level", "DEBUG")
    if options.get("dry_run"):
        put(None, "dry_run", True)
    if options.get("force"):
        put(None, "force", True)
    return overrides


def prompt_inclusion_policy(classified: ClassifiedResults) -> InclusionPolicy:
    """Ask the operator which mailboxes go into the batch."""
    summary = Text()
    summary.append(f"Ready:   {len(classified.ready)}\n", style="green")
    summary.append(f"Warning: {len(classified.warning)}\n", style="yellow")
    summary.append(f"Failed:  {len(classified.failed)}", style="red")
    console.print(Panel(summary, title="Validation Summary", border_style="blue", padding=(1, 2)))

    choice = Prompt.ask(
        "[cyan]Include which mailboxes?[/cyan] "
        "[dim](ready = Ready only, all = Ready and Warning, abort = no batch)[/dim]",
        choices=list(POLICY_CHOICES),
        default="ready",
        console=console,
    )
    return POLICY_CHOICES[choice]


def prompt_without_progress(progress: Progress, prompt: PolicyPrompt) -> PolicyPrompt:
    """Wrap ``prompt`` so the live progress display is stopped while it asks."""
    def ask(classified: ClassifiedResults) -> InclusionPolicy:
        progress.stop()
        try:
            return prompt(classified)
        finally:
            progress.start()
    return ask


class ProgressDisplay:
    """Renders validation progress events on a Rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task_id = None

    def __call__(self, event: ProgressEvent):
        if event.event_type == ProgressEventType.STARTED:
            self.task_id = self.progress.add_task(
                f"Validating {event.total} mailboxes", total=event.total, completed=event.current
            )
        elif self.task_id is None:
            return
        elif event.event_type == ProgressEventType.PROGRESS:
            self.progress.update(self.task_id, completed=event.current)
        elif event.event_type == ProgressEventType.COMPLETED:
            self.progress.update(self.task_id, completed=event.total, description="Validation complete")
        else:
            self.progress.update(self.task_id, description=f"Validation {event.event_type.value}")


def print_run_summary(state: MigrationRunState, orchestrator: MailboxMigrationOrchestrator):
    """Print the outcome of a finished run."""
    text = Text()
    if state.current_stage == RunStage.COMPLETED:
        text.append("✅ Run completed\n", style="bold green")
    else:
        text.append(f"❌ Run stopped in {state.current_stage.value}\n", style="bold red")
    text.append(f"Run ID: {state.run_id}\n", style="cyan")
    text.append(f"Mailboxes: {state.total_mailboxes} "
                f"(ready {len(state.ready_list)}, warning {len(state.warning_list)}, "
                f"failed {len(state.failed_list)})\n", style="dim")
    if state.report_location:
        text.append(f"Report: {state.report_location}\n", style="dim")

    if state.dry_run:
        text.append(f"Dry run: {len(state.selected_identities)} mailboxes would be submitted", style="yellow")
    elif orchestrator.outcome is not None:
        outcome = orchestrator.outcome
        text.append(f"Batch: {outcome.batch_name} [{outcome.status.value}]", style="green")
        if outcome.batch_id:
            text.append(f"\nBatch ID: {outcome.batch_id}", style="dim")
        if outcome.submitted:
            text.append(f"\nSubmitted: {len(outcome.submitted)}", style="dim")
        if outcome.failed:
            text.append(f"\nNot added: {len(outcome.failed)}", style="yellow")
        if outcome.confirmation_warning:
            text.append(f"\n⚠️  {outcome.confirmation_warning}", style="yellow")
        elif outcome.final_status:
            text.append(f"\nStatus: {outcome.final_status}", style="dim")

    console.print(Panel(text, title="Migration Run", border_style="green", padding=(1, 2)))


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool):
    """
    Mailbox Migration Assistant

    Validates mailboxes for migration readiness and submits the eligible
    ones as a migration batch.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    if version:
        console.print(f"Mailbox Migration Assistant version {__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.argument('input_file', type=click.Path(dir_okay=False), required=False)
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='Run configuration file (YAML or JSON)')
@click.option('--depth', type=click.Choice([d.value for d in ValidationDepth]), help='Validation depth')
@click.option('--concurrency', type=click.IntRange(1, MAX_CONCURRENCY), help='Mailboxes validated in parallel')
@click.option('--window-size', type=click.IntRange(min=1), help='Mailboxes per checkpointed window')
@click.option('--batch-name', help='Migration batch name')
@click.option('--source-endpoint', help='Source migration endpoint')
@click.option('--target-domain', help='Target delivery domain')
@click.option('--per-mailbox-tolerance', is_flag=True,
              help='Add mailboxes one by one with individual bad-item limits')
@click.option('--dry-run', is_flag=True, help='Validate and report without creating a batch')
@click.option('--force', is_flag=True, help='Include Warning mailboxes without asking')
@click.option('--resume', is_flag=True, help='Resume the run recorded in the state file')
@click.option('--state-file', type=click.Path(dir_okay=False), help='Run state file')
@click.option('--work-dir', type=click.Path(file_okay=False), help='Directory for run artifacts')
@click.option('--gateway', help='Gateway type or module:Class')
@click.option('--gateway-option', 'gateway_option', multiple=True, metavar='KEY=VALUE',
              help='Gateway option (repeatable)')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Write logs to this file')
@click.pass_context
def run(ctx: click.Context, input_file: Optional[str], config_file: Optional[str], **options):
    """Validate the mailboxes in INPUT_FILE and create a migration batch."""
    verbose = ctx.obj.get('verbose', False)
    gateway_options = parse_gateway_options(options.pop('gateway_option'))
    resume = options['resume']

    if not input_file and not resume:
        console.print("[red]An input file is required unless --resume is given[/red]")
        sys.exit(1)

    try:
        config: RunConfig = load_run_config(
            config_file,
            build_overrides(gateway_options=gateway_options, verbose=verbose, **options)
        )
        setup_logging(
            level=config.logging.level,
            log_file=config.logging.log_file,
            rich_console=config.logging.rich_console,
            structured_logging=config.logging.structured,
            console=console,
        )

        interactive = not config.force and sys.stdin.isatty()
        orchestrator = MailboxMigrationOrchestrator(config)

        if verbose:
            console.print(f"[dim]Config file: {config_file or 'None'}[/dim]")
            console.print(f"[dim]State file: {config.state_file}[/dim]")
            console.print(f"[dim]Gateway: {config.gateway.type}[/dim]")
            console.print(f"[dim]Dry run: {config.dry_run}[/dim]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        ) as progress:
            orchestrator.progress.add_callback(ProgressDisplay(progress))
            if interactive:
                orchestrator.prompt = prompt_without_progress(progress, prompt_inclusion_policy)
            state = asyncio.run(orchestrator.run(input_file, resume=resume))

        print_run_summary(state, orchestrator)

    except KeyboardInterrupt:
        console.print("[yellow]Run interrupted; resume it with --resume[/yellow]")
        sys.exit(1)
    except MailboxMigrationError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        if verbose and e.details:
            console.print(f"[dim]{escape(json.dumps(e.details, indent=2, default=str))}[/dim]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
        if verbose:
            import traceback
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
        sys.exit(1)


@main.command()
@click.option('--state-file', '-s', type=click.Path(dir_okay=False),
              default='./migration-runs/run_state.json', show_default=True, help='Run state file')
@click.option('--format', '-f', type=click.Choice(['table', 'json', 'yaml']),
              default='table', help='Output format')
def status(state_file: str, format: str):
    """Show the persisted state of a migration run."""
    try:
        state = RunStateStore(state_file).read()
    except MailboxMigrationError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)

    data = state.model_dump(mode="json")

    if format == 'json':
        console.print(json.dumps(data, indent=2))
        return
    if format == 'yaml':
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))
        return

    table = Table(
        title=f"Migration Run {state.run_id}",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
        title_style="bold blue"
    )
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    stage_style = {"Completed": "green", "Failed": "red"}.get(state.current_stage.value, "yellow")
    table.add_row("Stage", f"[{stage_style}]{state.current_stage.value}[/{stage_style}]")
    if state.failed_stage:
        table.add_row("Failed in", state.failed_stage.value)
        table.add_row("Error", state.error or "")
    table.add_row("Batch name", state.batch_name or "")
    table.add_row("Source file", state.source_file_path)
    table.add_row("Dry run", "yes" if state.dry_run else "no")
    table.add_row("Mailboxes", str(state.total_mailboxes))
    table.add_row("Ready / Warning / Failed",
                  f"{len(state.ready_list)} / {len(state.warning_list)} / {len(state.failed_list)}")
    table.add_row("Validation complete", "yes" if state.validation_complete else "no")
    if state.report_location:
        table.add_row("Report", state.report_location)
    if state.inclusion_policy:
        table.add_row("Inclusion policy", state.inclusion_policy)
    if state.batch_id:
        table.add_row("Batch ID", state.batch_id)
    if state.batch_outcome:
        table.add_row("Batch outcome", state.batch_outcome)
    table.add_row("Updated", state.updated_at.strftime("%Y-%m-%d %H:%M:%S"))

    console.print(table)


if __name__ == '__main__':
    main()

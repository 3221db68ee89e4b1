"""Thin CLI wrapper for image_release.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from image_release import __version__
from image_release.config import Settings, get_settings, print_settings_json
from image_release.log import configure_logging

app = typer.Typer(
    name="imagerelease",
    help="Image Release - build, publish and tag versioned container images",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "partial": "yellow",
    "cancelled": "magenta",
    "running": "blue",
    "pending": "white",
    "warning": "yellow",
    "skipped": "dim",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"image-release version {__version__}")
        raise typer.Exit()


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        console.print(f"[red]Invalid date: {value} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(code=1) from None


def _settings_with(ordinal: int | None) -> Settings:
    settings = get_settings()
    if ordinal is not None:
        settings = settings.model_copy(update={"run_ordinal": ordinal})
    return settings


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Image Release - build, publish and tag versioned container images."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration (secrets are never shown)."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    secrets_set = bool(settings.access_key_id and settings.secret_access_key)
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Registry:[/bold]")
    console.print(f"  Region:              {settings.region}")
    console.print(f"  Registry:            {settings.registry or '(not set)'}")
    console.print(f"  Image name:          {settings.image_name}")
    console.print(f"  Secrets configured:  {secrets_set}")
    console.print()
    console.print("[bold]Run:[/bold]")
    console.print(f"  Run ordinal:         {settings.run_ordinal}")
    console.print(f"  Run date:            {settings.run_date or '(today)'}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Workspace:           {settings.workspace}")
    console.print(f"  Description file:    {settings.description_file or '(none)'}")
    console.print(f"  Dockerfile:          {settings.dockerfile}")
    console.print(f"  Platform:            {settings.platform}")
    console.print(f"  Builder:             {settings.builder_name}")
    console.print()
    console.print("[bold]Caches:[/bold]")
    console.print(f"  Cache store:         {settings.cache_root}")
    console.print(f"  Dependency lock:     {settings.dependency_lock_file}")
    console.print(f"  Package lock:        {settings.package_lock_file}")
    console.print(f"  Layer cache dir:     {settings.layer_cache_dir}")
    console.print(
        f"  Saved domains:       {', '.join(d.value for d in settings.save_domains)}"
    )
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Retry attempts:      {settings.retry_attempts}")


@app.command("version")
def show_version(
    run_date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Run date (YYYY-MM-DD), default today"),
    ] = None,
    ordinal: Annotated[
        int | None,
        typer.Option("--ordinal", "-n", help="Run ordinal", min=0),
    ] = None,
) -> None:
    """Print the release version a run would use."""
    from image_release.version import resolve_version, utc_today

    settings = _settings_with(ordinal)
    if settings.run_ordinal is None:
        console.print("[red]Run ordinal is not set (use --ordinal)[/red]")
        raise typer.Exit(code=1)
    when = _parse_date(run_date) or settings.run_date or utc_today()
    console.print(resolve_version(when, settings.run_ordinal))


@app.command("run")
def run_release(
    description_file: Annotated[
        Path | None,
        typer.Option(
            "--description",
            "-f",
            help="YAML build description, relative to the workspace",
        ),
    ] = None,
    ordinal: Annotated[
        int | None,
        typer.Option("--ordinal", "-n", help="Run ordinal", min=0),
    ] = None,
    run_date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Run date (YYYY-MM-DD), default today"),
    ] = None,
    no_history: Annotated[
        bool,
        typer.Option("--no-history", help="Do not record the run in the database"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build, publish and tag one release."""
    from pydantic import ValidationError

    from image_release.builds.description import description_from_settings
    from image_release.context import create_context
    from image_release.db import open_history
    from image_release.errors import PipelineError
    from image_release.pipeline import ReleasePipeline
    from image_release.revision.tagger import RevisionTagger

    settings = _settings_with(ordinal)
    if description_file is not None:
        settings = settings.model_copy(update={"description_file": description_file})
    configure_logging(settings.log_level)
    today = _parse_date(run_date)

    try:
        description = description_from_settings(settings)
    except FileNotFoundError as e:
        console.print(f"[red]Build description not found: {e.filename}[/red]")
        raise typer.Exit(code=1) from None
    except (ValidationError, yaml.YAMLError, ValueError) as e:
        message = escape(str(e))
        console.print(f"[red]Invalid build description: {message}[/red]")
        raise typer.Exit(code=1) from None

    tagger = RevisionTagger(settings.workspace, settings.git_remote)
    try:
        head_commit = tagger.resolve_head_commit()
        context = create_context(
            settings, head_commit, today=today, platform=description.platform
        )
    except PipelineError as e:
        console.print(f"[red]Error ({e.code}): {escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None

    session_factory = None
    if not no_history:
        session_factory = open_history(settings.db_url)

    pipeline = ReleasePipeline.from_settings(
        settings, description, tagger, session_factory=session_factory
    )
    if not json_output:
        console.print(f"[blue]Releasing {context.version}...[/blue]")
    result = pipeline.run(context)

    if json_output:
        console.print(json.dumps(result.to_dict(), indent=2), soft_wrap=True)
    else:
        console.print()
        console.print(f"[bold]Release {result.version}:[/bold]")
        for outcome in result.stages.values():
            color = STATUS_COLORS.get(outcome.status.value, "white")
            line = f"  [{color}]{outcome.stage.value:<14} {outcome.status.value}[/{color}]"
            if outcome.message:
                line += f"  {escape(outcome.message)}"
            console.print(line)
        for warning in result.warnings:
            console.print(f"  [yellow]Warning: {escape(warning)}[/yellow]")
        console.print()
        color = STATUS_COLORS.get(result.status.value, "white")
        console.print(f"  Status: [{color}]{result.status.value}[/{color}]")
        if result.digest:
            console.print(f"  Digest: {result.digest}")
        if result.error and result.failed_stage:
            console.print(
                f"  [red]Failed at {result.failed_stage.value}: "
                f"{result.error.code}: {escape(result.error.message)}[/red]"
            )

    if not result.success:
        raise typer.Exit(code=1)


cache_app = typer.Typer(help="Inspect build caches")
app.add_typer(cache_app, name="cache")


@cache_app.command("keys")
def cache_keys(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the cache key of each domain and whether it is stored."""
    from image_release.cache.manager import CacheManager
    from image_release.cache.store import CacheStore
    from image_release.errors import CachePathError

    settings = get_settings()
    manager = CacheManager(CacheStore(settings.cache_root), settings=settings)
    try:
        rows = [
            {
                "domain": domain.value,
                "key": manager.key_for(domain),
                "stored": manager.store.lookup(domain, manager.key_for(domain))
                is not None,
                "paths": [str(p) for p in spec.paths],
            }
            for domain, spec in manager.domains.items()
        ]
    except CachePathError as e:
        console.print(f"[red]Error ({e.code}): {escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(json.dumps(rows, indent=2), soft_wrap=True)
        return
    for row in rows:
        marker = "[green]stored[/green]" if row["stored"] else "[yellow]missing[/yellow]"
        console.print(f"  [bold]{row['domain']}[/bold]: {row['key']} ({marker})")


runs_app = typer.Typer(help="Inspect release run history")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    status: Annotated[
        str | None,
        typer.Option(
            "--status",
            "-s",
            help="Filter by status (succeeded/failed/partial/cancelled/running)",
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List release runs, newest first."""
    from image_release.db import open_history
    from image_release.runs.service import list_runs, run_to_dict
    from image_release.types import RunStatus

    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: " + ", ".join(s.value for s in RunStatus))
            raise typer.Exit(code=1) from None

    factory = open_history(get_settings().db_url)

    with factory() as session:
        runs = list_runs(session, status=status_filter, limit=limit)

        if not runs:
            if json_output:
                console.print("[]")
            else:
                console.print("[yellow]No release runs found[/yellow]")
            return

        if json_output:
            output = [run_to_dict(r) for r in runs]
            console.print(json.dumps(output, indent=2), soft_wrap=True)
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        console.print()
        for r in runs:
            color = STATUS_COLORS.get(r.status, "white")
            console.print(f"  [{color}]{r.version}[/{color}]  {r.status}")
            console.print(f"    Commit: {r.head_commit[:12]}")
            if r.image_digest:
                console.print(f"    Digest: {r.image_digest}")
            if r.failed_stage:
                console.print(f"    Failed stage: {r.failed_stage}")
            if r.error_message:
                console.print(f"    Error: {escape(r.error_message)}")
            console.print()


@runs_app.command("show")
def runs_show(
    version: Annotated[str, typer.Argument(help="Release version to show")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show one release run and its stages."""
    from image_release.db import open_history
    from image_release.runs.service import RunNotFoundError, get_run, run_to_dict

    factory = open_history(get_settings().db_url)

    with factory() as session:
        try:
            run = get_run(session, version)
        except RunNotFoundError:
            console.print(f"[red]Run not found: {version}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            console.print(json.dumps(run_to_dict(run), indent=2), soft_wrap=True)
            return

        color = STATUS_COLORS.get(run.status, "white")
        console.print(f"[bold]Release {run.version}[/bold]")
        console.print(f"  Status: [{color}]{run.status}[/{color}]")
        console.print(f"  Commit: {run.head_commit}")
        console.print(f"  Repository: {run.repository}")
        if run.image_digest:
            console.print(f"  Digest: {run.image_digest}")
        if run.error_message:
            message = escape(run.error_message)
            console.print(f"  Error ({run.error_code}): {message}")
        console.print()
        console.print("[bold]Stages:[/bold]")
        for s in run.stages:
            stage_color = STATUS_COLORS.get(s.status, "white")
            line = f"  [{stage_color}]{s.stage:<14} {s.status}[/{stage_color}]"
            if s.message:
                line += f"  {escape(s.message)}"
            console.print(line)


if __name__ == "__main__":
    app()

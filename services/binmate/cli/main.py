"""
binmate command line.

Usage:
    binmate add https://github.com/cli/cli/releases/download/v2.30.0/gh_2.30.0_linux_amd64.tar.gz
    binmate install gh
    binmate switch gh v2.29.0
    binmate check --all

Each command opens the store (applying migrations), runs one lifecycle
operation and closes it again. Errors are printed as a single
``error: ...`` line on stderr with exit status 1.
"""

import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, NoReturn, TypeVar

import click

from binmate import __version__
from binmate.config import Settings, load_settings
from binmate.context import EngineContext
from binmate.errors import BinmateError
from binmate.logging_config import configure_logging
from binmate.paths import Paths
from binmate.providers.github import LATEST
from binmate.repositories.logs import DEFAULT_LIMIT
from binmate.services import lifecycle_service

T = TypeVar("T")


def _fail(error: BinmateError | str) -> NoReturn:
    click.echo(f"error: {error}", err=True)
    sys.exit(1)


def _settings(ctx: click.Context) -> Settings:
    """Load settings once per invocation and configure logging from them."""
    settings = ctx.obj.get("settings")
    if settings is None:
        overrides: dict[str, Any] = {"log_level": ctx.obj.get("log_level")}
        if ctx.obj.get("json_logs"):
            overrides["json_logs"] = True
        try:
            settings = load_settings(ctx.obj.get("config_path"), **overrides)
            configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
        except BinmateError as e:
            _fail(e)
        ctx.obj["settings"] = settings
    return settings


def _run(ctx: click.Context, operation: Callable[[EngineContext], Awaitable[T]]) -> T:
    settings = _settings(ctx)

    async def main() -> T:
        engine = await EngineContext.create(
            settings, env=ctx.obj.get("env"), transport=ctx.obj.get("transport")
        )
        async with engine:
            return await operation(engine)

    try:
        return asyncio.run(main())
    except BinmateError as e:
        _fail(e)


@click.group()
@click.version_option(version=__version__, prog_name="binmate")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.yaml (default: ~/.binmate/config.yaml).",
)
@click.option(
    "--log-level",
    "-l",
    default=None,
    help="silent, debug, info, warn or error (default: warn).",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr.")
@click.pass_context
def cli(
    ctx: click.Context, config_path: str | None, log_level: str | None, json_logs: bool
) -> None:
    """Install, switch and update binaries from upstream releases."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level
    ctx.obj["json_logs"] = json_logs


# --- Lifecycle ---


@cli.command()
@click.argument("binary_id")
@click.option("--version", "-v", "version", default=LATEST, show_default=True)
@click.pass_context
def install(ctx: click.Context, binary_id: str, version: str) -> None:
    """Install a version of BINARY_ID and make it active."""
    result = _run(ctx, lambda engine: lifecycle_service.install(engine, binary_id, version))
    if result.already_installed:
        click.echo(f"{binary_id} {result.version} is already installed")
        return
    click.echo(f"Installed {binary_id} {result.version} -> {result.symlink_path}")


@cli.command()
@click.argument("binary_id")
@click.argument("version")
@click.pass_context
def switch(ctx: click.Context, binary_id: str, version: str) -> None:
    """Make an installed VERSION of BINARY_ID the active one."""
    _run(ctx, lambda engine: lifecycle_service.switch(engine, binary_id, version))
    click.echo(f"Switched {binary_id} to {version}")


@cli.command()
@click.argument("binary_id", required=False)
@click.option("--all", "update_all", is_flag=True, help="Update every binary.")
@click.pass_context
def update(ctx: click.Context, binary_id: str | None, update_all: bool) -> None:
    """Install the latest release of BINARY_ID (or of every binary)."""
    if update_all == bool(binary_id):
        raise click.UsageError("give a binary id or --all")

    if binary_id:
        result = _run(ctx, lambda engine: lifecycle_service.update(engine, binary_id))
        if result.already_installed:
            click.echo(f"{binary_id} is up to date ({result.version})")
        else:
            click.echo(f"Updated {binary_id} to {result.version}")
        return

    report = _run(ctx, lifecycle_service.update_all)
    for result in report.results:
        state = "up to date" if result.already_installed else "updated"
        click.echo(f"{result.binary.user_id}: {result.version} ({state})")
    for skipped_id in report.skipped:
        click.echo(f"{skipped_id}: skipped (imported)")
    for failed_id, message in report.failures.items():
        click.echo(f"{failed_id}: error: {message}", err=True)
    if not report.ok:
        sys.exit(1)


def _check_line(result: lifecycle_service.CheckResult) -> str:
    if result.status == lifecycle_service.CHECK_UP_TO_DATE:
        return f"{result.binary_id}: {result.current} (up to date)"
    if result.status == lifecycle_service.CHECK_UPDATE_AVAILABLE:
        return f"{result.binary_id}: {result.current} -> {result.latest} (update available)"
    if result.status == lifecycle_service.CHECK_NOT_INSTALLED:
        return f"{result.binary_id}: not installed (latest {result.latest})"
    return f"{result.binary_id}: error: {result.error}"


@cli.command()
@click.argument("binary_id", required=False)
@click.option("--all", "check_all", is_flag=True, help="Check every binary.")
@click.pass_context
def check(ctx: click.Context, binary_id: str | None, check_all: bool) -> None:
    """Report whether newer releases are available."""
    if check_all == bool(binary_id):
        raise click.UsageError("give a binary id or --all")

    skipped: list[str] = []
    if binary_id:
        results = [_run(ctx, lambda engine: lifecycle_service.check(engine, binary_id))]
    else:
        report = _run(ctx, lifecycle_service.check_all)
        results, skipped = report.results, report.skipped

    for result in results:
        click.echo(_check_line(result))
    for skipped_id in skipped:
        click.echo(f"{skipped_id}: skipped (imported)")
    available = sum(1 for r in results if r.update_available)
    errors = sum(1 for r in results if r.status == lifecycle_service.CHECK_ERROR)
    if available:
        click.echo(f"{available} update(s) available")
    elif not errors:
        click.echo("All binaries are up to date")
    if errors:
        sys.exit(1)


@cli.command()
@click.argument("binary_id")
@click.option("--files", "delete_files", is_flag=True, help="Also delete symlink and payloads.")
@click.pass_context
def remove(ctx: click.Context, binary_id: str, delete_files: bool) -> None:
    """Remove BINARY_ID from the catalogue."""
    result = _run(ctx, lambda engine: lifecycle_service.remove(engine, binary_id, delete_files))
    click.echo(f"Removed {binary_id} ({len(result.installations)} installation(s))")
    for path in result.removed_paths:
        click.echo(f"  deleted {path}")


# --- Catalogue ---


@cli.command()
@click.argument("source")
@click.option("--authenticated", is_flag=True, help="Use the provider token for this binary.")
@click.pass_context
def add(ctx: click.Context, source: str, authenticated: bool) -> None:
    """Add a binary from a release download URL or from the config file.

    SOURCE is either a URL such as
    https://github.com/cli/cli/releases/download/v2.30.0/gh_2.30.0_linux_amd64.tar.gz
    or the id of a binary declared in the config file.
    """
    if "://" in source:
        added = _run(
            ctx, lambda engine: lifecycle_service.add_from_url(engine, source, authenticated)
        )
        user_id = added.binary.user_id
        if not added.created:
            click.echo(f"{user_id} already exists")
            return
        click.echo(f"Added {user_id} ({added.binary.provider_path})")
        click.echo(f"Install it with: binmate install {user_id} --version {added.version}")
        return

    status, binary = _run(ctx, lambda engine: lifecycle_service.sync_binary(engine, source))
    click.echo(f"{binary.user_id}: {status}")


@cli.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", "-n", required=True, help="Binary id and link name.")
@click.option("--version", "-v", "version", default=None, help="Version label.")
@click.option("--keep-location", is_flag=True, help="Link to the file where it is.")
@click.pass_context
def import_(
    ctx: click.Context, path: str, name: str, version: str | None, keep_location: bool
) -> None:
    """Import an executable that is already on disk."""
    result = _run(
        ctx,
        lambda engine: lifecycle_service.import_binary(
            engine, path, name, version=version, keep_location=keep_location
        ),
    )
    if result.already_installed:
        click.echo(f"{name} {result.version} is already installed")
        return
    click.echo(f"Imported {name} {result.version} -> {result.symlink_path}")


def _format_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


@cli.command(name="list")
@click.argument("binary_id", required=False)
@click.pass_context
def list_(ctx: click.Context, binary_id: str | None) -> None:
    """List binaries, or the installed versions of BINARY_ID."""
    if binary_id:
        listing = _run(ctx, lambda engine: lifecycle_service.list_versions(engine, binary_id))
        if not listing.installations:
            click.echo(f"No versions of {binary_id} installed")
            return
        for inst in listing.installations:
            marker = "*" if inst.id == listing.active_installation_id else " "
            click.echo(
                f"{marker} {inst.version:<20} {_format_time(inst.installed_at):<17} "
                f"{inst.installed_path}"
            )
        return

    details = _run(ctx, lifecycle_service.list_binaries)
    if not details:
        click.echo("No binaries configured")
        return
    click.echo(f"{'ID':<20} {'ACTIVE':<16} {'INSTALLED':>9}  {'PROVIDER':<10} PATH")
    for item in details:
        binary = item.binary
        click.echo(
            f"{binary.user_id:<20} {item.active_version:<16} {item.install_count:>9}  "
            f"{binary.provider:<10} {binary.provider_path}"
        )


@cli.command()
@click.argument("binary_id")
@click.option("--remote", type=int, default=None, help="List N upstream releases instead.")
@click.pass_context
def versions(ctx: click.Context, binary_id: str, remote: int | None) -> None:
    """Show versions of BINARY_ID, installed or upstream."""
    if remote is None:
        ctx.invoke(list_, binary_id=binary_id)
        return
    tags = _run(
        ctx, lambda engine: lifecycle_service.list_remote_versions(engine, binary_id, remote)
    )
    for tag in tags:
        click.echo(tag)


@cli.command()
@click.argument("binary_id")
@click.option("--version", "-v", "version", default=LATEST, show_default=True)
@click.pass_context
def notes(ctx: click.Context, binary_id: str, version: str) -> None:
    """Print the release notes of a release."""
    body = _run(ctx, lambda engine: lifecycle_service.release_notes(engine, binary_id, version))
    click.echo(body or "No release notes")


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Sync binaries declared in the config file into the catalogue."""
    result = _run(ctx, lifecycle_service.sync_config)
    click.echo(
        f"created {len(result.created)}, updated {len(result.updated)}, "
        f"unchanged {len(result.unchanged)}, deleted {len(result.deleted)}"
    )


# --- Housekeeping ---


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config(ctx: click.Context, as_json: bool) -> None:
    """Show the loaded configuration and database location."""
    settings = _settings(ctx)
    paths = Paths.from_env(
        ctx.obj.get("env") or os.environ,
        data_dir=settings.data_dir,
        cache_dir=settings.cache_dir,
        bin_dir=settings.bin_dir or settings.global_config.install_path,
    )
    data = settings.model_dump(mode="json")
    data["database_path"] = str(paths.database_path)
    data["bin_dir"] = str(paths.bin_dir)
    data["cache_dir"] = str(paths.cache_dir)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    click.echo(f"config file:  {settings.config_path or '(none)'}")
    click.echo(f"database:     {data['database_path']}")
    click.echo(f"bin dir:      {data['bin_dir']}")
    click.echo(f"cache dir:    {data['cache_dir']}")
    click.echo(f"version:      {settings.version}")
    click.echo(f"binaries:     {len(settings.binaries)}")
    for binary in settings.binaries:
        click.echo(f"  {binary.id:<18} {binary.provider}:{binary.path}")


@cli.command()
@click.option("--limit", "-n", type=int, default=DEFAULT_LIMIT, show_default=True)
@click.option("--failures", is_flag=True, help="Only failed operations.")
@click.pass_context
def logs(ctx: click.Context, limit: int, failures: bool) -> None:
    """Show recent operations."""

    async def fetch(engine: EngineContext) -> list:
        if failures:
            return await engine.store.logs.get_failures(limit)
        return await engine.store.logs.get_recent(limit)

    for entry in _run(ctx, fetch):
        subject = entry.entity_id or ""
        line = (
            f"{_format_time(entry.timestamp)}  {entry.operation_type:<11} "
            f"{entry.operation_status:<8} {subject}"
        )
        if entry.duration_ms is not None:
            line += f" ({entry.duration_ms}ms)"
        if entry.error_details:
            line += f": {entry.error_details}"
        click.echo(line.rstrip())


@cli.command()
@click.option("--max-age-days", type=int, default=30, show_default=True)
@click.option("--limit", type=int, default=lifecycle_service.DEFAULT_CLEAN_LIMIT, show_default=True)
@click.pass_context
def clean(ctx: click.Context, max_age_days: int, limit: int) -> None:
    """Delete cached archives not used recently."""
    result = _run(
        ctx,
        lambda engine: lifecycle_service.clean_cache(
            engine, max_age=timedelta(days=max_age_days), limit=limit
        ),
    )
    click.echo(f"Removed {len(result.removed)} cached archive(s), {result.freed_bytes} bytes")


@cli.command()
def version() -> None:
    """Show the binmate version."""
    click.echo(f"binmate {__version__}")


if __name__ == "__main__":
    cli()

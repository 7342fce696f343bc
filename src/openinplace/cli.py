"""Command line interface for OpenInPlace."""

from __future__ import annotations

import difflib
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, NoReturn

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from openinplace.app import OpenInPlaceApp
from openinplace.config import ConfigError, ConfigManager, OpenInPlaceConfig, resolve_with_precedence
from openinplace.errors import (
    AccessDeniedError,
    BookmarkError,
    CoordinationError,
    MaterializationError,
    OpenInPlaceError,
)
from openinplace.handoff import default_root_prompt
from openinplace.logs import configure_logging
from openinplace.models import LocationRef
from openinplace.sessions import LocationSession, SessionListener, SessionState
from openinplace.state import StateError

console = Console()


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: BaseException | None = None,
) -> NoReturn:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output.
        click.ClickException: For non-JSON flows.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _error_code(error: BaseException) -> str:
    """Return the machine-readable code used for ``error``."""
    if isinstance(error, AccessDeniedError):
        return "access_denied"
    if isinstance(error, CoordinationError):
        return "coordination_error"
    if isinstance(error, MaterializationError):
        return "materialization_error"
    if isinstance(error, BookmarkError):
        return "bookmark_error"
    if isinstance(error, FileNotFoundError):
        return "not_found"
    if isinstance(error, OSError):
        return "io_error"
    if isinstance(error, UnicodeError):
        return "decode_error"
    return "internal_error"


def _show_alert(error: BaseException) -> None:
    """Render ``error`` as a dismissible alert panel."""
    console.print(Panel(str(error) or type(error).__name__, title="Error", border_style="red"))


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print ``message`` unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """

    if quiet and mode != "error":
        return
    console.print(message)


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(f"Cannot assign into '{segment}' because it is not a mapping in the config file.")
        node = existing
    node[path[-1]] = value


def _location_payload(location: LocationRef) -> dict[str, Any]:
    return location.model_dump(mode="json")


def _wait(submit: Callable[[Callable[..., None]], Future[None]]) -> tuple[Any, ...]:
    """Run a callback-style operation to completion and return the callback arguments."""
    outcome: list[tuple[Any, ...]] = []
    submit(lambda *args: outcome.append(args)).result()
    return outcome[0]


# ---------------------------------------------------------------------- #
# Context helpers                                                        #
# ---------------------------------------------------------------------- #


def _manager(ctx: click.Context) -> ConfigManager:
    config_path = (ctx.obj or {}).get("config_path")
    return ConfigManager(Path(config_path) if config_path else None)


def _load_config(ctx: click.Context, *, json_output: bool = False) -> OpenInPlaceConfig:
    try:
        config = _manager(ctx).load()
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    configure_logging(config.logging)
    return config


def _output_modes(ctx: click.Context, config: OpenInPlaceConfig, json_output: bool, quiet: bool) -> tuple[bool, bool]:
    """Resolve JSON and quiet flags against configured CLI defaults."""
    explicit_json = ctx.get_parameter_source("json_output") == ParameterSource.COMMANDLINE
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    json_enabled = json_output if explicit_json else config.cli.json_default
    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    if json_enabled and quiet_enabled and explicit_quiet:
        raise click.ClickException("--json cannot be combined with --quiet.")
    return json_enabled, quiet_enabled


def _operation_timeout(config: OpenInPlaceConfig) -> float:
    return (
        config.coordination.lock_timeout_seconds
        + config.coordination.relinquish_timeout_seconds
        + config.materialization.timeout_seconds
    )


class _ConsoleListener(SessionListener):
    """Render session events on the console."""

    def __init__(self, *, json_output: bool, quiet: bool) -> None:
        self.json_output = json_output
        self.quiet = quiet
        self.errors: list[BaseException] = []

    def on_state_changed(self, session: LocationSession, state: SessionState) -> None:
        if self.json_output:
            console.print_json(data={"event": "state", "state": state.value})
            return
        _emit_message(f"[cyan]{session.location or ''} is {state.value}.[/cyan]", mode="detail", quiet=self.quiet)

    def on_listing(self, session: LocationSession, entries: list[LocationRef]) -> None:
        if self.json_output:
            console.print_json(data={"event": "listing", "entries": [_location_payload(e) for e in entries]})
            return
        _emit_message(_entries_table(entries, title=str(session.location or "")), mode="detail", quiet=self.quiet)

    def on_content(self, session: LocationSession, text: str) -> None:
        if self.json_output:
            console.print_json(data={"event": "content", "length": len(text)})
            return
        lines = len(text.splitlines())
        _emit_message(f"[green]Loaded {lines} line(s) from {session.location}.[/green]", mode="detail", quiet=self.quiet)

    def on_error(self, session: LocationSession, error: BaseException) -> None:
        self.errors.append(error)
        if self.json_output:
            console.print_json(data={"event": "error", "code": _error_code(error), "message": str(error)})
            return
        _show_alert(error)

    def on_deleted(self, session: LocationSession) -> None:
        if self.json_output:
            console.print_json(data={"event": "deleted"})
            return
        _emit_message("[yellow]<DELETED>[/yellow]", mode="warning", quiet=self.quiet)


def _entries_table(entries: list[LocationRef], *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Placeholder")
    for entry in entries:
        table.add_row(entry.name, "dir" if entry.is_directory else "file", "yes" if entry.placeholder else "")
    return table


# ---------------------------------------------------------------------- #
# Commands                                                               #
# ---------------------------------------------------------------------- #


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="openinplace")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=str),
    envvar="OPENINPLACE_CONFIG",
    help="Configuration file to use instead of ~/.openinplace/config.yaml.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Open, watch, and edit files in place alongside other processes."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("path", type=click.Path(path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit the added location as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def add(ctx: click.Context, path: str, json_output: bool, quiet: bool) -> None:
    """Grant PATH and append it to the bookmark list."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled, quiet_enabled = _output_modes(ctx, config, json_output, quiet)
    with OpenInPlaceApp(config) as app:
        try:
            location = app.add_location(path)
        except (OpenInPlaceError, OSError, StateError) as exc:
            _handle_cli_error(str(exc), code=_error_code(exc), json_output=json_enabled, original=exc)
            return
    if json_enabled:
        console.print_json(data={"added": _location_payload(location)})
        return
    _emit_message(f"[green]Added {location.path}.[/green]", mode="detail", quiet=quiet_enabled)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit bookmarks as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def bookmarks(ctx: click.Context, json_output: bool, quiet: bool) -> None:
    """List bookmarked locations in their saved order."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled, quiet_enabled = _output_modes(ctx, config, json_output, quiet)
    with OpenInPlaceApp(config) as app:
        locations = app.locations()

    if json_enabled:
        console.print_json(data={"bookmarks": [_location_payload(location) for location in locations]})
        return
    if not locations:
        _emit_message("[yellow]No bookmarks yet. Use `openinplace add PATH`.[/yellow]", mode="warning", quiet=quiet_enabled)
        return
    table = Table(title="Bookmarks")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Kind")
    for index, location in enumerate(locations):
        table.add_row(str(index), location.name, location.path, "dir" if location.is_directory else "file")
    _emit_message(table, mode="detail", quiet=quiet_enabled)


@cli.command()
@click.argument("index", type=int)
@click.pass_context
def remove(ctx: click.Context, index: int) -> None:
    """Forget the bookmark at INDEX (as shown by `bookmarks`)."""
    config = _load_config(ctx)
    with OpenInPlaceApp(config) as app:
        try:
            removed = app.remove_location(index)
        except IndexError as exc:
            raise click.ClickException(f"No bookmark at index {index}.") from exc
    console.print(f"[green]Removed {removed.path}.[/green]")


@cli.command("ls")
@click.argument("path", type=click.Path(path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit entries as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def ls_command(ctx: click.Context, path: str, json_output: bool, quiet: bool) -> None:
    """List the directory at PATH with placeholders resolved."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled, quiet_enabled = _output_modes(ctx, config, json_output, quiet)
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        entries, error = _wait(lambda done: app.access.list(location, done))
    if error is not None:
        _handle_cli_error(str(error), code=_error_code(error), json_output=json_enabled, original=error)
        return
    if json_enabled:
        console.print_json(data={"path": location.path, "entries": [_location_payload(e) for e in entries]})
        return
    _emit_message(_entries_table(entries, title=location.path), mode="detail", quiet=quiet_enabled)


@cli.command()
@click.argument("path", type=click.Path(path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit the content as JSON.")
@click.pass_context
def cat(ctx: click.Context, path: str, json_output: bool) -> None:
    """Print the file at PATH through a coordinated read."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled = json_output or config.cli.json_default
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        text, error = _wait(lambda done: app.access.read(location, done))
    if error is not None:
        _handle_cli_error(str(error), code=_error_code(error), json_output=json_enabled, original=error)
        return
    if json_enabled:
        console.print_json(data={"path": location.path, "text": text})
        return
    click.echo(text, nl=False)


@cli.command()
@click.argument("path", type=click.Path(path_type=str))
@click.option("--text", type=str, help="Text to write; standard input is used when omitted.")
@click.pass_context
def write(ctx: click.Context, path: str, text: str | None) -> None:
    """Overwrite PATH in place through a coordinated write."""
    config = _load_config(ctx)
    if text is None:
        text = click.get_text_stream("stdin").read()
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        (error,) = _wait(lambda done: app.access.write(location, text, done))
    if error is not None:
        _handle_cli_error(str(error), code=_error_code(error), json_output=False, original=error)
        return
    console.print(f"[green]Wrote {len(text)} character(s) to {location.path}.[/green]")


@cli.command("rm")
@click.argument("path", type=click.Path(path_type=str))
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def rm_command(ctx: click.Context, path: str, yes: bool) -> None:
    """Delete the file or directory at PATH through a coordinated write."""
    config = _load_config(ctx)
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        if not yes:
            click.confirm(f"Delete {location.path}?", abort=True)
        (error,) = _wait(lambda done: app.access.delete(location, done))
    if error is not None:
        _handle_cli_error(str(error), code=_error_code(error), json_output=False, original=error)
        return
    console.print(f"[green]Deleted {location.path}.[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=str))
@click.option("--duration", type=float, help="Stop after this many seconds.")
@click.option("--json", "json_output", is_flag=True, help="Emit session events as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def watch(ctx: click.Context, path: str, duration: float | None, json_output: bool, quiet: bool) -> None:
    """Present PATH and report changes made by other processes."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled, quiet_enabled = _output_modes(ctx, config, json_output, quiet)
    if duration is not None and duration <= 0:
        raise click.ClickException("--duration must be greater than zero.")

    listener = _ConsoleListener(json_output=json_enabled, quiet=quiet_enabled)
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        if location.is_directory:
            session: LocationSession = app.open_listing(location, listener)
        else:
            session = app.open_editor(location, listener)
        if duration is not None:
            app.loop.call_later(duration, app.loop.stop)
        if not json_enabled:
            _emit_message(f"[cyan]Watching {location.path}. Press Ctrl+C to stop.[/cyan]", mode="detail", quiet=quiet_enabled)
        try:
            app.loop.run_forever()
        except KeyboardInterrupt:
            _emit_message("[yellow]Watch stopped by user request.[/yellow]", mode="warning", quiet=quiet_enabled)
        finally:
            app.lifecycle.remove(session)
            session.close()


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.pass_context
def edit(ctx: click.Context, path: str) -> None:
    """Edit PATH in an external editor and save it back in place."""
    config = _load_config(ctx)
    listener = _ConsoleListener(json_output=False, quiet=True)
    timeout = _operation_timeout(config)
    with OpenInPlaceApp(config) as app:
        session = app.open_editor(app.location_for(path), listener)
        loaded = app.loop.run_until(
            lambda: session.state in (SessionState.OPEN, SessionState.DELETED) or bool(listener.errors),
            timeout=timeout,
        )
        try:
            if listener.errors:
                raise click.ClickException(str(listener.errors[0]))
            if not loaded or session.state is not SessionState.OPEN:
                raise click.ClickException(f"Could not open {path}.")

            original = session.text
            edited = click.edit(original, extension=Path(path).suffix or ".txt")
            if edited is None or edited == original:
                console.print("[yellow]No changes detected.[/yellow]")
                return

            session.set_text(edited)
            session.flush()
            saved = app.loop.run_until(
                lambda: not session.writer.dirty and not session.writer.in_flight,
                timeout=timeout,
            )
            if listener.errors:
                raise click.ClickException(str(listener.errors[-1]))
            if not saved:
                raise click.ClickException(f"Timed out saving {path}.")
            console.print(f"[green]Saved {session.title}.[/green]")
        finally:
            app.lifecycle.remove(session)
            session.close()


@cli.command("open-url")
@click.argument("url")
@click.pass_context
def open_url(ctx: click.Context, url: str) -> None:
    """Handle an open-in-place URL sent by another application."""
    config = _load_config(ctx)
    with OpenInPlaceApp(config, acquire_root=default_root_prompt, handle_error=_show_alert) as app:
        opened: list[LocationRef] = []

        def _open(location: LocationRef) -> None:
            app.open_location(location)
            opened.append(location)

        app.deep_links.open_callback = _open
        if not app.deep_links.handle_url(url):
            raise click.ClickException("Not an open-in-place URL.")
    for location in opened:
        console.print(f"[green]Opened {location.path}.[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit status information as JSON.")
@click.pass_context
def status(ctx: click.Context, path: str, json_output: bool) -> None:
    """Show version-control status of PATH when available."""
    config = _load_config(ctx, json_output=json_output)
    json_enabled = json_output or config.cli.json_default
    with OpenInPlaceApp(config) as app:
        location = app.location_for(path)
        service = app.status.lookup(location)
        if service is None:
            if json_enabled:
                console.print_json(data={"path": location.path, "available": False})
            else:
                console.print(f"[yellow]No status available for {location.path}.[/yellow]")
            return
        summary, error = _wait(service.fetch_status)
        info, _ = _wait(service.fetch_document_info)

    if error is not None:
        _handle_cli_error(str(error), code="status_error", json_output=json_enabled, original=error)
        return
    if json_enabled:
        payload: dict[str, Any] = {
            "path": location.path,
            "available": True,
            "lines_added": summary.lines_added,
            "lines_deleted": summary.lines_deleted,
            "binary_modified": summary.binary_modified,
            "is_current": summary.is_current,
        }
        if info is not None:
            payload["repository"] = info.repository
            payload["relative_path"] = info.path
        console.print_json(data=payload)
        return

    table = Table(title=f"Status for {location.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    if info is not None:
        table.add_row("Repository", info.repository)
        table.add_row("Path", info.path)
    table.add_row("Status", summary.describe())
    console.print(table)


@cli.group()
def config() -> None:
    """Manage OpenInPlace configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = _manager(ctx)
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = _manager(ctx)
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'autosave.quiescence_seconds'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    file_data = manager.load_file_overrides()
    try:
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=OpenInPlaceConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()
    diff = list(
        difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    # The timestamp line always changes; anything beyond it is a real edit.
    changed = [
        line
        for line in diff
        if line.startswith(("+", "-"))
        and not line.startswith(("+++", "---"))
        and "Last updated" not in line
    ]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()

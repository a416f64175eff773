"""Command line entry point: config, login, discovery, target lists, and posting."""

from __future__ import annotations

import json
from pathlib import Path
import signal
import sys

import typer

from . import __version__
from .auth import (
    existing_storage_state,
    login_and_save_storage_state,
    login_command_hint,
    resolve_profile_name,
)
from .config import (
    config_to_dict,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
    state_dir,
)
from .coordinator import Coordinator
from .diagnostics.events import JsonlEventLogger
from .dispatch.graph import GraphPublisher
from .errors import (
    AuthError,
    BrowserError,
    BulkImportError,
    ConfigError,
    DispatchError,
    HandoffError,
)
from .importer import merge_candidates, parse_bulk_import
from .logging import configure_logging
from .messages import ControlMessage, Done, Log, Progress, message_to_dict
from .models import CandidateEntity, DispatchTarget, candidate_to_dict, outcome_to_dict, target_to_dict
from .runner import MAILBOX_FILENAME, check_session, run_dispatch, run_group_discovery
from .targets import default_targets_path, load_targets, save_targets

app = typer.Typer(help="Discover social-platform groups and publish paced posts to them.")

config_app = typer.Typer(help="Create and inspect the TOML config.")
auth_app = typer.Typer(help="Save a logged-in browser session per profile.")
session_app = typer.Typer(help="Host platform session commands.")
groups_app = typer.Typer(help="Group discovery and target list commands.")

app.add_typer(config_app, name="config")
app.add_typer(auth_app, name="auth")
app.add_typer(session_app, name="session")
app.add_typer(groups_app, name="groups")


def _config_path_option() -> typer.models.OptionInfo:
    return typer.Option(None, "--path", help="Config TOML path (default: $GROUPCAST_CONFIG or the user config dir).")


def _profile_option(purpose: str) -> typer.models.OptionInfo:
    return typer.Option(None, "--profile", help=f"Profile {purpose} (default: app.default_profile).")


def _fail(action: str, exc: Exception, *, code: int = 2) -> typer.Exit:
    typer.secho(f"{action} failed: {exc}", err=True, fg=typer.colors.RED)
    return typer.Exit(code)


@config_app.command("init")
def config_init(
    path: str | None = _config_path_option(),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    try:
        written_path = init_default_config(path, force=force)
    except ConfigError as exc:
        raise _fail("Config init", exc) from exc

    typer.echo(f"Wrote default config to {written_path}")


@config_app.command("show")
def config_show(
    path: str | None = _config_path_option(),
    as_json: bool = typer.Option(False, "--json", help="Render resolved config as JSON."),
) -> None:
    resolved_path = resolve_config_path(path)
    try:
        config = load_runtime_config(path)
    except ConfigError as exc:
        raise _fail("Config show", exc) from exc

    payload = {
        "path": str(resolved_path),
        "config": config_to_dict(config),
    }
    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Resolved config path: {payload['path']}")
    typer.echo(f"Default profile: {config.app.default_profile}")
    typer.echo(f"Groups URL: {config.platform.groups_url}")
    typer.echo(f"Dispatch delay: {config.dispatch.delay_seconds:g}s")


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    profile: str | None = _profile_option("to save the login under"),
    path: str | None = _config_path_option(),
) -> None:
    try:
        config = load_runtime_config(path)
        result = login_and_save_storage_state(config, _resolve_profile(profile, ctx), path)
    except (ConfigError, AuthError) as exc:
        raise _fail("Auth login", exc) from exc

    typer.echo(f"Saved storage_state to {result.storage_state_path}")
    if not result.has_session_cookie:
        typer.secho(
            "Warning: no session cookie was captured; login may not have completed.",
            err=True,
            fg=typer.colors.YELLOW,
        )


@session_app.command("check")
def session_check(
    ctx: typer.Context,
    profile: str | None = _profile_option("whose saved session to check"),
    path: str | None = _config_path_option(),
    as_json: bool = typer.Option(False, "--json", help="Render session status as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        profile_name = resolve_profile_name(_resolve_profile(profile, ctx), config)
        storage = existing_storage_state(profile_name, path)
        status = check_session(config, storage_state=storage, headless=True)
    except (ConfigError, AuthError, BrowserError) as exc:
        raise _fail("Session check", exc) from exc

    if as_json:
        typer.echo(json.dumps(message_to_dict(status), indent=2, sort_keys=True))
    elif status.logged:
        typer.echo(f"Logged in: {status.user_name}")
    else:
        typer.echo("Not logged in.")
        typer.echo(f"- Run `{login_command_hint(profile_name, path)}` to authenticate.")
    if not status.logged:
        raise typer.Exit(2)


@groups_app.command("discover")
def groups_discover(
    ctx: typer.Context,
    profile: str | None = _profile_option("whose saved session drives the browser"),
    path: str | None = _config_path_option(),
    targets_file: str | None = typer.Option(
        None, "--targets", help="Target list JSON file to merge results into."
    ),
    as_json: bool = typer.Option(False, "--json", help="Render discovered groups as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        profile_name = resolve_profile_name(_resolve_profile(profile, ctx), config)
        storage = existing_storage_state(profile_name, path)
        if storage is None:
            raise AuthError(
                f"No stored session for profile '{profile_name}'. "
                f"Run `{login_command_hint(profile_name, path)}` first."
            )
        outcome = run_group_discovery(
            config,
            mailbox_path=state_dir(path) / MAILBOX_FILENAME,
            storage_state=storage,
            headless=_resolve_headless(ctx),
            on_message=None if as_json else _echo_log,
            event_logger=_event_logger(ctx, path),
        )
    except (ConfigError, AuthError, HandoffError) as exc:
        raise _fail("Group discovery", exc) from exc

    added = 0
    if outcome.groups:
        try:
            added = _merge_into_targets(path, targets_file, outcome.groups)
        except BulkImportError as exc:
            raise _fail("Group discovery", exc) from exc

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "groups": [candidate_to_dict(group) for group in outcome.groups],
                    "error": outcome.error,
                    "added": added,
                },
                indent=2,
                ensure_ascii=False,
            )
        )
    else:
        for group in outcome.groups:
            typer.echo(f"{group.id}\t{group.name}")
        if outcome.groups:
            typer.echo(f"Discovered {len(outcome.groups)} group(s); {added} new target(s) added.")
    if outcome.error:
        typer.secho(outcome.error, err=True, fg=typer.colors.RED)
        raise typer.Exit(1)


@groups_app.command("list")
def groups_list(
    path: str | None = _config_path_option(),
    targets_file: str | None = typer.Option(None, "--targets", help="Target list JSON file."),
    from_api: bool = typer.Option(
        False, "--from-api", help="Fetch admin groups from the Graph API and merge them into the list."
    ),
    as_json: bool = typer.Option(False, "--json", help="Render targets as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        if from_api:
            with GraphPublisher.from_config(config.graph) as publisher:
                listing = publisher.list_groups()
            if listing.error:
                typer.secho(listing.error, err=True, fg=typer.colors.YELLOW)
            if listing.groups:
                _merge_into_targets(path, targets_file, listing.groups)
        targets = load_targets(_targets_path(path, targets_file))
    except (ConfigError, BulkImportError) as exc:
        raise _fail("Groups list", exc) from exc

    if as_json:
        typer.echo(json.dumps([target_to_dict(target) for target in targets], indent=2, ensure_ascii=False))
        return
    if not targets:
        typer.echo("No targets yet. Run `groupcast groups discover` or `groupcast groups import`.")
        return
    for target in targets:
        marker = "x" if target.selected else " "
        typer.echo(f"[{marker}] {target.id}\t{target.name}")


@groups_app.command("import")
def groups_import(
    source: str = typer.Argument(..., help="File with a JSON array, group URLs, or ids ('-' for stdin)."),
    path: str | None = _config_path_option(),
    targets_file: str | None = typer.Option(None, "--targets", help="Target list JSON file."),
) -> None:
    try:
        load_runtime_config(path)
        text = sys.stdin.read() if source == "-" else Path(source).expanduser().read_text(encoding="utf-8")
        candidates = parse_bulk_import(text)
        added = _merge_into_targets(path, targets_file, candidates)
    except OSError as exc:
        typer.secho(f"Groups import failed: could not read '{source}': {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    except (ConfigError, BulkImportError) as exc:
        raise _fail("Groups import", exc) from exc

    skipped = len(candidates) - added
    typer.echo(f"Imported {added} group(s); {skipped} already present.")


@app.command("post")
def post(
    ctx: typer.Context,
    message: str | None = typer.Option(None, "--message", "-m", help="Post text."),
    message_file: str | None = typer.Option(None, "--message-file", help="Read post text from a file."),
    image_url: list[str] = typer.Option([], "--image-url", help="Image URL to attach (repeatable)."),
    image_file: list[str] = typer.Option([], "--image-file", help="Local image file to attach (repeatable)."),
    only: list[str] = typer.Option([], "--only", help="Restrict to these target ids (repeatable)."),
    delay: float | None = typer.Option(None, "--delay", min=0.001, help="Seconds between targets."),
    start_index: int = typer.Option(0, "--start-index", min=0, help="Skip this many selected targets."),
    path: str | None = _config_path_option(),
    targets_file: str | None = typer.Option(None, "--targets", help="Target list JSON file."),
    as_json: bool = typer.Option(False, "--json", help="Render dispatch results as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        text = _resolve_message(message, message_file)
        targets = _apply_only(load_targets(_targets_path(path, targets_file)), only)
        publisher = GraphPublisher.from_config(config.graph)
        if not publisher.has_token:
            raise DispatchError(
                f"No access token found. Export ${config.graph.access_token_env} before posting."
            )
    except (ConfigError, BulkImportError, DispatchError) as exc:
        raise _fail("Post", exc) from exc

    coordinators: list[Coordinator] = []
    previous_handler = signal.getsignal(signal.SIGINT)

    def _pause(_signum: int, _frame: object) -> None:
        typer.echo("Pausing after the current target...", err=True)
        for coordinator in coordinators:
            coordinator.pause_dispatch()

    signal.signal(signal.SIGINT, _pause)
    try:
        with publisher:
            done = run_dispatch(
                config,
                targets,
                text,
                publisher,
                delay_seconds=delay,
                image_urls=image_url,
                image_files=[Path(raw).expanduser() for raw in image_file],
                start_index=start_index,
                on_message=None if as_json else _echo_progress,
                on_coordinator=coordinators.append,
                event_logger=_event_logger(ctx, path),
            )
    except DispatchError as exc:
        raise _fail("Post", exc) from exc
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _report_done(done, as_json=as_json, start_index=start_index)
    if any(not outcome.success for outcome in done.results):
        raise typer.Exit(1)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show groupcast version and exit."),
    profile: str | None = typer.Option(
        None,
        "--profile",
        help="Active profile override used by commands when they omit --profile.",
    ),
    headless: bool = typer.Option(
        False, "--headless", help="Run the discovery browser headless regardless of browser.headless."
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging and JSONL run events."),
) -> None:
    ctx.obj = {
        "profile": profile,
        "headless": headless,
        "debug": debug,
    }
    configure_logging(debug)
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _echo_log(message: ControlMessage) -> None:
    if isinstance(message, Log):
        typer.echo(message.message)


def _echo_progress(message: ControlMessage) -> None:
    if not isinstance(message, Progress) or message.success is None:
        return
    label = "ok" if message.success else f"failed: {message.error}"
    typer.echo(f"[{message.current}/{message.total}] {message.target_name} ({message.target_id}) {label}")


def _report_done(done: Done, *, as_json: bool, start_index: int) -> None:
    succeeded = sum(1 for outcome in done.results if outcome.success)
    if as_json:
        typer.echo(
            json.dumps(
                {
                    "results": [outcome_to_dict(outcome) for outcome in done.results],
                    "paused": done.paused,
                    "succeeded": succeeded,
                },
                indent=2,
                ensure_ascii=False,
            )
        )
        return
    typer.echo(f"Done: {succeeded}/{len(done.results)} succeeded.")
    if done.paused:
        typer.echo(f"Paused. Resume with `groupcast post --start-index {start_index + len(done.results)}`.")


def _resolve_message(message: str | None, message_file: str | None) -> str:
    if message_file:
        try:
            return Path(message_file).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise DispatchError(f"Could not read message file '{message_file}': {exc}.") from exc
    if message and message.strip():
        return message
    raise DispatchError("Provide post text with --message or --message-file.")


def _apply_only(targets: list[DispatchTarget], only: list[str]) -> list[DispatchTarget]:
    if not only:
        return targets
    wanted = {value.strip() for value in only if value.strip()}
    unknown = wanted - {target.id for target in targets}
    if unknown:
        raise DispatchError(f"Unknown target id(s): {', '.join(sorted(unknown))}.")
    return [DispatchTarget(id=target.id, name=target.name, selected=target.id in wanted) for target in targets]


def _merge_into_targets(
    config_path: str | None,
    targets_file: str | None,
    candidates: tuple[CandidateEntity, ...] | list[CandidateEntity],
) -> int:
    target_path = _targets_path(config_path, targets_file)
    merged, added = merge_candidates(load_targets(target_path), candidates)
    save_targets(target_path, merged)
    return added


def _targets_path(config_path: str | None, targets_file: str | None) -> Path:
    if targets_file:
        return Path(targets_file).expanduser()
    return default_targets_path(config_path)


def _ctx_option(ctx: typer.Context | None, key: str) -> object:
    if ctx is None or not isinstance(ctx.obj, dict):
        return None
    return ctx.obj.get(key)


def _resolve_profile(command_profile: str | None, ctx: typer.Context | None) -> str | None:
    fallback = _ctx_option(ctx, "profile")
    return command_profile or (fallback if isinstance(fallback, str) and fallback else None)


def _resolve_headless(ctx: typer.Context | None) -> bool | None:
    # None defers to browser.headless from the config file
    return True if _ctx_option(ctx, "headless") else None


def _event_logger(ctx: typer.Context | None, config_path: str | None) -> JsonlEventLogger | None:
    if not _ctx_option(ctx, "debug"):
        return None
    logs_dir = state_dir(config_path) / "logs"
    return JsonlEventLogger(logs_dir / "events.jsonl")

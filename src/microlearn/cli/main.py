"""Microlearn CLI — sign in from a terminal, inspect and repair profiles.

Usage:
    microlearn login alice@example.com          # Sign in, reconcile, show state
    microlearn profiles list <user-id>          # Every profile row for an identity
    microlearn profiles dedupe <user-id>        # Keep the canonical row, drop the rest
    microlearn doctor                           # Configuration + dependency checks

Talks to the hosted identity service and record store directly (same
MICROLEARN_* settings as the server), not to a running API server.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import sys

import click
import httpx
import structlog

from microlearn import __version__
from microlearn.config import settings
from microlearn.services.diagnostics import check_config, overall_status, run_checks
from microlearn.services.identity_service import IdentityError, IdentityService
from microlearn.services.profile_maintenance import ProfileMaintenance
from microlearn.services.profile_resolver import ProfileResolver
from microlearn.services.profile_store import RestProfileStore
from microlearn.services.record_store import RecordStoreError
from microlearn.services.session_reconciler import AuthState, AuthStatus, SessionReconciler

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


def _service_store(http: httpx.AsyncClient) -> RestProfileStore:
    """Profile store authorized with the service role key."""
    if not settings.supabase_service_role_key:
        click.secho(
            "Error: MICROLEARN_SUPABASE_SERVICE_ROLE_KEY is required for this command",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return RestProfileStore(
        http,
        api_key=settings.supabase_service_role_key,
        token_provider=lambda: settings.supabase_service_role_key,
    )


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


_STATUS_COLORS = {
    AuthStatus.READY: "green",
    AuthStatus.DEGRADED: "yellow",
    AuthStatus.UNAUTHENTICATED: "red",
}


def _print_state(state: AuthState) -> None:
    status = click.style(state.status.value, fg=_STATUS_COLORS.get(state.status, "white"))
    click.echo(f"  Status:   {status}")
    if state.identity:
        click.echo(f"  Identity: {state.identity.id} ({state.identity.email or '—'})")
    if state.profile:
        click.echo(f"  Profile:  {state.profile.full_name or '—'} [{state.profile.role}]")
        click.echo(f"  Points:   {state.profile.points}")
    if state.error:
        click.secho(f"  Error:    {state.error}", fg="yellow")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="microlearn")
@click.option("--verbose", "-v", is_flag=True, help="Show info-level logs")
def main(verbose: bool):
    """Microlearn — session and profile tools for the marketplace backend."""
    # Logs go to stderr so --json output stays parseable
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if verbose else logging.WARNING
        ),
        logger_factory=lambda *args: structlog.PrintLogger(sys.stderr),
    )


# ---------------------------------------------------------------------------
# microlearn login
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.option("--json", "as_json", is_flag=True, help="Print the session snapshot as JSON")
def login(email: str, password: str, as_json: bool):
    """Sign in as EMAIL and show the reconciled session state."""
    _run(_login_impl(email, password, as_json))


async def _login_impl(email: str, password: str, as_json: bool):
    async with _client() as http:
        identity = IdentityService(http)
        store = RestProfileStore(http, token_provider=lambda: identity.access_token)
        async with SessionReconciler(identity, ProfileResolver(store)) as session:
            try:
                await identity.sign_in_with_password(email, password)
            except IdentityError as e:
                click.secho(f"Sign-in failed: {e}", fg="red", err=True)
                sys.exit(1)

            if as_json:
                click.echo(session.snapshot().model_dump_json(indent=2))
            else:
                click.secho("--- Session ---", bold=True)
                _print_state(session.state)

            if session.state.status != AuthStatus.READY:
                sys.exit(2)


# ---------------------------------------------------------------------------
# microlearn profiles
# ---------------------------------------------------------------------------


@main.group()
def profiles():
    """Inspect and repair profile rows (uses the service role key)."""


@profiles.command("list")
@click.argument("user_id")
def list_profiles(user_id: str):
    """List every profile row stored for USER_ID."""
    _run(_list_impl(user_id))


async def _list_impl(user_id: str):
    async with _client() as http:
        store = _service_store(http)
        try:
            rows = await store.list_profiles(user_id)
        except RecordStoreError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)

    if not rows:
        click.echo(f"No profile rows for {user_id}.")
        return

    click.secho(f"Profiles ({len(rows)}):", bold=True)
    for p in rows:
        click.echo(
            f"  {p.id}  {p.role:10s}  {str(p.created_at or '—'):32s}  {p.full_name or '—'}"
        )
    if len(rows) > 1:
        click.secho(
            f"{len(rows)} rows for one identity; run `microlearn profiles dedupe {user_id}`",
            fg="yellow",
        )


@profiles.command("dedupe")
@click.argument("user_id")
def dedupe_profiles(user_id: str):
    """Keep the canonical profile row for USER_ID and delete the others."""
    _run(_dedupe_impl(user_id))


async def _dedupe_impl(user_id: str):
    async with _client() as http:
        store = _service_store(http)
        try:
            result = await ProfileMaintenance(store).dedupe(user_id)
        except RecordStoreError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)

    if result.kept is None:
        click.echo(f"No profile rows for {user_id}.")
        return
    click.echo(f"Kept row created at {result.kept.created_at or '—'}")
    if result.deleted:
        click.secho(f"Deleted {result.deleted} duplicate row(s)", fg="green")
    else:
        click.echo("Nothing to delete.")


# ---------------------------------------------------------------------------
# microlearn doctor
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print checks as JSON")
def doctor(as_json: bool):
    """Check configuration and reachability of the hosted services and Redis."""
    _run(_doctor_impl(as_json))


async def _doctor_impl(as_json: bool):
    config = check_config()
    async with _client() as http:
        checks = await run_checks(http)
    status = overall_status(checks)

    if as_json:
        click.echo(_pretty_json({"status": status, **checks, "config": config}))
    else:
        click.secho("Configuration:", bold=True)
        for name, value in config.items():
            click.echo(f"  {name:28s} {click.style(value, fg='green' if value == 'ok' else 'red')}")
        click.secho("Checks:", bold=True)
        for name, value in checks.items():
            color = "green" if value == "ok" or name == "version" else "red"
            click.echo(f"  {name:28s} {click.style(value, fg=color)}")
        click.echo()
        click.secho(f"Overall: {status}", fg="green" if status == "healthy" else "yellow")

    if status != "healthy":
        sys.exit(1)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()

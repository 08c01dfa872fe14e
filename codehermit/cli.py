"""Typer CLI for the codehermit review orchestrator."""

from __future__ import annotations

import importlib.metadata
import logging
from pathlib import Path
from typing import Annotated

import httpx
import typer

from codehermit.config import load_settings
from codehermit.errors import CodeHermitError
from codehermit.output import render_status_report
from codehermit.prompting import TerminalPrompter
from codehermit.resolver import classify_target
from codehermit.review import ReviewOptions, review_pull_request
from codehermit.supervisor import probe_agent_version

app = typer.Typer(help="Review pull requests with the Cursor CLI agent.")


def _package_version() -> str:
    """Return the installed distribution version."""
    try:
        return importlib.metadata.version("codehermit")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"codehermit v{_package_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Print version and exit.",
        ),
    ] = False,
) -> None:
    """Review pull requests with the Cursor CLI agent.

    Azure mode takes a PR id or full PR URL; direct mode takes a base and a
    head branch. Settings come from .env and repos.json in the config
    directory (CODEHERMIT_CONFIG_DIR, default ~/.codehermit).
    """


@app.command("review")
def review_command(
    tokens: Annotated[
        list[str] | None,
        typer.Argument(help="PR id, full Azure PR URL, or BASE HEAD branch names."),
    ] = None,
    pr: Annotated[
        str | None,
        typer.Option("--pr", "-p", help="PR id (e.g. 182370) or full Azure PR URL."),
    ] = None,
    base: Annotated[str | None, typer.Option("--base", "-b", help="Base branch.")] = None,
    head: Annotated[str | None, typer.Option("--head", "-h", help="Head/PR branch.")] = None,
    repo: Annotated[
        str | None,
        typer.Option("--repo", "-r", help="Repo path, or repo name under REPOS_ROOT."),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option(
            "--output-dir",
            "-o",
            help="Write diff and review to <path>/<repo-name>/ instead of the repo root.",
        ),
    ] = None,
    verbose: Annotated[bool, typer.Option(help="Print debug logging.")] = False,
) -> None:
    """Diff a PR or branch pair and stream the agent's review to the terminal and a file."""
    _configure_logging(verbose)
    try:
        settings = load_settings()
        request = classify_target(tokens or [], pr=pr, base=base, head=head)
        exit_code = review_pull_request(
            request,
            settings=settings,
            prompter=TerminalPrompter(),
            options=ReviewOptions(repo=repo, output_dir=output_dir),
        )
    except CodeHermitError as error:
        typer.echo(f"Review failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"Review failed: network error ({error}).", err=True)
        raise typer.Exit(code=1) from error
    raise typer.Exit(code=exit_code)


@app.command("status")
def status_command() -> None:
    """Show agent installation, Cursor auth, and Azure DevOps configuration."""
    settings = load_settings()
    typer.echo(
        render_status_report(
            agent_version=probe_agent_version(settings.agent_path),
            cursor_api_key_set=settings.cursor_api_key is not None,
            azure_configured=settings.azure_configured,
            config_dir=settings.config_dir,
            setting_sources=settings.setting_sources,
        )
    )

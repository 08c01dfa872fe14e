"""Review orchestration entrypoint: resolve, diff, run the agent."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer

from codehermit.config import Settings
from codehermit.diff import acquire_diff, get_repo_root
from codehermit.naming import build_artifact_paths
from codehermit.output import render_diff_written, render_target_summary
from codehermit.prompting import Prompter
from codehermit.resolver import (
    PullRequestFetcher,
    RepoRootFinder,
    TargetResolver,
    fetch_pull_request_via_api,
)
from codehermit.schema import AgentInvocation, TargetRequest
from codehermit.supervisor import build_invocation, supervise_agent

AgentRunner = Callable[[AgentInvocation], Coroutine[Any, Any, int]]


@dataclass(frozen=True, slots=True)
class ReviewOptions:
    """Command-line choices that shape resolution and artifact placement."""

    repo: str | None = None
    output_dir: Path | None = None
    show_progress: bool | None = None


def review_pull_request(
    request: TargetRequest,
    *,
    settings: Settings,
    prompter: Prompter,
    options: ReviewOptions | None = None,
    cwd: Path | None = None,
    fetch_pull_request: PullRequestFetcher = fetch_pull_request_via_api,
    find_repo_root: RepoRootFinder = get_repo_root,
    agent_runner: AgentRunner | None = None,
) -> int:
    """Run one review and return the agent's exit code.

    Errors from any stage propagate and stop the later stages; artifacts
    written before the failure stay on disk.
    """
    options = options or ReviewOptions()
    working_dir = cwd or Path.cwd()
    output_root = (working_dir / options.output_dir).resolve() if options.output_dir else None

    resolver = TargetResolver(
        settings,
        prompter=prompter,
        repo=options.repo,
        output_dir_requested=output_root is not None,
        cwd=working_dir,
        fetch_pull_request=fetch_pull_request,
        find_repo_root=find_repo_root,
    )
    target = resolver.resolve(request)
    artifacts = build_artifact_paths(target, output_root)

    typer.echo(render_target_summary(target) + "\n")
    diff = acquire_diff(
        target.repo_path, target.base_branch, target.head_branch, artifacts.diff_path
    )
    typer.echo(render_diff_written(diff))

    invocation = build_invocation(settings, artifacts)
    if agent_runner is None:
        return asyncio.run(supervise_agent(invocation, show_progress=options.show_progress))
    return asyncio.run(agent_runner(invocation))

"""Review target classification and resolution.

Command-line tokens are classified once into a ``TargetRequest`` variant;
``TargetResolver`` then turns that request into a ``ReviewTarget``, calling
Azure DevOps or prompting the user where the request is incomplete.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from enum import StrEnum
from pathlib import Path
from urllib.parse import unquote, urlsplit

from codehermit.azure_client import build_azure_client, fetch_pull_request_details
from codehermit.config import AZURE_HOST, Settings
from codehermit.diff import DEFAULT_BASE_BRANCH, get_repo_root
from codehermit.errors import ConfigError, InputError, NotFoundError
from codehermit.prompting import Prompter
from codehermit.schema import (
    DirectBranches,
    NeedsPrompt,
    PrById,
    PrByUrl,
    PullRequestDetails,
    PullRequestUrl,
    ReviewTarget,
    TargetRequest,
)

logger = logging.getLogger(__name__)

PR_URL_PATH_MARKER = "pullrequest"
GIT_PATH_MARKER = "_git"
PR_ID_PATTERN = re.compile(r"^\d+$")
PR_PROMPT = (
    "PR ID or full Azure PR URL (e.g. 182370 or https://dev.azure.com/.../pullrequest/182370)"
)

PullRequestFetcher = Callable[[str, str, str, int], PullRequestDetails]
RepoRootFinder = Callable[[Path | None], Path]


class ResolverState(StrEnum):
    """Progress of one resolution."""

    AWAITING_INPUT = "awaiting_input"
    RESOLVING_BY_PR_ID = "resolving_by_pr_id"
    RESOLVING_BY_PR_URL = "resolving_by_pr_url"
    DIRECT_BRANCHES = "direct_branches"
    PROMPTING_INTERACTIVELY = "prompting_interactively"
    RESOLVED = "resolved"


def looks_like_pr_url(token: str) -> bool:
    """Return whether a token carries both the Azure host and the PR path marker."""
    return AZURE_HOST in token and PR_URL_PATH_MARKER in token


def parse_pr_url(url: str) -> PullRequestUrl | None:
    """Parse ``.../<org>/<project>/_git/<repo>/pullrequest/<id>``; None when it does not fit."""
    trimmed = url.strip()
    if not looks_like_pr_url(trimmed):
        return None
    try:
        parts = [unquote(part) for part in urlsplit(trimmed).path.split("/") if part]
    except ValueError:
        return None
    if GIT_PATH_MARKER not in parts:
        return None
    git_index = parts.index(GIT_PATH_MARKER)
    if git_index < 2 or len(parts) < git_index + 4:
        return None
    if parts[git_index + 2] != PR_URL_PATH_MARKER:
        return None
    pr_token = parts[git_index + 3]
    if not PR_ID_PATTERN.fullmatch(pr_token):
        return None
    return PullRequestUrl(
        org=parts[git_index - 2],
        project=parts[git_index - 1],
        repository=parts[git_index + 1],
        pr_id=int(pr_token),
    )


def _classify_pr_token(token: str) -> PrById | PrByUrl | None:
    """Classify a token as a PR id or PR URL; None when it is neither shape."""
    stripped = token.strip()
    if PR_ID_PATTERN.fullmatch(stripped):
        return PrById(pr_id=int(stripped))
    if looks_like_pr_url(stripped):
        parsed = parse_pr_url(stripped)
        if parsed is None:
            raise InputError(f"Not a valid PR URL: {stripped}")
        return PrByUrl(url=parsed)
    return None


def classify_target(
    tokens: Sequence[str],
    *,
    pr: str | None = None,
    base: str | None = None,
    head: str | None = None,
) -> TargetRequest:
    """Classify command-line input into exactly one target request variant."""
    if pr:
        classified = _classify_pr_token(pr)
        if classified is None:
            raise InputError(f"--pr expects a PR id or a full Azure PR URL, got '{pr}'.")
        return classified

    positional = [token for token in tokens if token.strip()]
    if positional:
        classified = _classify_pr_token(positional[0])
        if classified is not None:
            return classified
        positional_head = positional[1] if len(positional) > 1 else None
        return DirectBranches(base=positional[0], head=positional_head or head)

    if base is None and head is None:
        return NeedsPrompt()
    return DirectBranches(base=base or DEFAULT_BASE_BRANCH, head=head)


def fetch_pull_request_via_api(
    org_url: str, project: str, pat: str, pr_id: int
) -> PullRequestDetails:
    """Look up one pull request with a short-lived client."""
    with build_azure_client(org_url=org_url, pat=pat) as client:
        return fetch_pull_request_details(client=client, project=project, pr_id=pr_id)


class TargetResolver:
    """Turn a target request into a resolved repository and branch pair."""

    def __init__(
        self,
        settings: Settings,
        *,
        prompter: Prompter,
        repo: str | None = None,
        output_dir_requested: bool = False,
        cwd: Path | None = None,
        fetch_pull_request: PullRequestFetcher = fetch_pull_request_via_api,
        find_repo_root: RepoRootFinder = get_repo_root,
    ) -> None:
        self._settings = settings
        self._prompter = prompter
        self._repo = repo
        self._output_dir_requested = output_dir_requested
        self._cwd = cwd
        self._fetch_pull_request = fetch_pull_request
        self._find_repo_root = find_repo_root
        self.state = ResolverState.AWAITING_INPUT

    def resolve(self, request: TargetRequest) -> ReviewTarget:
        """Resolve ``request``, prompting or calling Azure DevOps as needed."""
        if isinstance(request, NeedsPrompt):
            request = self._prompt_for_request()

        if isinstance(request, PrById):
            target = self._resolve_pr_by_id(request)
        elif isinstance(request, PrByUrl):
            target = self._resolve_pr_by_url(request)
        else:
            target = self._resolve_direct(request)

        self.state = ResolverState.RESOLVED
        logger.debug("Resolved review target %s", target)
        return target

    def _prompt_for_request(self) -> PrById | PrByUrl | DirectBranches:
        """Ask for a PR first when Azure is configured, then for branches."""
        self.state = ResolverState.PROMPTING_INTERACTIVELY
        if self._settings.azure_configured:
            answer = self._prompter.ask(PR_PROMPT)
            if answer:
                classified = _classify_pr_token(answer)
                if classified is None:
                    raise InputError(f"'{answer}' is neither a PR id nor an Azure PR URL.")
                return classified

        base = self._prompter.ask(f"Base branch (e.g. {DEFAULT_BASE_BRANCH})")
        base = base or DEFAULT_BASE_BRANCH
        head = self._prompter.ask("Head branch (PR branch)")
        if not head:
            raise InputError("Head branch is required.")
        return DirectBranches(base=base, head=head)

    def _resolve_pr_by_id(self, request: PrById) -> ReviewTarget:
        self.state = ResolverState.RESOLVING_BY_PR_ID
        settings = self._settings
        if not (settings.azure_org_url and settings.azure_project and settings.azure_pat):
            raise ConfigError(
                "Azure mode requires AZURE_ORG_URL, AZURE_PROJECT, AZURE_PAT in .env "
                "(or AZURE_DEVOPS_ORG, AZURE_DEVOPS_PROJECT, AZURE_DEVOPS_PAT)."
            )
        details = self._fetch_pull_request(
            settings.azure_org_url,
            settings.azure_project,
            settings.azure_pat,
            request.pr_id,
        )
        return self._target_from_details(details, details.repository)

    def _resolve_pr_by_url(self, request: PrByUrl) -> ReviewTarget:
        self.state = ResolverState.RESOLVING_BY_PR_URL
        if not self._settings.azure_pat:
            raise ConfigError("Azure PR URLs require AZURE_PAT (or AZURE_DEVOPS_PAT) in .env.")
        url = request.url
        details = self._fetch_pull_request(
            f"https://{AZURE_HOST}/{url.org}",
            url.project,
            self._settings.azure_pat,
            url.pr_id,
        )
        return self._target_from_details(details, url.repository)

    def _target_from_details(self, details: PullRequestDetails, repo_name: str) -> ReviewTarget:
        repo_path = self._settings.repos_root / repo_name
        if not repo_path.exists():
            raise NotFoundError(f"Repo not found at {repo_path}. Check REPOS_ROOT and repo name.")
        return ReviewTarget(
            repo_path=repo_path,
            repo_name=repo_name,
            base_branch=details.target_branch,
            head_branch=details.source_branch,
            pr_id=details.pull_request_id,
        )

    def _resolve_direct(self, request: DirectBranches) -> ReviewTarget:
        self.state = ResolverState.DIRECT_BRANCHES
        base = request.base or DEFAULT_BASE_BRANCH
        head = request.head or self._prompter.ask("Head branch (PR branch)")
        if not head:
            raise InputError("Head branch is required.")

        repo_path, repo_name = self._select_repo()
        if not repo_path.exists():
            raise NotFoundError(f"Repo not found at {repo_path}.")
        return ReviewTarget(
            repo_path=repo_path,
            repo_name=repo_name,
            base_branch=base,
            head_branch=head,
        )

    def _select_repo(self) -> tuple[Path, str]:
        """Pick the repository: explicit, interactive for output dirs, else the cwd."""
        if self._repo:
            explicit = Path(self._repo).expanduser()
            repo_path = explicit if explicit.is_absolute() else self._settings.repos_root / explicit
            return repo_path, repo_path.name

        if self._output_dir_requested:
            repo_name = self._prompt_for_repo()
            if not repo_name:
                raise InputError("Repository name is required when using --output-dir.")
            return self._settings.repos_root / repo_name, repo_name

        try:
            repo_path = self._find_repo_root(self._cwd)
        except NotFoundError as error:
            logger.debug("Current directory is not a repository: %s", error)
            repo_name = self._prompt_for_repo()
            if not repo_name:
                raise InputError(
                    "Could not detect repo. Pass --repo or run from a git repo."
                ) from error
            return self._settings.repos_root / repo_name, repo_name
        return repo_path, repo_path.name

    def _prompt_for_repo(self) -> str:
        """List known repositories and accept either a number or a name."""
        known_repos = self._settings.known_repos
        if known_repos:
            self._prompter.show("Which repository?")
            for index, name in enumerate(known_repos, start=1):
                self._prompter.show(f"  {index}. {name}")
            self._prompter.show("  Or type a repo name (must exist under REPOS_ROOT).")
        answer = self._prompter.ask("Repository name or number")
        if answer.isdecimal() and 1 <= int(answer) <= len(known_repos):
            return known_repos[int(answer) - 1]
        return answer

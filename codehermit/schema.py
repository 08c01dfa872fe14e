"""Data contracts shared by target resolution, diffing, and agent supervision."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

REFS_HEADS_PREFIX = "refs/heads/"


def strip_refs_heads(ref: str) -> str:
    """Drop the ``refs/heads/`` prefix from a fully qualified branch ref."""
    if ref.startswith(REFS_HEADS_PREFIX):
        return ref[len(REFS_HEADS_PREFIX) :]
    return ref


class TargetKind(StrEnum):
    """How the user identified the review target."""

    PR_BY_ID = "pr_by_id"
    PR_BY_URL = "pr_by_url"
    DIRECT_BRANCHES = "direct_branches"
    NEEDS_PROMPT = "needs_prompt"


@dataclass(frozen=True, slots=True)
class PullRequestUrl:
    """Components recovered from an Azure DevOps pull request URL."""

    org: str
    project: str
    repository: str
    pr_id: int


@dataclass(frozen=True, slots=True)
class PrById:
    """Pull request identified by numeric id, org and project from settings."""

    pr_id: int
    kind: TargetKind = field(default=TargetKind.PR_BY_ID, init=False)


@dataclass(frozen=True, slots=True)
class PrByUrl:
    """Pull request identified by a full URL."""

    url: PullRequestUrl
    kind: TargetKind = field(default=TargetKind.PR_BY_URL, init=False)


@dataclass(frozen=True, slots=True)
class DirectBranches:
    """Explicit base/head branch pair; a missing head is prompted for."""

    base: str
    head: str | None = None
    kind: TargetKind = field(default=TargetKind.DIRECT_BRANCHES, init=False)


@dataclass(frozen=True, slots=True)
class NeedsPrompt:
    """No target information was supplied on the command line."""

    kind: TargetKind = field(default=TargetKind.NEEDS_PROMPT, init=False)


TargetRequest = PrById | PrByUrl | DirectBranches | NeedsPrompt


@dataclass(frozen=True, slots=True)
class ReviewTarget:
    """Fully resolved repository location and branch pair."""

    repo_path: Path
    repo_name: str
    base_branch: str
    head_branch: str
    pr_id: int | None = None


@dataclass(frozen=True, slots=True)
class ArtifactPaths:
    """Where the diff and review output of one run are written."""

    work_dir: Path
    diff_path: Path
    output_path: Path
    diff_file_name: str
    output_file_name: str


@dataclass(frozen=True, slots=True)
class DiffResult:
    """Diff text written for one run."""

    path: Path
    content: str
    length: int
    partial: bool = False


@dataclass(frozen=True, slots=True)
class AgentInvocation:
    """Everything needed to spawn the review agent once."""

    command: str
    args: tuple[str, ...]
    cwd: Path
    prompt: str
    output_path: Path
    env: dict[str, str] | None = None


@dataclass(frozen=True, slots=True)
class PullRequestDetails:
    """Normalized PR metadata needed to locate the local clone and branches."""

    repository: str
    source_branch: str
    target_branch: str
    pull_request_id: int


class RepositoryRef(BaseModel):
    """Repository fragment of the Azure DevOps pull request payload."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)


class PullRequestPayload(BaseModel):
    """Subset of the Azure DevOps pull request response used for resolution."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    pull_request_id: int = Field(alias="pullRequestId", ge=1)
    repository: RepositoryRef
    source_ref_name: str = Field(alias="sourceRefName", min_length=1)
    target_ref_name: str = Field(alias="targetRefName", min_length=1)

    def to_details(self) -> PullRequestDetails:
        """Convert to normalized details with ``refs/heads/`` stripped."""
        return PullRequestDetails(
            repository=self.repository.name,
            source_branch=strip_refs_heads(self.source_ref_name),
            target_branch=strip_refs_heads(self.target_ref_name),
            pull_request_id=self.pull_request_id,
        )

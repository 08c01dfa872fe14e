"""Three-dot git diff acquisition and the standalone diff utility."""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from codehermit.errors import CodeHermitError, DiffError, NotFoundError
from codehermit.naming import DIFF_FILE_BASE
from codehermit.schema import DiffResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_BRANCH = "main"
REMOTE_NAME = "origin"


def _run_git(args: list[str], *, cwd: Path | None) -> subprocess.CompletedProcess[str]:
    """Run one git command with captured UTF-8 output."""
    logger.debug("Running git %s in %s", " ".join(args), cwd or Path.cwd())
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def get_repo_root(cwd: Path | None = None) -> Path:
    """Return the toplevel of the git repository containing ``cwd``."""
    try:
        result = _run_git(["rev-parse", "--show-toplevel"], cwd=cwd)
    except FileNotFoundError as error:
        raise NotFoundError("git is not installed or not on PATH.") from error
    toplevel = result.stdout.strip()
    if result.returncode != 0 or not toplevel:
        raise NotFoundError("Not inside a git repository. Run this from your repo root.")
    return Path(toplevel)


def get_current_branch(cwd: Path | None = None) -> str | None:
    """Return the checked-out branch name, or None on detached HEAD or error."""
    try:
        result = _run_git(["branch", "--show-current"], cwd=cwd)
    except FileNotFoundError:
        return None
    branch = result.stdout.strip()
    if result.returncode != 0 or not branch:
        return None
    return branch


def fetch_branch(repo_path: Path, branch: str) -> bool:
    """Refresh ``origin/<branch>``; failure is a warning because local refs may suffice."""
    try:
        result = _run_git(["fetch", REMOTE_NAME, branch], cwd=repo_path)
    except FileNotFoundError:
        logger.warning(
            "Could not fetch %s/%s: git not found. Using local refs.", REMOTE_NAME, branch
        )
        return False
    if result.returncode != 0:
        logger.warning(
            "Could not fetch %s/%s. Using local refs. %s",
            REMOTE_NAME,
            branch,
            result.stderr.strip(),
        )
        return False
    return True


def to_remote_ref(ref: str) -> str:
    """Qualify a branch with the remote unless it already names a remote or full ref."""
    if ref.startswith(f"{REMOTE_NAME}/") or ref.startswith("refs/"):
        return ref
    return f"{REMOTE_NAME}/{ref}"


def compute_diff(repo_path: Path, base_branch: str, head_branch: str) -> tuple[str, bool]:
    """Return ``(diff_text, partial)`` for ``base...head``.

    A non-zero exit that still produced output is returned with ``partial``
    set and a logged warning; with nothing captured it raises ``DiffError``.
    """
    range_spec = f"{to_remote_ref(base_branch)}...{to_remote_ref(head_branch)}"
    try:
        result = _run_git(["diff", range_spec], cwd=repo_path)
    except FileNotFoundError as error:
        raise DiffError("Failed to get diff: git is not installed or not on PATH.") from error

    if result.returncode == 0:
        return result.stdout, False

    stderr = result.stderr.strip()
    if result.stdout:
        logger.warning(
            "git diff %s exited with status %d; using the %d chars of output it produced. %s",
            range_spec,
            result.returncode,
            len(result.stdout),
            stderr,
        )
        return result.stdout, True
    detail = stderr or f"exit status {result.returncode}"
    raise DiffError(f"Failed to get diff {range_spec}: {detail}")


def acquire_diff(
    repo_path: Path,
    base_branch: str,
    head_branch: str,
    diff_path: Path,
) -> DiffResult:
    """Refresh both refs, compute the three-dot diff, and write it to ``diff_path``."""
    fetch_branch(repo_path, base_branch)
    fetch_branch(repo_path, head_branch)
    content, partial = compute_diff(repo_path, base_branch, head_branch)
    diff_path.parent.mkdir(parents=True, exist_ok=True)
    # newline="" keeps the diff byte-for-byte, including CRLF hunks.
    with diff_path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)
    return DiffResult(path=diff_path, content=content, length=len(content), partial=partial)


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for the standalone diff utility."""
    parser = argparse.ArgumentParser(
        description=f"Write the three-dot diff between two branches to {DIFF_FILE_BASE}."
    )
    parser.add_argument(
        "base",
        nargs="?",
        default=DEFAULT_BASE_BRANCH,
        help=f"Base branch (default: {DEFAULT_BASE_BRANCH}).",
    )
    parser.add_argument(
        "head",
        nargs="?",
        help="Head branch (default: the current branch).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Write the diff for the current repository and print where it went."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    try:
        head = args.head or get_current_branch()
        if not head:
            raise NotFoundError("Could not detect current branch. Pass base and head explicitly.")
        repo_root = get_repo_root()
        result = acquire_diff(repo_root, args.base, head, repo_root / DIFF_FILE_BASE)
    except CodeHermitError as error:
        print(str(error), file=sys.stderr)
        return 1
    print(f"Diff written to {result.path} ({result.length} chars)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

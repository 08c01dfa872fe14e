"""Deterministic artifact file names and locations."""

from __future__ import annotations

import re
from pathlib import Path

from codehermit.schema import ArtifactPaths, ReviewTarget

DIFF_FILE_BASE = ".codehermit-diff.txt"
OUTPUT_FILE_BASE = ".codehermit-output.md"
BRANCH_UNSAFE_PATTERN = re.compile(r"[/\\\s]")


def sanitize_branch(branch: str) -> str:
    """Replace path separators and whitespace so a branch fits in a file name."""
    return BRANCH_UNSAFE_PATTERN.sub("_", branch)


def artifact_file_names(
    pr_id: int | None,
    output_dir_requested: bool,
    base: str,
    head: str,
) -> tuple[str, str]:
    """Return ``(diff_file_name, output_file_name)`` for one run.

    A PR id wins; otherwise an output directory needs the branch slug so that
    several branch pairs of one repository can share the folder.
    """
    if pr_id is not None:
        prefix = f".{pr_id}"
    elif output_dir_requested:
        prefix = f".{sanitize_branch(base)}_{sanitize_branch(head)}"
    else:
        return DIFF_FILE_BASE, OUTPUT_FILE_BASE
    return f"{prefix}{DIFF_FILE_BASE}", f"{prefix}{OUTPUT_FILE_BASE}"


def build_artifact_paths(target: ReviewTarget, output_root: Path | None = None) -> ArtifactPaths:
    """Place artifacts under ``output_root/<repo_name>`` or in the repository root."""
    diff_file_name, output_file_name = artifact_file_names(
        target.pr_id,
        output_root is not None,
        target.base_branch,
        target.head_branch,
    )
    work_dir = output_root / target.repo_name if output_root is not None else target.repo_path
    return ArtifactPaths(
        work_dir=work_dir,
        diff_path=work_dir / diff_file_name,
        output_path=work_dir / output_file_name,
        diff_file_name=diff_file_name,
        output_file_name=output_file_name,
    )

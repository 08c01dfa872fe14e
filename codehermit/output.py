"""User-facing summary lines, remediation text, and the status report."""

from __future__ import annotations

import sys
from collections.abc import Mapping
from pathlib import Path

from codehermit.schema import DiffResult, ReviewTarget

CURSOR_INSTALL_WINDOWS = "irm 'https://cursor.com/install?win32=true' | iex"
CURSOR_INSTALL_POSIX = "curl https://cursor.com/install -fsS | bash"


def render_target_summary(target: ReviewTarget) -> str:
    """One-line description of what is about to be reviewed."""
    line = f"Reviewing PR: {target.base_branch}...{target.head_branch} (repo: {target.repo_name})"
    if target.pr_id is not None:
        line += f" PR #{target.pr_id}"
    return line


def render_diff_written(result: DiffResult) -> str:
    """Report where the diff went and how large it is."""
    line = f"Diff written to {result.path} ({result.length} chars)"
    if result.partial:
        line += " [partial: git diff exited with an error]"
    return line


def agent_not_found_message(command: str) -> str:
    """Remediation guidance when the agent executable cannot be located."""
    if sys.platform == "win32":
        locate = "PowerShell: (Get-Command agent).Source"
        install = CURSOR_INSTALL_WINDOWS
    else:
        locate = "shell: command -v agent"
        install = CURSOR_INSTALL_POSIX
    return "\n".join(
        [
            f"Agent CLI not found: '{command}'.",
            "  If 'agent' works in your terminal, set AGENT_PATH in .env to its full path",
            f"  ({locate}), then run codehermit again.",
            f"  Or install the Cursor CLI: {install}",
        ]
    )


def agent_not_executable_message(command: str) -> str:
    """Remediation guidance when the agent path exists but cannot be executed."""
    return (
        f"Agent CLI at '{command}' could not be executed. Check its permissions, "
        "or point AGENT_PATH at the agent executable or its .ps1/.cmd/.sh wrapper."
    )


def render_status_report(
    *,
    agent_version: str | None,
    cursor_api_key_set: bool,
    azure_configured: bool,
    config_dir: Path,
    setting_sources: Mapping[str, str] | None = None,
) -> str:
    """Render the ``status`` command output."""
    lines = ["codehermit status", "", "Agent (Cursor CLI)"]
    lines.append(f"  Installed:   {'yes' if agent_version else 'no'}")
    if agent_version:
        lines.append(f"  Version:     {agent_version}")
    if cursor_api_key_set:
        lines.append("  Auth:        CURSOR_API_KEY set")
    else:
        lines.append('  Auth:        not set (use "agent login" or set CURSOR_API_KEY in .env)')
    lines.extend(["", "Azure DevOps"])
    if azure_configured:
        lines.append("  Configured:  yes (AZURE_ORG_URL, AZURE_PROJECT, AZURE_PAT)")
    else:
        lines.append("  Configured:  no")
        lines.append("  Set AZURE_ORG_URL, AZURE_PROJECT, AZURE_PAT in .env for PR ID / URL mode.")
    lines.extend(["", f"Config dir:   {config_dir}"])
    if setting_sources:
        lines.extend(["", "Settings"])
        for key, source in setting_sources.items():
            lines.append(f"  {key + ':':<22}{source}")
    return "\n".join(lines)

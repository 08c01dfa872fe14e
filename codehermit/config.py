"""Settings loaded once at startup from the config directory and environment."""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV_VAR = "CODEHERMIT_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path.home() / ".codehermit"
ENV_FILE_NAME = ".env"
REPOS_FILE_NAME = "repos.json"
PROMPT_FILE_NAME = "prompt.md"
AZURE_HOST = "dev.azure.com"
DEFAULT_AGENT_PATH = "agent"
SOURCE_REPORTED_KEYS = (
    "REPOS_ROOT",
    "AZURE_ORG_URL",
    "AZURE_DEVOPS_ORG",
    "AZURE_PROJECT",
    "AZURE_DEVOPS_PROJECT",
    "AZURE_PAT",
    "AZURE_DEVOPS_PAT",
    "AGENT_PATH",
    "CURSOR_AGENT_PATH",
    "CURSOR_API_KEY",
)
SOURCE_ENVIRONMENT = "environment"
SOURCE_DOTENV = ".env"
SOURCE_ENVIRONMENT_OVER_DOTENV = "environment (overrides .env)"

DEFAULT_PROMPT_TEMPLATE = """\
You are reviewing a pull request. The full diff is in the file .codehermit-diff.txt
in the current directory. Read it, then review only the changes it introduces.

For every finding, give the file and line, a severity (critical, major, minor, nit),
what is wrong, and a concrete suggestion. Focus on correctness, security, error
handling, and maintainability. Do not comment on code the diff does not touch.

Finish with a short overall summary and a recommendation: approve, approve with
comments, or request changes. Do not modify any files."""


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable run configuration passed to resolver, diff, and supervisor."""

    config_dir: Path
    repos_root: Path
    azure_org_url: str | None = None
    azure_project: str | None = None
    azure_pat: str | None = None
    agent_path: str = DEFAULT_AGENT_PATH
    cursor_api_key: str | None = None
    known_repos: tuple[str, ...] = ()
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    base_env: Mapping[str, str] = field(default_factory=dict, repr=False)
    setting_sources: Mapping[str, str] = field(default_factory=dict)

    @property
    def azure_configured(self) -> bool:
        """Return whether PR-by-id lookups have org, project, and credential."""
        return bool(self.azure_org_url and self.azure_project and self.azure_pat)

    def agent_env(self) -> dict[str, str]:
        """Build the environment for the agent process, forwarding the Cursor key."""
        env = dict(self.base_env)
        if self.cursor_api_key:
            env["CURSOR_API_KEY"] = self.cursor_api_key
        return env


def default_config_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Return the config directory from ``CODEHERMIT_CONFIG_DIR`` or the home default."""
    values = os.environ if environ is None else environ
    configured = values.get(CONFIG_DIR_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    return DEFAULT_CONFIG_DIR


def default_repos_root() -> Path:
    """Return the platform default directory holding local clones."""
    if sys.platform == "win32":
        return Path("c:\\code\\repos")
    return Path.home() / "code" / "repos"


def _first_set(values: Mapping[str, str | None], *keys: str) -> str | None:
    """Return the first non-blank value among ``keys``, in order."""
    for key in keys:
        value = values.get(key)
        if value and value.strip():
            return value.strip()
    return None


def resolve_azure_org_url(values: Mapping[str, str | None]) -> str | None:
    """Resolve the org URL; an explicit ``AZURE_ORG_URL`` wins over the org name."""
    org_url = _first_set(values, "AZURE_ORG_URL")
    if org_url:
        return org_url.rstrip("/")
    org_name = _first_set(values, "AZURE_DEVOPS_ORG")
    if org_name:
        return f"https://{AZURE_HOST}/{org_name}"
    return None


def describe_setting_sources(
    process_env: Mapping[str, str | None],
    file_values: Mapping[str, str | None],
) -> dict[str, str]:
    """Name where each configured variable came from; the process environment wins."""
    sources: dict[str, str] = {}
    for key in SOURCE_REPORTED_KEYS:
        in_file = bool(_first_set(file_values, key))
        if key in process_env:
            # A blank process value still shadows the file value.
            if _first_set(process_env, key):
                sources[key] = SOURCE_ENVIRONMENT_OVER_DOTENV if in_file else SOURCE_ENVIRONMENT
        elif in_file:
            sources[key] = SOURCE_DOTENV
    return sources


def load_repos_list(config_dir: Path) -> tuple[str, ...]:
    """Read known repository names from ``repos.json``; unusable files yield nothing."""
    repos_path = config_dir / REPOS_FILE_NAME
    try:
        parsed = json.loads(repos_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ()
    except (OSError, json.JSONDecodeError) as error:
        logger.warning("Ignoring %s: %s", repos_path, error)
        return ()
    if not isinstance(parsed, list):
        logger.warning("Ignoring %s: expected a JSON array of repository names.", repos_path)
        return ()
    return tuple(item for item in parsed if isinstance(item, str))


def load_prompt_template(config_dir: Path) -> str:
    """Return ``prompt.md`` from the config directory, or the built-in prompt."""
    prompt_path = config_dir / PROMPT_FILE_NAME
    if prompt_path.is_file():
        return prompt_path.read_text(encoding="utf-8").strip()
    return DEFAULT_PROMPT_TEMPLATE


def load_settings(
    config_dir: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from ``<config_dir>/.env`` with process environment taking precedence."""
    process_env = dict(os.environ if environ is None else environ)
    resolved_dir = config_dir if config_dir is not None else default_config_dir(process_env)

    dotenv_file = resolved_dir / ENV_FILE_NAME
    file_values = dotenv_values(dotenv_file) if dotenv_file.is_file() else {}
    values: dict[str, str | None] = {**file_values, **process_env}

    repos_root = _first_set(values, "REPOS_ROOT")
    return Settings(
        config_dir=resolved_dir,
        repos_root=Path(repos_root).expanduser() if repos_root else default_repos_root(),
        azure_org_url=resolve_azure_org_url(values),
        azure_project=_first_set(values, "AZURE_PROJECT", "AZURE_DEVOPS_PROJECT"),
        azure_pat=_first_set(values, "AZURE_PAT", "AZURE_DEVOPS_PAT"),
        agent_path=_first_set(values, "AGENT_PATH", "CURSOR_AGENT_PATH") or DEFAULT_AGENT_PATH,
        cursor_api_key=_first_set(values, "CURSOR_API_KEY"),
        known_repos=load_repos_list(resolved_dir),
        prompt_template=load_prompt_template(resolved_dir),
        base_env=process_env,
        setting_sources=describe_setting_sources(process_env, file_values),
    )

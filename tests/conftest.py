"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from codehermit.config import DEFAULT_PROMPT_TEMPLATE, Settings


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (external dependencies).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


class ScriptedPrompter:
    """Prompter that replays fixed answers and records what was asked."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self._answers = list(answers or [])
        self.questions: list[str] = []
        self.messages: list[str] = []

    def ask(self, question: str) -> str:
        self.questions.append(question)
        if not self._answers:
            return ""
        return self._answers.pop(0).strip()

    def show(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def prompter_factory() -> Callable[..., ScriptedPrompter]:
    """Build scripted prompters from a list of answers."""
    return ScriptedPrompter


@pytest.fixture
def repos_root(tmp_path: Path) -> Path:
    """Directory standing in for REPOS_ROOT."""
    root = tmp_path / "repos"
    root.mkdir()
    return root


@pytest.fixture
def make_settings(tmp_path: Path, repos_root: Path) -> Callable[..., Settings]:
    """Build Settings with Azure configured unless overridden."""

    def _make(**overrides: object) -> Settings:
        values: dict[str, object] = {
            "config_dir": tmp_path / "config",
            "repos_root": repos_root,
            "azure_org_url": "https://dev.azure.com/acme",
            "azure_project": "Rocket",
            "azure_pat": "pat-value",
            "agent_path": "agent",
            "known_repos": (),
            "prompt_template": DEFAULT_PROMPT_TEMPLATE,
        }
        values.update(overrides)
        return Settings(**values)  # type: ignore[arg-type]

    return _make

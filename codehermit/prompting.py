"""Interactive prompt contract and its terminal implementation."""

from __future__ import annotations

from typing import Protocol

import typer


class Prompter(Protocol):
    """Source of interactive answers used when the command line is incomplete."""

    def ask(self, question: str) -> str:
        """Ask one question and return the trimmed answer ('' when left blank)."""

    def show(self, message: str) -> None:
        """Display an informational line before a question."""


class TerminalPrompter:
    """Prompter backed by ``typer.prompt`` on the controlling terminal."""

    def ask(self, question: str) -> str:
        answer = typer.prompt(question, default="", show_default=False)
        return answer.strip()

    def show(self, message: str) -> None:
        typer.echo(message)


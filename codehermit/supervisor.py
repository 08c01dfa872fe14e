"""Review agent process supervision.

The agent's stdout is copied chunk by chunk to our stdout and to the review
output file. Until the first chunk arrives a spinner runs on stderr.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import sys
from contextlib import suppress
from enum import StrEnum
from pathlib import Path
from typing import BinaryIO, TextIO

from codehermit.config import Settings
from codehermit.errors import CodeHermitError, ProcessSpawnError
from codehermit.naming import DIFF_FILE_BASE
from codehermit.output import agent_not_executable_message, agent_not_found_message
from codehermit.schema import AgentInvocation, ArtifactPaths

logger = logging.getLogger(__name__)

SPINNER_FRAMES = ("|", "/", "-", "\\")
SPINNER_INTERVAL_SECONDS = 0.08
CLEAR_LINE = "\r" + " " * 16 + "\r"
READ_CHUNK_SIZE = 64 * 1024
AGENT_PROMPT_FLAGS = ("--trust", "-p")
VERSION_PROBE_TIMEOUT_SECONDS = 15

# Executables that need an interpreter, keyed by file extension.
SCRIPT_INTERPRETERS: dict[str, tuple[str, ...]] = {
    ".ps1": ("powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File"),
    ".cmd": ("cmd", "/c"),
    ".bat": ("cmd", "/c"),
    ".sh": ("sh",),
    ".py": (sys.executable,),
}


class IndicatorState(StrEnum):
    """Spinner lifecycle: waiting, then streaming or finished with no output."""

    WAITING_FOR_OUTPUT = "waiting_for_output"
    STREAMING = "streaming"
    FINISHED = "finished"


class ProgressIndicator:
    """Rotating stderr indicator shown until the agent's first output chunk."""

    def __init__(
        self,
        stream: TextIO,
        *,
        enabled: bool = True,
        interval_seconds: float = SPINNER_INTERVAL_SECONDS,
    ) -> None:
        self._stream = stream
        self._enabled = enabled
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.state = IndicatorState.WAITING_FOR_OUTPUT

    def start(self) -> None:
        """Schedule the spinner on the running event loop."""
        if self._enabled and self._task is None and self.state is IndicatorState.WAITING_FOR_OUTPUT:
            self._task = asyncio.get_running_loop().create_task(self._spin())

    async def _spin(self) -> None:
        index = 0
        while True:
            frame = SPINNER_FRAMES[index % len(SPINNER_FRAMES)]
            self._stream.write(f"\r  {frame} Working ")
            self._stream.flush()
            index += 1
            await asyncio.sleep(self._interval_seconds)

    def on_chunk(self) -> None:
        """Record an output chunk; only the first one stops the spinner."""
        if self.state is IndicatorState.WAITING_FOR_OUTPUT:
            self._stop()
            self.state = IndicatorState.STREAMING

    def on_stream_end(self) -> None:
        """Record end of output; stops the spinner if no chunk ever arrived."""
        if self.state is IndicatorState.WAITING_FOR_OUTPUT:
            self._stop()
        self.state = IndicatorState.FINISHED

    def _stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
        if self._enabled:
            self._stream.write(CLEAR_LINE)
            self._stream.flush()

    async def wait_closed(self) -> None:
        """Wait for a cancelled spinner task to unwind."""
        if self._task is None:
            return
        with suppress(asyncio.CancelledError):
            await self._task


def resolve_agent_command(agent_path: str) -> tuple[str, tuple[str, ...]]:
    """Return ``(command, base_args)``, wrapping scripts in their interpreter."""
    located = shutil.which(agent_path) or agent_path
    interpreter = SCRIPT_INTERPRETERS.get(Path(located).suffix.lower())
    if interpreter is None:
        return located, ()
    return interpreter[0], (*interpreter[1:], located)


def build_prompt(template: str, diff_file_name: str) -> str:
    """Point every reference to the default diff file at this run's diff file."""
    return template.replace(DIFF_FILE_BASE, diff_file_name)


def build_invocation(settings: Settings, artifacts: ArtifactPaths) -> AgentInvocation:
    """Assemble the agent command line for one run."""
    command, base_args = resolve_agent_command(settings.agent_path)
    prompt = build_prompt(settings.prompt_template, artifacts.diff_file_name)
    return AgentInvocation(
        command=command,
        args=(*base_args, *AGENT_PROMPT_FLAGS, prompt),
        cwd=artifacts.work_dir,
        prompt=prompt,
        output_path=artifacts.output_path,
        env=settings.agent_env() or None,
    )


def normalize_exit_code(returncode: int | None) -> int:
    """Map a child return code to our exit status; None is success, signal N is 128+N."""
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 - returncode
    return returncode


async def _pump_output(
    source: asyncio.StreamReader,
    indicator: ProgressIndicator,
    terminal: BinaryIO,
    output_file: BinaryIO,
) -> None:
    """Copy chunks to the terminal and the output file in arrival order."""
    while True:
        chunk = await source.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        indicator.on_chunk()
        terminal.write(chunk)
        terminal.flush()
        output_file.write(chunk)
        output_file.flush()
    indicator.on_stream_end()


async def supervise_agent(
    invocation: AgentInvocation,
    *,
    stdout: BinaryIO | None = None,
    stderr: TextIO | None = None,
    show_progress: bool | None = None,
) -> int:
    """Run the agent to completion and return the exit code to mirror."""
    terminal = stdout if stdout is not None else sys.stdout.buffer
    err = stderr if stderr is not None else sys.stderr
    progress_enabled = err.isatty() if show_progress is None else show_progress

    logger.debug("Spawning %s in %s", invocation.command, invocation.cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            invocation.command,
            *invocation.args,
            cwd=invocation.cwd,
            stdout=asyncio.subprocess.PIPE,
            env=invocation.env,
        )
    except FileNotFoundError as error:
        raise ProcessSpawnError(agent_not_found_message(invocation.command)) from error
    except PermissionError as error:
        raise ProcessSpawnError(agent_not_executable_message(invocation.command)) from error

    err.write("Running review agent on the diff (this may take a minute or two)...\n")
    err.flush()
    indicator = ProgressIndicator(err, enabled=progress_enabled)
    indicator.start()
    try:
        if process.stdout is None:
            raise ProcessSpawnError(
                f"Agent at '{invocation.command}' started without a stdout pipe."
            )
        try:
            output_file = invocation.output_path.open("wb")
        except OSError as error:
            raise CodeHermitError(
                f"Could not open review output file {invocation.output_path}: {error}"
            ) from error
        with output_file:
            try:
                await _pump_output(process.stdout, indicator, terminal, output_file)
            except OSError as error:
                raise CodeHermitError(
                    f"Could not stream agent output to {invocation.output_path}: {error}"
                ) from error
        returncode = await process.wait()
    finally:
        indicator.on_stream_end()
        await indicator.wait_closed()
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    err.write(f"\nReview saved to {invocation.output_path}\n")
    err.flush()
    return normalize_exit_code(returncode)


def probe_agent_version(agent_path: str) -> str | None:
    """Return ``<agent> --version`` output, or None when the agent cannot run."""
    command, base_args = resolve_agent_command(agent_path)
    try:
        result = subprocess.run(
            [command, *base_args, "--version"],
            capture_output=True,
            text=True,
            timeout=VERSION_PROBE_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        logger.debug("Agent version probe failed: %s", error)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None

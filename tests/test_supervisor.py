"""Tests for review agent supervision, using a Python script as the agent."""

from __future__ import annotations

import asyncio
import io
import sys
import textwrap
from pathlib import Path

import pytest

from codehermit.errors import CodeHermitError, ProcessSpawnError
from codehermit.naming import build_artifact_paths
from codehermit.schema import AgentInvocation, ArtifactPaths, ReviewTarget
from codehermit.supervisor import (
    AGENT_PROMPT_FLAGS,
    CLEAR_LINE,
    IndicatorState,
    ProgressIndicator,
    build_invocation,
    build_prompt,
    normalize_exit_code,
    resolve_agent_command,
    supervise_agent,
)


def write_agent(directory: Path, body: str) -> Path:
    """Write a fake agent script and return its path."""
    script = directory / "fake_agent.py"
    script.write_text(textwrap.dedent(body), encoding="utf-8")
    return script


def make_artifacts(tmp_path: Path, pr_id: int | None = None) -> ArtifactPaths:
    repo = tmp_path / "rocket"
    repo.mkdir(exist_ok=True)
    target = ReviewTarget(
        repo_path=repo,
        repo_name="rocket",
        base_branch="main",
        head_branch="feature/x",
        pr_id=pr_id,
    )
    return build_artifact_paths(target)


def run_supervisor(invocation: AgentInvocation) -> tuple[int, bytes, str]:
    stdout = io.BytesIO()
    stderr = io.StringIO()
    code = asyncio.run(
        supervise_agent(invocation, stdout=stdout, stderr=stderr, show_progress=True)
    )
    return code, stdout.getvalue(), stderr.getvalue()


@pytest.mark.unit
def test_output_is_streamed_to_terminal_and_file(make_settings, tmp_path: Path) -> None:
    script = write_agent(
        tmp_path,
        """
        import sys
        sys.stdout.write("## Review\\n")
        sys.stdout.flush()
        sys.stdout.write("Looks good.\\n")
        """,
    )
    artifacts = make_artifacts(tmp_path)
    invocation = build_invocation(make_settings(agent_path=str(script)), artifacts)

    code, terminal, stderr = run_supervisor(invocation)

    assert code == 0
    assert terminal == b"## Review\nLooks good.\n"
    assert artifacts.output_path.read_bytes() == terminal
    assert stderr.count(CLEAR_LINE) == 1
    assert f"Review saved to {artifacts.output_path}" in stderr


@pytest.mark.unit
def test_agent_receives_trust_flag_and_prompt(make_settings, tmp_path: Path) -> None:
    script = write_agent(
        tmp_path,
        """
        import sys
        print(sys.argv[1])
        print(sys.argv[2])
        print(sys.argv[3])
        """,
    )
    artifacts = make_artifacts(tmp_path, pr_id=182370)
    settings = make_settings(
        agent_path=str(script), prompt_template="Read .codehermit-diff.txt now."
    )

    _code, terminal, _stderr = run_supervisor(build_invocation(settings, artifacts))

    lines = terminal.decode("utf-8").splitlines()
    assert lines == ["--trust", "-p", "Read .182370.codehermit-diff.txt now."]


@pytest.mark.unit
def test_agent_runs_in_artifact_directory(make_settings, tmp_path: Path) -> None:
    script = write_agent(tmp_path, "import os\nprint(os.getcwd())\n")
    artifacts = make_artifacts(tmp_path)

    _code, terminal, _stderr = run_supervisor(
        build_invocation(make_settings(agent_path=str(script)), artifacts)
    )

    assert Path(terminal.decode("utf-8").strip()).resolve() == artifacts.work_dir.resolve()


@pytest.mark.unit
def test_exit_code_is_mirrored(make_settings, tmp_path: Path) -> None:
    script = write_agent(tmp_path, "import sys\nprint('partial review')\nsys.exit(3)\n")
    artifacts = make_artifacts(tmp_path)

    code, _terminal, _stderr = run_supervisor(
        build_invocation(make_settings(agent_path=str(script)), artifacts)
    )

    assert code == 3
    assert artifacts.output_path.read_text(encoding="utf-8").strip() == "partial review"


class ClosedTerminal(io.BytesIO):
    """Terminal stand-in whose reader has gone away, as with `| head`."""

    def write(self, data: bytes) -> int:  # type: ignore[override]
        raise BrokenPipeError(32, "Broken pipe")


@pytest.mark.unit
def test_terminal_write_failure_becomes_one_line_error(make_settings, tmp_path: Path) -> None:
    script = write_agent(tmp_path, "print('## Review')\n")
    artifacts = make_artifacts(tmp_path)
    invocation = build_invocation(make_settings(agent_path=str(script)), artifacts)

    with pytest.raises(CodeHermitError, match="Could not stream agent output") as exc_info:
        asyncio.run(
            supervise_agent(
                invocation, stdout=ClosedTerminal(), stderr=io.StringIO(), show_progress=False
            )
        )

    assert str(artifacts.output_path) in str(exc_info.value)
    assert "Broken pipe" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, BrokenPipeError)


@pytest.mark.unit
def test_zero_output_clears_indicator_before_completion_message(
    make_settings, tmp_path: Path
) -> None:
    script = write_agent(tmp_path, "import time\ntime.sleep(0.3)\n")
    artifacts = make_artifacts(tmp_path)

    code, terminal, stderr = run_supervisor(
        build_invocation(make_settings(agent_path=str(script)), artifacts)
    )

    assert code == 0
    assert terminal == b""
    assert artifacts.output_path.read_bytes() == b""
    assert stderr.count(CLEAR_LINE) == 1
    assert "Working" in stderr
    assert stderr.index(CLEAR_LINE) < stderr.index("Review saved to")
    assert "Working" not in stderr[stderr.index(CLEAR_LINE) :]


@pytest.mark.unit
def test_missing_executable_raises_spawn_error_without_output_file(tmp_path: Path) -> None:
    output_path = tmp_path / ".codehermit-output.md"
    invocation = AgentInvocation(
        command=str(tmp_path / "no-such-agent"),
        args=(*AGENT_PROMPT_FLAGS, "prompt"),
        cwd=tmp_path,
        prompt="prompt",
        output_path=output_path,
    )

    with pytest.raises(ProcessSpawnError) as exc_info:
        run_supervisor(invocation)

    assert "AGENT_PATH" in str(exc_info.value)
    assert "install" in str(exc_info.value).lower()
    assert not output_path.exists()


@pytest.mark.unit
def test_indicator_state_machine_without_rendering() -> None:
    stream = io.StringIO()
    indicator = ProgressIndicator(stream, enabled=False)

    indicator.on_chunk()
    assert indicator.state is IndicatorState.STREAMING
    indicator.on_chunk()
    indicator.on_stream_end()

    assert indicator.state is IndicatorState.FINISHED
    assert stream.getvalue() == ""


@pytest.mark.unit
def test_indicator_stops_rendering_after_first_chunk() -> None:
    stream = io.StringIO()

    async def scenario() -> tuple[str, str]:
        indicator = ProgressIndicator(stream, interval_seconds=0.01)
        indicator.start()
        await asyncio.sleep(0.05)
        indicator.on_chunk()
        at_first_chunk = stream.getvalue()
        await asyncio.sleep(0.05)
        indicator.on_stream_end()
        await indicator.wait_closed()
        return at_first_chunk, stream.getvalue()

    at_first_chunk, final = asyncio.run(scenario())

    assert "Working" in at_first_chunk
    assert at_first_chunk.endswith(CLEAR_LINE)
    assert final == at_first_chunk


@pytest.mark.unit
def test_resolve_agent_command_dispatches_on_extension(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("codehermit.supervisor.shutil.which", lambda name: None)

    assert resolve_agent_command("agent") == ("agent", ())
    assert resolve_agent_command("C:\\tools\\agent.ps1") == (
        "powershell",
        ("-NoProfile", "-ExecutionPolicy", "Bypass", "-File", "C:\\tools\\agent.ps1"),
    )
    assert resolve_agent_command("C:\\tools\\agent.CMD") == ("cmd", ("/c", "C:\\tools\\agent.CMD"))
    assert resolve_agent_command("/opt/agent.sh") == ("sh", ("/opt/agent.sh",))
    assert resolve_agent_command("/opt/agent.py") == (sys.executable, ("/opt/agent.py",))


@pytest.mark.unit
def test_resolve_agent_command_uses_located_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "codehermit.supervisor.shutil.which", lambda name: "C:\\Users\\dev\\bin\\agent.cmd"
    )

    assert resolve_agent_command("agent") == ("cmd", ("/c", "C:\\Users\\dev\\bin\\agent.cmd"))


@pytest.mark.unit
def test_build_prompt_replaces_every_diff_reference() -> None:
    template = "Open .codehermit-diff.txt. Quote .codehermit-diff.txt lines."

    assert build_prompt(template, ".7.codehermit-diff.txt") == (
        "Open .7.codehermit-diff.txt. Quote .7.codehermit-diff.txt lines."
    )


@pytest.mark.unit
@pytest.mark.parametrize(("returncode", "expected"), [(None, 0), (0, 0), (2, 2), (-15, 143)])
def test_normalize_exit_code(returncode: int | None, expected: int) -> None:
    assert normalize_exit_code(returncode) == expected


@pytest.mark.unit
def test_invocation_forwards_cursor_api_key(make_settings, tmp_path: Path) -> None:
    settings = make_settings(cursor_api_key="cursor-key", base_env={"PATH": "/usr/bin"})

    invocation = build_invocation(settings, make_artifacts(tmp_path))

    assert invocation.env == {"PATH": "/usr/bin", "CURSOR_API_KEY": "cursor-key"}

"""End-to-end execution tests against real child processes."""

from __future__ import annotations

import io
import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

import procmux.lib.exec.shell as shell_module
from procmux import CommandFailedError, ExecutionOptions, execute
from procmux.lib.exec.shell import command_argv, validate_command

PY = sys.executable
WriteScript = Callable[[str, str], Path]
posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="needs a POSIX shell")


def _quiet(**overrides: object) -> ExecutionOptions:
    """Options that never touch the real terminal or host stdin."""

    values: dict[str, object] = {
        "output_sinks": [io.BytesIO()],
        "error_sinks": [io.BytesIO()],
        "suppress_stdin_forwarding": True,
        "failure_grace_seconds": 0.0,
    }
    values.update(overrides)
    return ExecutionOptions(**values)  # type: ignore[arg-type]


def test_stdout_bytes_reach_every_sink_unchanged(write_script: WriteScript) -> None:
    payload = bytes(range(256)) * 8 + b"\ntrailer"
    script = write_script(
        "emit.py",
        f"""
        import sys
        sys.stdout.buffer.write({payload!r})
        sys.stdout.buffer.flush()
        """,
    )
    first, second = io.BytesIO(), io.BytesIO()

    exit_code = execute(PY, str(script), options=_quiet(output_sinks=[first, second]))

    assert exit_code == 0
    assert first.getvalue() == payload
    assert second.getvalue() == payload


def test_stderr_copied_independently_of_stdout(write_script: WriteScript) -> None:
    script = write_script(
        "both.py",
        """
        import sys
        for i in range(50):
            sys.stdout.write(f"out {i}\\n")
            sys.stderr.write(f"err {i}\\n")
        """,
    )
    out, err_a, err_b = io.BytesIO(), io.BytesIO(), io.BytesIO()

    execute(PY, str(script), options=_quiet(output_sinks=[out], error_sinks=[err_a, err_b]))

    assert out.getvalue().decode().splitlines() == [f"out {i}" for i in range(50)]
    assert err_a.getvalue().decode().splitlines() == [f"err {i}" for i in range(50)]
    assert err_b.getvalue() == err_a.getvalue()


def test_zero_exit_with_die_returns_zero() -> None:
    assert execute(PY, "-c", "pass", options=_quiet(fail_on_nonzero_exit=True)) == 0


def test_nonzero_exit_with_die_raises_structured_failure() -> None:
    options = _quiet(fail_on_nonzero_exit=True, environment={"SECRET_TOKEN": "hunter2"})

    with pytest.raises(CommandFailedError) as excinfo:
        execute(PY, "-c", "import sys; sys.exit(7)", options=options)

    failure = excinfo.value
    assert failure.exit_code == 7
    assert failure.argv == (PY, "-c", "import sys; sys.exit(7)")
    assert str(failure) == "shell command failed with exit code 7"
    assert "environment" not in failure.options
    assert failure.options["fail_on_nonzero_exit"] is True
    assert failure.script is None
    assert "hunter2" not in repr(failure.to_dict())


def test_nonzero_exit_without_die_is_returned() -> None:
    assert execute(PY, "-c", "import sys; sys.exit(7)", options=_quiet()) == 7


def test_failure_carries_script_contents_for_direct_script(
    write_script: WriteScript,
    tmp_path: Path,
) -> None:
    source = "import sys\nsys.exit(3)\n"
    script = write_script("fail.py", source)

    with pytest.raises(CommandFailedError) as excinfo:
        execute(PY, script.name, options=_quiet(fail_on_nonzero_exit=True, cwd=tmp_path))

    assert excinfo.value.exit_code == 3
    assert excinfo.value.script == source
    assert excinfo.value.to_dict()["file"] == source


def test_failure_waits_for_grace_period(monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(shell_module.time, "sleep", sleeps.append)

    with pytest.raises(CommandFailedError):
        execute(
            PY,
            "-c",
            "raise SystemExit(2)",
            options=_quiet(fail_on_nonzero_exit=True, failure_grace_seconds=0.25),
        )

    assert sleeps == [0.25]


def test_replace_environment_gives_child_only_supplied_entries() -> None:
    out = io.BytesIO()
    options = _quiet(output_sinks=[out], environment={"A": "1"}, replace_environment=True)

    snippet = (
        "import os, sys; "
        "sys.stdout.write(os.environ['A'] + ('|PATH' if 'PATH' in os.environ else ''))"
    )

    execute(PY, "-c", snippet, options=options)

    assert out.getvalue() == b"1"


def test_environment_overrides_inherit_the_rest(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROCMUX_INHERITED", "parent")
    out = io.BytesIO()

    execute(
        PY,
        "-c",
        "import os; print(os.environ['PROCMUX_INHERITED'], os.environ['A'])",
        options=_quiet(output_sinks=[out], environment={"A": "1"}),
    )

    assert out.getvalue().decode().strip() == "parent 1"


@posix_only
def test_use_shell_joins_command_for_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELL", "/bin/sh")
    out = io.BytesIO()

    execute("echo", "hello", "world", options=_quiet(output_sinks=[out], use_shell=True))

    assert out.getvalue() == b"hello world\n"


@posix_only
def test_use_shell_failure_reports_wrapped_argv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELL", "/bin/sh")

    with pytest.raises(CommandFailedError) as excinfo:
        execute("exit", "4", options=_quiet(use_shell=True, fail_on_nonzero_exit=True))

    assert excinfo.value.argv == ("/bin/sh", "-c", "exit 4")
    assert excinfo.value.script is None


def test_host_lines_forwarded_then_child_sees_eof(write_script: WriteScript) -> None:
    script = write_script(
        "echo_lines.py",
        """
        import sys
        for line in sys.stdin:
            sys.stdout.write(line)
            sys.stdout.flush()
        sys.stdout.write("EOF\\n")
        """,
    )
    out = io.BytesIO()
    options = _quiet(
        output_sinks=[out],
        suppress_stdin_forwarding=False,
        stdin_source=io.StringIO("x\ny\n"),
    )

    assert execute(PY, str(script), options=options) == 0
    assert out.getvalue().decode().splitlines() == ["x", "y", "EOF"]


def test_forwarder_is_cancelled_when_child_ignores_stdin() -> None:
    read_fd, write_fd = os.pipe()
    host_input = os.fdopen(read_fd, "r", encoding="utf-8")
    try:
        options = _quiet(suppress_stdin_forwarding=False, stdin_source=host_input)

        assert execute(PY, "-c", "print('done')", options=options) == 0
    finally:
        os.close(write_fd)


def test_host_input_belongs_to_caller_after_execute_returns() -> None:
    read_fd, write_fd = os.pipe()
    host_input = os.fdopen(read_fd, "r", encoding="utf-8")
    try:
        options = _quiet(suppress_stdin_forwarding=False, stdin_source=host_input)
        assert execute(PY, "-c", "pass", options=options) == 0

        os.write(write_fd, b"caller line\n")

        assert host_input.readline() == "caller line\n"
    finally:
        os.close(write_fd)
        host_input.close()


def test_suppressed_stdin_gives_child_empty_input() -> None:
    out = io.BytesIO()
    options = _quiet(output_sinks=[out], stdin_source=io.StringIO("should not arrive\n"))

    execute(PY, "-c", "import sys; print(repr(sys.stdin.read()))", options=options)

    assert out.getvalue().decode().strip() == "''"


def test_default_sinks_are_host_streams(capsys: pytest.CaptureFixture[str]) -> None:
    options = ExecutionOptions(suppress_stdin_forwarding=True)

    execute(
        PY,
        "-c",
        "import sys; print('to out'); print('to err', file=sys.stderr)",
        options=options,
    )

    captured = capsys.readouterr()
    assert captured.out.splitlines() == ["to out"]
    assert captured.err.splitlines() == ["to err"]


def test_text_sinks_receive_decoded_output() -> None:
    text_sink = io.StringIO()

    execute(
        PY,
        "-c",
        "import sys; sys.stdout.buffer.write('grüße €\\n'.encode('utf-8'))",
        options=_quiet(output_sinks=[text_sink]),
    )

    assert text_sink.getvalue() == "grüße €\n"


def test_child_runs_in_configured_directory(tmp_path: Path) -> None:
    out = io.BytesIO()

    options = _quiet(output_sinks=[out], cwd=tmp_path)

    execute(PY, "-c", "import os; print(os.getcwd())", options=options)

    assert Path(out.getvalue().decode().strip()).resolve() == tmp_path.resolve()


def test_spawn_failure_propagates() -> None:
    with pytest.raises(FileNotFoundError):
        execute("procmux-definitely-not-a-real-program", options=_quiet())


class BrokenSink:
    def write(self, data: bytes) -> int:
        raise OSError("sink broke")

    def flush(self) -> None:
        return None


def test_sink_failure_is_raised_after_child_exits() -> None:
    with pytest.raises(OSError, match="sink broke"):
        execute(PY, "-c", "print('x' * 100000)", options=_quiet(output_sinks=[BrokenSink()]))


def test_tee_sink_gets_full_output_when_terminal_sink_fails() -> None:
    tee = io.BytesIO()

    with pytest.raises(OSError, match="sink broke"):
        execute(PY, "-c", "print('x' * 1000)", options=_quiet(output_sinks=[BrokenSink(), tee]))

    assert tee.getvalue() == b"x" * 1000 + b"\n"


def test_validate_command_rejects_bad_input(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="empty"):
        validate_command(())
    with pytest.raises(TypeError, match="expected str or path"):
        validate_command(("echo", 3))
    assert validate_command(("cat", tmp_path)) == ("cat", str(tmp_path))


def test_command_argv_only_wraps_in_shell_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(shell_module, "shell_prelude", lambda *suffix, **_: ["/bin/zsh", *suffix])

    assert command_argv(["ls", "-l"], use_shell=False) == ["ls", "-l"]
    assert command_argv(["ls", "-l", "*.py"], use_shell=True) == ["/bin/zsh", "-c", "ls -l *.py"]


def test_options_validate_once_at_construction() -> None:
    with pytest.raises(TypeError, match="output_sinks"):
        ExecutionOptions(output_sinks=["not a sink"])  # type: ignore[list-item]
    with pytest.raises(ValueError, match="failure_grace_seconds"):
        ExecutionOptions(failure_grace_seconds=-1)
    single = io.BytesIO()
    assert ExecutionOptions(output_sinks=single).output_sinks == (single,)  # type: ignore[arg-type]


@posix_only
def test_configured_fallback_shell_used_when_shell_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SHELL", raising=False)

    with pytest.raises(CommandFailedError) as excinfo:
        execute(
            "exit 5",
            options=_quiet(use_shell=True, fail_on_nonzero_exit=True, fallback_shell="/bin/sh"),
        )

    assert excinfo.value.argv == ("/bin/sh", "-c", "exit 5")
    assert excinfo.value.options["fallback_shell"] == "/bin/sh"

"""Structured failure payload tests."""

from __future__ import annotations

from pathlib import Path

from procmux.lib.exec.errors import CommandFailedError, read_script_for_diagnostics


def test_failure_payload_shape() -> None:
    failure = CommandFailedError(
        argv=["bash", "-c", "false"],
        exit_code=1,
        options={
            "use_shell": True,
            "cwd": Path("/tmp/work"),
            "output_sinks": (object(),),
            "failure_grace_seconds": 0.5,
        },
    )

    payload = failure.to_dict()

    assert payload["msg"] == "shell command failed with exit code 1"
    assert payload["cmd"] == ["bash", "-c", "false"]
    assert payload["exit_code"] == 1
    assert "file" not in payload
    opts = payload["opts"]
    assert isinstance(opts, dict)
    assert opts["use_shell"] is True
    assert opts["cwd"] == "/tmp/work"
    assert opts["failure_grace_seconds"] == 0.5
    assert isinstance(opts["output_sinks"], list)
    assert opts["output_sinks"][0].startswith("<object object")


def test_failure_includes_script_text_when_known() -> None:
    failure = CommandFailedError(argv=["bash", "deploy.sh"], exit_code=2, script="exit 2\n")

    assert failure.to_dict()["file"] == "exit 2\n"
    assert failure.options == {}


def test_failure_is_a_runtime_error() -> None:
    failure = CommandFailedError(argv=["x"], exit_code=9)

    assert isinstance(failure, RuntimeError)
    assert str(failure) == failure.message


def test_script_read_for_interpreter_plus_file(tmp_path: Path) -> None:
    (tmp_path / "job.sh").write_text("echo hi\nexit 3\n", encoding="utf-8")

    script = read_script_for_diagnostics(["bash", "job.sh"], use_shell=False, cwd=tmp_path)

    assert script == "echo hi\nexit 3\n"


def test_script_not_read_in_shell_mode(tmp_path: Path) -> None:
    (tmp_path / "job.sh").write_text("exit 3\n", encoding="utf-8")

    assert read_script_for_diagnostics(["bash", "job.sh"], use_shell=True, cwd=tmp_path) is None


def test_script_not_read_for_other_shapes(tmp_path: Path) -> None:
    (tmp_path / "job.sh").write_text("exit 3\n", encoding="utf-8")
    (tmp_path / "subdir").mkdir()

    shapes = (["job.sh"], ["bash", "job.sh", "x"], ["bash", "missing.sh"], ["bash", "subdir"])
    for command in shapes:
        assert read_script_for_diagnostics(command, use_shell=False, cwd=tmp_path) is None

"""Structured failure raised for non-zero exits."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path


class CommandFailedError(RuntimeError):
    """Raised when a command exits non-zero and failure was requested.

    `argv` is what was actually executed (shell prelude included), `options`
    is the redacted option snapshot (no environment) and `script` holds the
    text of a directly executed script file when one could be identified.
    """

    def __init__(
        self,
        *,
        argv: Sequence[str],
        exit_code: int,
        options: Mapping[str, object] | None = None,
        script: str | None = None,
    ) -> None:
        self.message = f"shell command failed with exit code {exit_code}"
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.options = dict(options or {})
        self.script = script
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "msg": self.message,
            "cmd": list(self.argv),
            "opts": {key: _describe(value) for key, value in self.options.items()},
            "exit_code": self.exit_code,
        }
        if self.script is not None:
            payload["file"] = self.script
        return payload


def _describe(value: object) -> object:
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, tuple | list):
        return [_describe(item) for item in value]
    return repr(value)


def read_script_for_diagnostics(
    command: Sequence[str],
    *,
    use_shell: bool,
    cwd: Path,
) -> str | None:
    """Return the script text for `interpreter script` style invocations.

    Only applies when the command ran without a shell wrapper and is exactly
    an interpreter plus one argument naming an existing file.
    """

    if use_shell or len(command) != 2:
        return None
    candidate = cwd / command[1]
    if not candidate.is_file():
        return None
    try:
        return candidate.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None

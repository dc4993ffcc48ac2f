"""Execution options for one command invocation."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from pathlib import Path
from typing import IO

from procmux.lib.config.settings import ProcmuxConfig
from procmux.lib.exec.multiplex import Sink

_DEFAULT_CONFIG = ProcmuxConfig()
DEFAULT_FAILURE_GRACE_SECONDS = _DEFAULT_CONFIG.failure_grace_seconds
DEFAULT_STDIN_POLL_SECONDS = _DEFAULT_CONFIG.stdin_poll_seconds
DEFAULT_FALLBACK_SHELL = _DEFAULT_CONFIG.fallback_shell
REDACTED_FIELDS = frozenset({"environment"})


def _normalize_sinks(value: object, *, field_name: str) -> tuple[Sink, ...] | None:
    if value is None:
        return None
    if isinstance(value, Sink) and not isinstance(value, Sequence):
        sinks: tuple[object, ...] = (value,)
    elif isinstance(value, Sequence) and not isinstance(value, str | bytes):
        sinks = tuple(value)
    else:
        raise TypeError(
            f"Invalid {field_name}: expected a sequence of writable sinks, got "
            f"{type(value).__name__}."
        )
    for sink in sinks:
        if not isinstance(sink, Sink):
            raise TypeError(
                f"Invalid {field_name} entry {sink!r}: sinks need write() and flush()."
            )
    return sinks


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Configuration for `execute`.

    Attributes:
        output_sinks: Destinations for child stdout (default: host stdout).
        error_sinks: Destinations for child stderr (default: host stderr).
        environment: Overrides for, or replacement of, the child environment.
        replace_environment: Use exactly `environment` instead of overlaying it.
        fail_on_nonzero_exit: Raise `CommandFailedError` on a non-zero exit.
        use_shell: Join the command with spaces and run it via the system shell.
        suppress_stdin_forwarding: Do not forward host input; the child gets
            an empty stdin instead.
        cwd: Working directory for the child (default: current directory).
        failure_grace_seconds: Pause before raising a failure so trailing
            output has a chance to render. Best effort only.
        stdin_source: Host input to forward (default: `sys.stdin`).
        stdin_poll_seconds: How often a waiting stdin forwarder checks for
            cancellation.
        fallback_shell: Interpreter used in shell mode when `SHELL` is unset.
    """

    output_sinks: Sequence[Sink] | None = None
    error_sinks: Sequence[Sink] | None = None
    environment: Mapping[str, object] | None = None
    replace_environment: bool = False
    fail_on_nonzero_exit: bool = False
    use_shell: bool = False
    suppress_stdin_forwarding: bool = False
    cwd: str | os.PathLike[str] | None = None
    failure_grace_seconds: float = DEFAULT_FAILURE_GRACE_SECONDS
    stdin_source: IO[str] | IO[bytes] | None = None
    stdin_poll_seconds: float = DEFAULT_STDIN_POLL_SECONDS
    fallback_shell: str = DEFAULT_FALLBACK_SHELL

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "output_sinks",
            _normalize_sinks(self.output_sinks, field_name="output_sinks"),
        )
        object.__setattr__(
            self,
            "error_sinks",
            _normalize_sinks(self.error_sinks, field_name="error_sinks"),
        )
        if self.environment is not None and not isinstance(self.environment, Mapping):
            raise TypeError(
                f"Invalid environment: expected a mapping, got {type(self.environment).__name__}."
            )
        if self.failure_grace_seconds < 0:
            raise ValueError("failure_grace_seconds must be >= 0.")
        if self.stdin_poll_seconds <= 0:
            raise ValueError("stdin_poll_seconds must be > 0.")
        if not self.fallback_shell:
            raise ValueError("fallback_shell must be a non-empty path.")

    def resolved_output_sinks(self) -> tuple[Sink, ...]:
        return tuple(self.output_sinks) if self.output_sinks is not None else (sys.stdout,)

    def resolved_error_sinks(self) -> tuple[Sink, ...]:
        return tuple(self.error_sinks) if self.error_sinks is not None else (sys.stderr,)

    def resolved_cwd(self) -> Path:
        return Path(self.cwd) if self.cwd is not None else Path.cwd()

    def resolved_stdin_source(self) -> IO[str] | IO[bytes]:
        return self.stdin_source if self.stdin_source is not None else sys.stdin

    def redacted(self) -> dict[str, object]:
        """Snapshot of every option except the environment, for error reports."""

        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if field.name not in REDACTED_FIELDS
        }

"""Cyclopts CLI entry point for procmux."""

from __future__ import annotations

import json
import os
import re
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, BinaryIO, TextIO

from cyclopts import App, Parameter

from procmux import __version__
from procmux.lib.config.settings import load_config
from procmux.lib.exec.env import build_child_env, changed_keys, env_strings
from procmux.lib.exec.errors import CommandFailedError
from procmux.lib.exec.options import ExecutionOptions
from procmux.lib.exec.shell import command_argv, execute, validate_command

if TYPE_CHECKING:
    from collections.abc import Sequence

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SPAWN_FAILURE_EXIT_CODE = 127
_GLOBAL_FLAGS = frozenset({"-v", "--verbose", "--json"})


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Options consumed before the subcommand: `procmux -v --json run ...`."""

    verbosity: int = 0
    json_mode: bool = False


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], GlobalOptions]:
    verbosity = 0
    json_mode = False
    index = 0
    while index < len(argv) and argv[index] in _GLOBAL_FLAGS:
        if argv[index] == "--json":
            json_mode = True
        else:
            verbosity += 1
        index += 1
    return list(argv[index:]), GlobalOptions(verbosity=verbosity, json_mode=json_mode)


def parse_env_assignments(raw_assignments: Sequence[str]) -> dict[str, str] | None:
    """Parse repeated --env KEY=VALUE assignments; later ones win."""

    if not raw_assignments:
        return None
    parsed: dict[str, str] = {}
    for raw in raw_assignments:
        key, sep, value = raw.partition("=")
        if not sep:
            raise ValueError(f"Invalid --env value '{raw}'. Expected KEY=VALUE.")
        if not _ENV_KEY_RE.match(key):
            raise ValueError(
                f"Invalid environment key '{key}'. Use letters, numbers, and underscores only."
            )
        parsed[key] = value
    return parsed


def exit_status(exit_code: int) -> int:
    """Map a child exit code onto a status this process can exit with."""

    if exit_code < 0:
        # Killed by a signal on POSIX; follow the shell's 128+N convention.
        return 128 - exit_code
    return exit_code


def _terminal_sink(stream: TextIO) -> TextIO | BinaryIO:
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        return stream
    stream.flush()
    return buffer


app = App(
    name="procmux",
    help="Run a command with forwarded stdin and multiplexed stdout/stderr.",
    version=__version__,
    help_formatter="plain",
)


@app.command(name="run")
def run_command(
    *command: Annotated[str, Parameter(help="Command and arguments; put them after `--`.")],
    out: Annotated[
        tuple[Path, ...],
        Parameter(
            name=["--out", "-o"],
            help="Also copy child stdout into this file (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    err: Annotated[
        tuple[Path, ...],
        Parameter(
            name=["--err", "-e"],
            help="Also copy child stderr into this file (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    env: Annotated[
        tuple[str, ...],
        Parameter(
            name="--env",
            help="Environment variable for the child in KEY=VALUE form (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    replace_env: Annotated[
        bool,
        Parameter(name="--replace-env", help="Give the child only the --env variables."),
    ] = False,
    die: Annotated[
        bool,
        Parameter(name="--die", help="Report a non-zero exit as a failure."),
    ] = False,
    use_shell: Annotated[
        bool,
        Parameter(name="--shell", help="Join the command with spaces and run it via $SHELL -c."),
    ] = False,
    no_stdin: Annotated[
        bool,
        Parameter(name="--no-stdin", help="Do not forward this process's stdin to the child."),
    ] = False,
    cwd: Annotated[
        Path | None,
        Parameter(name="--cwd", help="Working directory for the child."),
    ] = None,
    grace_seconds: Annotated[
        float | None,
        Parameter(
            name="--grace-seconds",
            help="Pause before reporting a failure so trailing output can render.",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        Parameter(name="--dry-run", help="Print the resolved command without running it."),
    ] = False,
) -> None:
    """Run COMMAND and exit with its exit code."""

    resolved = validate_command(command)
    config = load_config()
    environment = parse_env_assignments(env)

    if dry_run:
        _print_dry_run(
            resolved,
            environment=environment,
            replace_env=replace_env,
            use_shell=use_shell,
            fallback_shell=config.fallback_shell,
        )
        return

    with ExitStack() as stack:
        out_files = [stack.enter_context(path.open("wb")) for path in out]
        err_files = [stack.enter_context(path.open("wb")) for path in err]
        options = ExecutionOptions(
            output_sinks=(_terminal_sink(sys.stdout), *out_files),
            error_sinks=(_terminal_sink(sys.stderr), *err_files),
            environment=environment,
            replace_environment=replace_env,
            fail_on_nonzero_exit=die,
            use_shell=use_shell,
            suppress_stdin_forwarding=no_stdin,
            cwd=cwd,
            failure_grace_seconds=(
                grace_seconds if grace_seconds is not None else config.failure_grace_seconds
            ),
            stdin_poll_seconds=config.stdin_poll_seconds,
            fallback_shell=config.fallback_shell,
        )
        try:
            exit_code = execute(*resolved, options=options)
        except FileNotFoundError as exc:
            print(f"error: {_error_message(exc)}", file=sys.stderr)
            raise SystemExit(SPAWN_FAILURE_EXIT_CODE) from None

    raise SystemExit(exit_status(exit_code))


def _print_dry_run(
    command: Sequence[str],
    *,
    environment: dict[str, str] | None,
    replace_env: bool,
    use_shell: bool,
    fallback_shell: str,
) -> None:
    argv = command_argv(command, use_shell=use_shell, fallback_shell=fallback_shell)
    print(" ".join(argv))
    child_env = build_child_env(environment, replace=replace_env)
    if child_env is None:
        return
    changed = {key: child_env[key] for key in changed_keys(child_env, os.environ)}
    for line in env_strings(changed):
        print(line)


def _report_failure(exc: CommandFailedError, *, json_mode: bool) -> None:
    if json_mode:
        print(json.dumps(exc.to_dict(), sort_keys=True), file=sys.stderr)
        return
    print(f"error: {exc.message}", file=sys.stderr)
    print(f"  command: {' '.join(exc.argv)}", file=sys.stderr)


def _error_message(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `procmux` and `python -m procmux`."""

    from procmux.lib.logging import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, options = _extract_global_options(args)
    configure_logging(json_mode=options.json_mode, verbosity=options.verbosity)

    try:
        app(cleaned_args)
    except CommandFailedError as exc:
        _report_failure(exc, json_mode=options.json_mode)
        raise SystemExit(exit_status(exc.exit_code)) from None
    except (ValueError, TypeError, OSError) as exc:
        print(f"error: {_error_message(exc)}", file=sys.stderr)
        raise SystemExit(1) from None

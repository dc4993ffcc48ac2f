"""Run one external command with forwarded stdin and multiplexed output."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from procmux.lib.exec.env import build_child_env
from procmux.lib.exec.errors import CommandFailedError, read_script_for_diagnostics
from procmux.lib.exec.multiplex import StreamMultiplexer
from procmux.lib.exec.options import ExecutionOptions
from procmux.lib.exec.prelude import DEFAULT_FALLBACK_SHELL, shell_prelude
from procmux.lib.exec.stdin import StdinForwarder, host_line_pump

logger = structlog.get_logger(__name__)


def validate_command(command: Sequence[object]) -> tuple[str, ...]:
    """Return the command as a tuple of strings, rejecting empty or odd input."""

    if not command:
        raise ValueError("Cannot execute: command is empty.")
    normalized: list[str] = []
    for part in command:
        if isinstance(part, str):
            normalized.append(part)
        elif isinstance(part, os.PathLike):
            normalized.append(os.fspath(part))
        else:
            raise TypeError(
                f"Invalid command argument {part!r}: expected str or path, "
                f"got {type(part).__name__}."
            )
    return tuple(normalized)


def command_argv(
    command: Sequence[str],
    *,
    use_shell: bool,
    fallback_shell: str = DEFAULT_FALLBACK_SHELL,
) -> list[str]:
    """Build the argv handed to the OS, wrapping with the shell prelude if asked.

    In shell mode the arguments are joined with single spaces and nothing is
    quoted; metacharacters are the caller's business.
    """

    if not use_shell:
        return list(command)
    return [*shell_prelude("-c", fallback_shell=fallback_shell), " ".join(command)]


@dataclass(slots=True)
class _Workers:
    stdout: StreamMultiplexer
    stderr: StreamMultiplexer
    stdin: StdinForwarder | None
    threads: dict[str, threading.Thread]


def _start_workers(
    process: subprocess.Popen[bytes],
    options: ExecutionOptions,
) -> _Workers:
    if process.stdout is None or process.stderr is None:
        raise RuntimeError("Subprocess did not expose stdout/stderr pipes.")

    stdout = StreamMultiplexer("stdout", process.stdout, options.resolved_output_sinks())
    stderr = StreamMultiplexer("stderr", process.stderr, options.resolved_error_sinks())
    forwarder: StdinForwarder | None = None
    threads = {
        "stdout": threading.Thread(target=stdout.run, name="procmux-stdout", daemon=True),
        "stderr": threading.Thread(target=stderr.run, name="procmux-stderr", daemon=True),
    }
    if process.stdin is not None:
        forwarder = StdinForwarder(
            process.stdin,
            host_line_pump(
                options.resolved_stdin_source(),
                poll_interval=options.stdin_poll_seconds,
            ),
            poll_interval=options.stdin_poll_seconds,
        )
        threads["stdin"] = threading.Thread(
            target=forwarder.run,
            name="procmux-stdin",
            daemon=True,
        )

    for thread in threads.values():
        thread.start()
    return _Workers(stdout=stdout, stderr=stderr, stdin=forwarder, threads=threads)


def execute(
    *command: str | os.PathLike[str],
    options: ExecutionOptions | None = None,
) -> int:
    """Run `command` to completion and return its exit code.

    Child stdout/stderr are copied to the configured sinks, host input is
    forwarded line by line unless suppressed, and all output is drained
    before the exit code is looked at. With `fail_on_nonzero_exit` a
    non-zero exit raises `CommandFailedError` instead of returning.

    Spawn failures (missing executable, permissions) propagate as `OSError`.
    There are no timeouts: a hung child or sink blocks this call.
    """

    resolved = validate_command(command)
    opts = options or ExecutionOptions()
    cwd = opts.resolved_cwd()
    env = build_child_env(opts.environment, replace=opts.replace_environment)
    argv = command_argv(
        resolved,
        use_shell=opts.use_shell,
        fallback_shell=opts.fallback_shell,
    )

    process = subprocess.Popen(
        argv,
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL if opts.suppress_stdin_forwarding else subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        bufsize=0,
    )
    logger.debug("Launched child process.", pid=process.pid, argv=argv, cwd=str(cwd))

    workers = _start_workers(process, opts)

    # Output threads finish on end-of-stream; joining them first guarantees
    # every byte reached the sinks before the exit code is inspected.
    workers.threads["stdout"].join()
    workers.threads["stderr"].join()
    logger.debug(
        "Child output drained.",
        pid=process.pid,
        stdout_bytes=workers.stdout.bytes_copied,
        stderr_bytes=workers.stderr.bytes_copied,
    )

    exit_code = process.wait()

    if workers.stdin is not None:
        # The child is gone; the forwarder may still be waiting on host input.
        workers.stdin.cancel()
        workers.threads["stdin"].join()

    _close_pipes(process)
    logger.debug("Child process exited.", pid=process.pid, exit_code=exit_code)

    for multiplexer in (workers.stdout, workers.stderr):
        if multiplexer.error is not None:
            raise multiplexer.error

    if exit_code == 0 or not opts.fail_on_nonzero_exit:
        return exit_code

    logger.warning("Command failed.", argv=argv, exit_code=exit_code)
    if opts.failure_grace_seconds > 0:
        # Best effort only: gives a shared terminal a moment to render output.
        time.sleep(opts.failure_grace_seconds)
    raise CommandFailedError(
        argv=argv,
        exit_code=exit_code,
        options=opts.redacted(),
        script=read_script_for_diagnostics(resolved, use_shell=opts.use_shell, cwd=cwd),
    )


def _close_pipes(process: subprocess.Popen[bytes]) -> None:
    for pipe in (process.stdout, process.stderr):
        if pipe is not None:
            pipe.close()

"""Process execution primitives."""

from procmux.lib.exec.env import build_child_env, env_strings
from procmux.lib.exec.errors import CommandFailedError
from procmux.lib.exec.multiplex import Sink, StreamMultiplexer, multiplex_stream
from procmux.lib.exec.options import ExecutionOptions
from procmux.lib.exec.prelude import shell_prelude
from procmux.lib.exec.shell import command_argv, execute, validate_command
from procmux.lib.exec.stdin import ForwardOutcome, HostLinePump, StdinForwarder, host_line_pump

__all__ = [
    "CommandFailedError",
    "ExecutionOptions",
    "ForwardOutcome",
    "HostLinePump",
    "Sink",
    "StdinForwarder",
    "StreamMultiplexer",
    "build_child_env",
    "command_argv",
    "env_strings",
    "execute",
    "host_line_pump",
    "multiplex_stream",
    "shell_prelude",
    "validate_command",
]

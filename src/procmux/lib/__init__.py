"""Core procmux library exports."""

from procmux.lib.exec import CommandFailedError, ExecutionOptions, execute

__all__ = ["CommandFailedError", "ExecutionOptions", "execute"]

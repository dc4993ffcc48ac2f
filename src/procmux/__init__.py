"""procmux: run external commands with multiplexed output."""

from __future__ import annotations

__version__ = "0.1.0"

from procmux.lib.exec import CommandFailedError, ExecutionOptions, execute

__all__ = ["CommandFailedError", "ExecutionOptions", "__version__", "execute"]

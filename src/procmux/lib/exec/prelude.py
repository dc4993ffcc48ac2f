"""System shell prelude selection."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping

import structlog

from procmux.lib.config.settings import ProcmuxConfig

DEFAULT_FALLBACK_SHELL = ProcmuxConfig().fallback_shell
WINDOWS_PRELUDE: tuple[str, ...] = ("cmd", "/C")
logger = structlog.get_logger(__name__)


def is_windows(platform: str | None = None) -> bool:
    return (platform if platform is not None else sys.platform).startswith("win")


def shell_prelude(
    *unix_suffix: str,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
    fallback_shell: str = DEFAULT_FALLBACK_SHELL,
) -> list[str]:
    """Return the interpreter invocation used to run a command through the shell.

    Windows hosts always get `cmd /C` and ignore `unix_suffix`. Elsewhere the
    interpreter is `$SHELL`, or `fallback_shell` with a warning when `SHELL`
    is unset, followed by `unix_suffix` (typically `-c`).
    """

    if is_windows(platform):
        return list(WINDOWS_PRELUDE)

    env = os.environ if environ is None else environ
    shell = env.get("SHELL")
    if not shell:
        logger.warning("$SHELL not set; using fallback shell.", fallback_shell=fallback_shell)
        shell = fallback_shell
    return [shell, *unix_suffix]

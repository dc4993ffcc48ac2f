"""Operational configuration."""

from procmux.lib.config.settings import ProcmuxConfig, load_config

__all__ = ["ProcmuxConfig", "load_config"]

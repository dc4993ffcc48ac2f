"""Repository-level operational config loader."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".procmux"
CONFIG_FILENAME = "config.toml"


@dataclass(frozen=True, slots=True)
class ProcmuxConfig:
    """Resolved operational configuration for procmux."""

    failure_grace_seconds: float = 0.5
    stdin_poll_seconds: float = 0.05
    fallback_shell: str = "/bin/sh"


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timing": {
        "failure_grace_seconds": "failure_grace_seconds",
        "grace_seconds": "failure_grace_seconds",
        "stdin_poll_seconds": "stdin_poll_seconds",
    },
    "shell": {
        "fallback": "fallback_shell",
        "fallback_shell": "fallback_shell",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "failure_grace_seconds": "failure_grace_seconds",
    "stdin_poll_seconds": "stdin_poll_seconds",
    "fallback_shell": "fallback_shell",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "PROCMUX_FAILURE_GRACE_SECONDS": "failure_grace_seconds",
    "PROCMUX_STDIN_POLL_SECONDS": "stdin_poll_seconds",
    "PROCMUX_FALLBACK_SHELL": "fallback_shell",
}

_FLOAT_FIELDS = frozenset({"failure_grace_seconds", "stdin_poll_seconds"})


def config_path(root: Path) -> Path:
    return root / CONFIG_DIRNAME / CONFIG_FILENAME


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _FLOAT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return normalized


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    if field_name in _FLOAT_FIELDS:
        try:
            return float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error

    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def _default_values() -> dict[str, object]:
    defaults = ProcmuxConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ProcmuxConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown procmux config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown procmux config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> ProcmuxConfig:
    config = ProcmuxConfig(
        failure_grace_seconds=cast("float", values["failure_grace_seconds"]),
        stdin_poll_seconds=cast("float", values["stdin_poll_seconds"]),
        fallback_shell=cast("str", values["fallback_shell"]),
    )
    if config.failure_grace_seconds < 0:
        raise ValueError(
            "Invalid failure_grace_seconds: expected a non-negative value, got "
            f"{config.failure_grace_seconds!r}."
        )
    if config.stdin_poll_seconds <= 0:
        raise ValueError(
            "Invalid stdin_poll_seconds: expected a positive value, got "
            f"{config.stdin_poll_seconds!r}."
        )
    return config


def load_config(root: Path | None = None) -> ProcmuxConfig:
    """Load `.procmux/config.toml` under `root` and apply environment overrides."""

    values = _default_values()
    path = config_path(root if root is not None else Path.cwd())
    if path.is_file():
        payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values)
    return _build_config(values)

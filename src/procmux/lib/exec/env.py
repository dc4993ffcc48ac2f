"""Child environment construction."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping


def build_child_env(
    environment: Mapping[object, object] | None,
    *,
    replace: bool = False,
    base: Mapping[str, str] | None = None,
) -> dict[str, str] | None:
    """Return the environment mapping to hand to the child process.

    `None` means "inherit the parent environment unchanged" and is returned
    whenever no `environment` is supplied, regardless of `replace`. With
    `replace` the result holds exactly the supplied entries; otherwise the
    supplied entries are laid over a copy of `base` (default `os.environ`).
    """

    if environment is None:
        return None

    overrides = {str(key): str(value) for key, value in environment.items()}
    if replace:
        return overrides

    merged = dict(os.environ if base is None else base)
    merged.update(overrides)
    return merged


def env_strings(env: Mapping[str, str]) -> list[str]:
    """Render an environment mapping in flat `KEY=VALUE` form."""

    return [f"{key}={value}" for key, value in env.items()]


def changed_keys(env: Mapping[str, str] | None, base: Mapping[str, str]) -> Iterable[str]:
    """Yield keys whose value in `env` differs from (or is missing in) `base`."""

    if env is None:
        return
    for key, value in env.items():
        if base.get(key) != value:
            yield key

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv


def load_env(*, override: bool = False) -> Path | None:
    repo_root = Path(__file__).resolve().parents[2]
    candidates = [
        repo_root / ".env",
        Path.cwd() / ".env",
    ]
    for path in candidates:
        if path.is_file():
            load_dotenv(dotenv_path=path, override=override)
            return path
    return None


def env_str(name: str, default: str | None = None, *, environ: Mapping[str, str] | None = None) -> str | None:
    source = os.environ if environ is None else environ
    value = (source.get(name) or "").strip()
    return value or default


def env_number(
    name: str,
    default: float,
    *,
    cast: type = float,
    minimum: float | None = None,
    environ: Mapping[str, str] | None = None,
):
    """
    Parse a numeric environment value.

    Raises `ValueError` when the value is present but not a number or below `minimum`.
    """

    raw = env_str(name, environ=environ)
    if raw is None:
        return cast(default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number (got {raw!r}).") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value}).")
    return value


def env_csv(name: str, default: tuple[str, ...], *, environ: Mapping[str, str] | None = None) -> tuple[str, ...]:
    raw = env_str(name, environ=environ)
    if raw is None:
        return default
    parts = tuple(part.strip() for part in raw.split(",") if part.strip())
    return parts or default

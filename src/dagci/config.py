from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _int(environ: Mapping[str, str], key: str) -> Optional[int]:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _float(environ: Mapping[str, str], key: str) -> Optional[float]:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number of seconds, got {raw!r}") from None


def _flag(environ: Mapping[str, str], key: str) -> bool:
    return environ.get(key, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    max_workers: Optional[int] = None
    step_timeout: Optional[float] = None
    artifact_dir: Optional[str] = None
    workdir: str = "."
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            max_workers=_int(env, "DAGCI_MAX_WORKERS"),
            step_timeout=_float(env, "DAGCI_STEP_TIMEOUT"),
            artifact_dir=env.get("DAGCI_ARTIFACT_DIR") or None,
            workdir=env.get("DAGCI_WORKDIR") or ".",
            debug=_flag(env, "DAGCI_DEBUG"),
        )


def secrets_from_env(prefix: str, environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Collect `<prefix>NAME=value` variables as secret NAME."""
    env = os.environ if environ is None else environ
    return {k[len(prefix):]: v for k, v in env.items() if k.startswith(prefix) and len(k) > len(prefix)}

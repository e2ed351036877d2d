"""Helpers for loading environment configuration."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

_ENV_LOADED = False

_LOGGER = logging.getLogger(__name__)


def load_dotenv(dotenv_path: Union[str, Path] = ".env") -> None:
    """Load environment variables from a simple ``.env`` file if present."""
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    path = Path(dotenv_path)
    if path.exists():
        for line in path.read_text().splitlines():
            parsed = _parse_line(line)
            if parsed:
                key, value = parsed
                os.environ.setdefault(key, value)

    _ENV_LOADED = True


def _parse_line(line: str) -> Optional[Tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    if "=" not in stripped:
        return None

    key, value = stripped.split("=", 1)
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return (key.strip(), value)


def _truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    lowered = value.strip().lower()
    return lowered in {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag, falling back to ``default`` when unset."""

    load_dotenv()
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return _truthy(value)


def env_int(name: str, default: int) -> int:
    """Read an integer setting; malformed values fall back to ``default``."""

    load_dotenv()
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _LOGGER.warning(
            "Ignoring non-integer value for %s: %r", name, raw
        )
        return default


def env_list(name: str) -> List[str]:
    """Split a comma separated variable into trimmed, non-empty items."""

    load_dotenv()
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def custom_nsfw_keywords() -> List[str]:
    """Return extra safety keywords from ``AIMODELDB_NSFW_KEYWORDS``."""

    return [item.lower() for item in env_list("AIMODELDB_NSFW_KEYWORDS")]


def safety_blocking_enabled() -> bool:
    """Return True when unsafe records should be dropped instead of tagged.

    Controlled by ``AIMODELDB_BLOCK_NSFW``; blocking is the default.
    """

    return env_flag("AIMODELDB_BLOCK_NSFW", default=True)

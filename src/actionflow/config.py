"""Load optional engine configuration from `.actionflow/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_CLEANUP_DAYS,
    DEFAULT_LOG_LEVEL,
    DEFAULT_POSITION_STRIDE,
    STATE_DIR_NAME,
)
from .io_utils import _load_yaml_with_error


VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory holding the `.actionflow/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_yaml_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_position_stride(config: dict[str, Any]) -> int:
    """Extract `positions.stride`, falling back to the default for missing or invalid values.

    Args:
        config: Engine configuration dictionary.

    Returns:
        The stride used when a sibling group is renumbered.
    """
    raw = _get_nested(config, "positions", "stride")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 2:
        return DEFAULT_POSITION_STRIDE
    return raw


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL


def get_cleanup_days(config: dict[str, Any]) -> int:
    """Extract `cleanup.older_than_days` (a non-negative int), or the default."""
    raw = _get_nested(config, "cleanup", "older_than_days")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        return DEFAULT_CLEANUP_DAYS
    return raw

"""Load optional engine configuration from `.task_graph/config.yaml`."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PRIORITY,
    DEFAULT_TAG,
    STATE_DIR_NAME,
    TAG_NAME_PATTERN,
)
from .io_utils import _load_data_with_error

VALID_PRIORITIES = {"low", "medium", "high"}
VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
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


def get_default_priority(config: dict[str, Any]) -> str:
    """Return the priority given to new tasks when the caller names none.

    Args:
        config: Engine configuration dictionary.

    Returns:
        One of `low`, `medium`, `high`; `medium` if unset or invalid.
    """
    raw = _get_nested(config, "defaults", "priority")
    if isinstance(raw, str) and raw.strip().lower() in VALID_PRIORITIES:
        return raw.strip().lower()
    return DEFAULT_PRIORITY


def get_default_tag(config: dict[str, Any]) -> str:
    """Return the tag operations use when the caller names none.

    Args:
        config: Engine configuration dictionary.

    Returns:
        The configured tag name, or `master` if unset or not a valid tag name.
    """
    raw = _get_nested(config, "defaults", "tag")
    if isinstance(raw, str) and re.match(TAG_NAME_PATTERN, raw):
        return raw
    return DEFAULT_TAG


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.strip().upper() in VALID_LOG_LEVELS:
        return raw.strip().upper()
    return DEFAULT_LOG_LEVEL


def get_tasks_file(config: dict[str, Any]) -> Optional[str]:
    """Extract the tasks file override (relative to the project dir).

    Args:
        config: Engine configuration dictionary.

    Returns:
        The configured path string, or None if not set.
    """
    raw = _get_nested(config, "storage", "tasks_file")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def get_events_file(config: dict[str, Any]) -> Optional[str]:
    raw = _get_nested(config, "storage", "events_file")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def is_audit_log_enabled(config: dict[str, Any]) -> bool:
    """Return whether status changes are appended to the JSONL audit log."""
    raw = _get_nested(config, "audit", "enabled")
    if isinstance(raw, bool):
        return raw
    return True

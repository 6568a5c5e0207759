# src/session_guard/utils/resilient_io.py
"""
Resilient I/O helpers for the persisted credential slot.

Writes go through a temp file in the target directory followed by a move,
so a reader never sees a half-written credential. None of the helpers raise
on disk errors: they log and report failure, and the caller keeps its
in-memory copy.
"""

import json
import os
import shutil
import tempfile
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union


def safe_write_json(
    path: Union[str, Path],
    data: Dict[str, Any],
    logger: logging.Logger,
    indent: int = 2,
    secure_permissions: bool = False,
) -> bool:
    """
    Atomically write JSON data to a file.

    Args:
        path: File path to write to
        data: JSON-serializable data
        logger: Logger for warnings
        indent: JSON indentation level (default: 2)
        secure_permissions: Restrict the file to its owner (0o600)

    Returns:
        True on success, False on failure (never raises)
    """
    path = Path(path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data, indent=indent)

        tmp_fd = None
        tmp_path = None
        try:
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=".tmp_", suffix=".json", text=True
            )
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                tmp_fd = None

            # Permissions go on before the move so the file is never world-readable
            if secure_permissions:
                try:
                    os.chmod(tmp_path, 0o600)
                except (OSError, AttributeError):
                    # Windows may not support chmod
                    pass

            shutil.move(tmp_path, path)
            tmp_path = None
        finally:
            if tmp_fd is not None:
                try:
                    os.close(tmp_fd)
                except OSError:
                    pass
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

        return True

    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write JSON to {path}: {e}")
        return False


def safe_read_json(
    path: Union[str, Path], logger: logging.Logger
) -> Optional[Dict[str, Any]]:
    """
    Read a JSON object from a file.

    Returns:
        The parsed object, or None if the file is missing, unreadable or
        does not hold a JSON object (never raises)
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read JSON from {path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path.name}: expected a JSON object")
        return None
    return data


def safe_remove(path: Union[str, Path], logger: logging.Logger) -> bool:
    """
    Delete a file if it exists.

    Returns:
        True if the file is gone afterwards, False on failure (never raises)
    """
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
        return False

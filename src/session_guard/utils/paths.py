# src/session_guard/utils/paths.py
"""
Centralized path management for the session layer.

Supports two runtime modes:
1. PyInstaller EXE -> files in the directory containing the executable
2. Script/Library  -> files in the current working directory (overridable)
"""

import sys
from pathlib import Path
from typing import Optional, Union


def get_default_root() -> Path:
    """
    Get the default root directory for data files.

    - EXE mode (PyInstaller): directory containing the executable
    - Otherwise: current working directory
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.cwd()


def get_logs_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """Get the logs directory, creating it if needed."""
    base = Path(root) if root else get_default_root()
    logs_dir = base / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_credentials_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """Get the directory holding the persisted credential slot, creating it if needed."""
    base = Path(root) if root else get_default_root()
    creds_dir = base / "session_creds"
    creds_dir.mkdir(parents=True, exist_ok=True)
    return creds_dir


def get_data_file(filename: str, root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the path to a data file in the root directory.

    Args:
        filename: Name of the file (e.g., "session.yaml", ".env")
        root: Optional root directory. If None, uses get_default_root().

    Returns:
        Path to the file (does not create the file)
    """
    base = Path(root) if root else get_default_root()
    return base / filename

"""Environment file loading for the runbook controller.

Loads a `.env` file with python-dotenv before settings are read. Values
already present in the process environment win over the file
(override=False), so container/shell configuration is never masked by a
stale checkout-local file.

Usage:

    from src.common.env import load_env
    load_env()
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv as _load_dotenv


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Walk upwards from `start_path` until a pyproject.toml or .git is found."""
    current = start_path or Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return None


def find_env_file(filename: str = ".env") -> Optional[Path]:
    """Return the first `.env` in the working directory or project root."""
    candidates = [Path.cwd() / filename]
    root = find_project_root()
    if root is not None:
        candidates.append(root / filename)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_env(env_file: Optional[str] = None, override: bool = False) -> bool:
    """Load environment variables from a `.env` file.

    Args:
        env_file: Explicit path. Searched for when omitted.
        override: Let file values replace variables that are already set.

    Returns:
        True if a file was found and loaded.
    """
    dotenv_path = Path(env_file) if env_file else find_env_file()
    if dotenv_path is None or not dotenv_path.exists():
        return False

    _load_dotenv(dotenv_path=dotenv_path, override=override)
    return True


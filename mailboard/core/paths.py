"""
Centralized path configuration for mailboard.

Supports:
- Local config: ./config/*.yaml
- External overlay: CONFIG_DIR=/path/to/private/config
- Fallback to .example.yaml when .yaml missing

Usage:
    from mailboard.core.paths import get_config_path

    accounts_path = get_config_path("accounts.yaml", required=True)
"""
import logging
import os
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# mailboard/core/paths.py -> mailboard/core -> mailboard -> repo root
_REPO_ROOT = Path(__file__).parent.parent.parent
_DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"


def _config_dir() -> Path:
    return Path(os.getenv("CONFIG_DIR", str(_DEFAULT_CONFIG_DIR)))


def _with_example(directory: Path, filename: str) -> List[Path]:
    paths = [directory / filename]
    if filename.endswith(".yaml"):
        paths.append(directory / filename.replace(".yaml", ".example.yaml"))
    return paths


def get_config_path(filename: str, required: bool = False) -> Optional[Path]:
    """
    Resolve config file path with fallback logic.

    Resolution order:
    1. Absolute or existing relative path as given
    2. CONFIG_DIR / filename, then filename.example.yaml
    3. Default config dir / filename, then filename.example.yaml

    Raises:
        FileNotFoundError: If required=True and file not found
    """
    direct = Path(filename).expanduser()
    if direct.is_absolute() or direct.exists():
        if direct.exists():
            return direct
        if required:
            raise FileNotFoundError(f"Required config file '{filename}' not found.")
        return None

    config_dir = _config_dir()
    candidates = _with_example(config_dir, filename)
    if config_dir != _DEFAULT_CONFIG_DIR:
        candidates.extend(_with_example(_DEFAULT_CONFIG_DIR, filename))

    for path in candidates:
        if path.exists():
            logger.debug(f"Config '{filename}' resolved to: {path}")
            return path

    if required:
        searched = [str(c) for c in candidates]
        raise FileNotFoundError(
            f"Required config file '{filename}' not found.\n"
            f"Searched: {searched}\n"
            f"Set CONFIG_DIR or create config/{filename}"
        )
    return None

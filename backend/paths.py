"""
WLED Slide - Path Resolution
User data (config.json) lives next to the backend modules unless
WLED_SLIDE_DATA_DIR points somewhere else.
"""
MODULE_VERSION = "1.1.0"

import os
from pathlib import Path

BACKEND_DIR = Path(__file__).parent
PROJECT_ROOT = BACKEND_DIR.parent

DATA_DIR = Path(os.environ.get("WLED_SLIDE_DATA_DIR", BACKEND_DIR))
CONFIG_FILE = DATA_DIR / "config.json"
VERSION_FILE = PROJECT_ROOT / "VERSION"


def get_version() -> str:
    """Read version from the VERSION file."""
    try:
        return VERSION_FILE.read_text().strip()
    except OSError:
        return "?.?.?"

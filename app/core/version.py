# app/core/version.py
"""Service version from a VERSION file or the installed distribution."""
from functools import lru_cache
from importlib import metadata
from pathlib import Path


VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"
DISTRIBUTION_NAME = "contextnow-gateway"
DEFAULT_VERSION = "1.0.0"


@lru_cache()
def get_version() -> str:
    """Resolve the version reported in X-Service-Version and /health.

    Priority:
    1. VERSION file (written by Docker builds)
    2. Installed distribution metadata (pip install -e .)
    3. DEFAULT_VERSION
    """
    if VERSION_FILE.exists():
        version = VERSION_FILE.read_text().strip()
        if version:
            return version

    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return DEFAULT_VERSION


VERSION = get_version()

"""Version information for m365-mcp."""

from pathlib import Path

MANIFEST_VERSION = "0.1.0"


def _get_version() -> str:
    """Get version from a VERSION file next to the package or fall back to the manifest version."""
    pkg_version = Path(__file__).parent / "VERSION"
    if pkg_version.exists():
        return pkg_version.read_text().strip()

    return MANIFEST_VERSION


__version__ = _get_version()

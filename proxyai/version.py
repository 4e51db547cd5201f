# proxyai/version.py
"""Version metadata for proxyai."""

from typing import Any, Dict, Optional, Tuple

__version__ = "0.1.0"
__version_info__: Tuple[int, ...] = tuple(int(part) for part in __version__.split("."))

# Set by release builds
__commit__: Optional[str] = None


def get_version_info() -> Dict[str, Any]:
    """
    Version details, reported in client statistics and bug reports.

    Example:
        >>> get_version_info()["version"]
        '0.1.0'
    """
    info: Dict[str, Any] = {"version": __version__, "version_info": __version_info__}
    if __commit__:
        info["commit"] = __commit__
    return info

"""Version information for :mod:`ledgermigrate`."""

__all__ = [
    "VERSION",
    "get_version",
]

VERSION = "0.3.0"


def get_version() -> str:
    """Get the :mod:`ledgermigrate` version string."""
    return VERSION

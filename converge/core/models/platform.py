"""
Platform enum — the hosts a dependency variant can be scoped to.
"""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    """Operating-system families a variant can target."""

    LINUX = "linux"
    OSX = "osx"
    BSD = "bsd"
    WINDOWS = "windows"

    @classmethod
    def parse(cls, value: str | Platform) -> Platform:
        """Parse a platform name, accepting common aliases.

        Raises:
            ValueError: If the name is not a known platform.
        """
        if isinstance(value, Platform):
            return value
        key = str(value).strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown platform '{value}'. Valid: {valid}") from None


_ALIASES = {
    "darwin": "osx",
    "macos": "osx",
    "mac": "osx",
    "freebsd": "bsd",
    "openbsd": "bsd",
    "netbsd": "bsd",
    "win32": "windows",
}

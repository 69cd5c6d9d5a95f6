"""Glob matching of canonical paths against grant patterns.

``*`` stays inside one path segment, ``**`` crosses segments, ``?`` is one
character. Matching is case-insensitive. A leading ``~`` in a pattern is
expanded when matching, never when storing.
"""

from __future__ import annotations

import functools
import os
import re
import sys
from pathlib import Path

_WIN_DEVICE_PREFIX_RE = re.compile(r"^\\\\[?.]\\")
_WILDCARD_RE = re.compile(r"[*?]")


def expand_home(value: str, home: str | None = None) -> str:
    """Expand ``~`` and ``~/...``; other values pass through."""
    if not value:
        return value
    home_dir = home if home is not None else str(Path.home())
    if value == "~":
        return home_dir
    if value.startswith(("~/", "~\\")):
        return os.path.join(home_dir, value[2:])
    return value


def normalize_match_target(value: str, platform: str = sys.platform) -> str:
    if platform.startswith("win"):
        stripped = _WIN_DEVICE_PREFIX_RE.sub("", value)
        return stripped.replace("\\", "/").lower()
    return value.replace("\\", "/").lower()


@functools.lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = ["^"]
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            if pattern[i + 1 : i + 2] == "*":
                parts.append(".*")
                i += 2
                continue
            parts.append("[^/]*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
        i += 1
    parts.append("$")
    return re.compile("".join(parts), re.IGNORECASE)


def _try_realpath(value: str) -> str | None:
    try:
        return os.path.realpath(value, strict=True)
    except OSError:
        return None


def matches_pattern(
    pattern: str,
    target: str,
    *,
    platform: str = sys.platform,
    home: str | None = None,
) -> bool:
    """Return whether *target* (already canonical) is covered by *pattern*."""
    trimmed = pattern.strip()
    if not trimmed:
        return False
    expanded = expand_home(trimmed, home) if trimmed.startswith("~") else trimmed
    normalized_pattern = expanded
    normalized_target = target
    if platform.startswith("win") and not _WILDCARD_RE.search(expanded):
        normalized_pattern = _try_realpath(expanded) or expanded
        normalized_target = _try_realpath(target) or target
    regex = glob_to_regex(normalize_match_target(normalized_pattern, platform))
    return regex.match(normalize_match_target(normalized_target, platform)) is not None


def dir_glob(file_path: str, *, sep: str = os.sep, home: str | None = None) -> str:
    """Glob covering everything under the directory that holds *file_path*."""
    trimmed = file_path.strip()
    resolved = expand_home(trimmed, home) if trimmed.startswith("~") else trimmed
    directory = os.path.dirname(resolved)
    suffix = "**" if directory.endswith(sep) else f"{sep}**"
    return f"{directory}{suffix}"


def root_glob(root: str, *, sep: str = os.sep) -> str:
    """Glob covering an entire directory tree rooted at *root*."""
    trimmed = root.rstrip("/\\") or root
    suffix = "**" if trimmed.endswith(sep) else f"{sep}**"
    return f"{trimmed}{suffix}"

"""URL pattern syntax: validation, normalization and compilation.

Patterns look like ``/users/{id}/posts``; each ``{name}`` placeholder matches
exactly one non-empty path segment (or part of one). Leading slashes are
added and trailing slashes removed so ``users/5/`` and ``/users/5`` are the
same url.
"""

import fnmatch
import re
from functools import lru_cache

from .exceptions import ValidationError

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def normalize_url(url: str) -> str:
    url = (url or "").split("?", 1)[0].strip()
    if not url.startswith("/"):
        url = "/" + url
    if len(url) > 1:
        url = url.rstrip("/") or "/"
    return url


def normalize_pattern(pattern) -> str:
    """Return the canonical form of ``pattern`` or raise ValidationError."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValidationError.for_field("pattern", "Pattern must be a non-empty string.")
    if any(ch.isspace() for ch in pattern.strip()):
        raise ValidationError.for_field("pattern", "Pattern must not contain whitespace.")
    stripped = PLACEHOLDER_RE.sub("", pattern)
    if "{" in stripped or "}" in stripped:
        raise ValidationError.for_field(
            "pattern", "Placeholders must look like {name} with an identifier name."
        )
    if "//" in pattern:
        raise ValidationError.for_field("pattern", "Pattern must not contain empty segments.")
    return normalize_url(pattern)


def normalize_method(method) -> str:
    value = str(method or "").strip().upper()
    if value not in SUPPORTED_METHODS:
        raise ValidationError.for_field("method", f"Unsupported HTTP method: {method!r}.")
    return value


def placeholder_count(pattern: str) -> int:
    return len(PLACEHOLDER_RE.findall(pattern))


def has_placeholders(pattern: str) -> bool:
    return PLACEHOLDER_RE.search(pattern) is not None


def matches_any(url: str, globs) -> bool:
    """fnmatch ``url`` against shell-style globs, with or without a leading slash."""
    bare = url.lstrip("/")
    for glob in globs:
        if fnmatch.fnmatchcase(url, glob) or fnmatch.fnmatchcase(bare, glob.lstrip("/")):
            return True
    return False


@lru_cache(maxsize=2048)
def compile_pattern(pattern: str) -> re.Pattern:
    """Anchored regex for ``pattern``; literal text is escaped."""
    parts = []
    position = 0
    for match in PLACEHOLDER_RE.finditer(pattern):
        parts.append(re.escape(pattern[position:match.start()]))
        parts.append("[^/]+")
        position = match.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("^" + "".join(parts) + "$")


__all__ = [
    "SUPPORTED_METHODS",
    "normalize_url",
    "normalize_pattern",
    "normalize_method",
    "placeholder_count",
    "has_placeholders",
    "matches_any",
    "compile_pattern",
]

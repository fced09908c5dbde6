"""Repository name and GitHub slug utilities.

Tracked repository names double as directory names under the working
directory, so they are restricted to a conservative character set. GitHub
slugs are ``owner/repo`` identifiers; they use ``/`` as a separator but are
not filesystem paths and should be parsed with these helpers.
"""

from __future__ import annotations

import re
import urllib.parse

REPOSITORY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")
_SLUG_SEGMENT_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
_GITHUB_PATH_PATTERN = re.compile(
    r"^/([a-zA-Z0-9_.\-]+)/([a-zA-Z0-9_.\-]+?)(?:\.git)?/?$"
)
_GITHUB_HOSTS = frozenset({"github.com", "www.github.com"})


def is_valid_repository_name(name: str) -> bool:
    """Return True when ``name`` is usable as a tracked repository name.

    Examples
    --------
    >>> is_valid_repository_name("nixpkgs")
    True
    >>> is_valid_repository_name("../etc")
    False

    """
    return bool(REPOSITORY_NAME_PATTERN.fullmatch(name))


def parse_github_slug(slug: str) -> tuple[str, str]:
    """Parse an ``owner/repo`` slug.

    Parameters
    ----------
    slug:
        GitHub slug in ``owner/repo`` format.

    Returns
    -------
    tuple[str, str]
        ``(owner, repo)``.

    Raises
    ------
    ValueError
        If the slug is not exactly two non-empty segments.

    Examples
    --------
    >>> parse_github_slug("NixOS/nixpkgs")
    ('NixOS', 'nixpkgs')

    """
    parts = slug.strip().split("/")
    if len(parts) != 2 or not all(  # noqa: PLR2004 - owner and repo
        _SLUG_SEGMENT_PATTERN.fullmatch(part) for part in parts
    ):
        msg = f"Invalid GitHub slug: expected 'owner/repo', got {slug!r}"
        raise ValueError(msg)
    return parts[0], parts[1]


def github_slug_from_url(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a github.com clone URL.

    Returns ``None`` for URLs that do not point at github.com, so callers can
    treat GitHub metadata as optional.

    Examples
    --------
    >>> github_slug_from_url("https://github.com/NixOS/nixpkgs.git")
    ('NixOS', 'nixpkgs')
    >>> github_slug_from_url("https://example.org/NixOS/nixpkgs.git") is None
    True

    """
    parsed = urllib.parse.urlsplit(url)
    if parsed.hostname not in _GITHUB_HOSTS:
        return None
    match = _GITHUB_PATH_PATTERN.fullmatch(parsed.path)
    if match is None:
        return None
    return match.group(1), match.group(2)


__all__ = [
    "REPOSITORY_NAME_PATTERN",
    "github_slug_from_url",
    "is_valid_repository_name",
    "parse_github_slug",
]

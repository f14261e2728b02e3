"""Path helpers for building tar paths."""

from __future__ import annotations

import posixpath
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nix2container.types import PathOptions

_CASE_HACK_SUFFIX = "~nix~case~hack~"
_TEMPLATE = re.compile(r"\$(?:(\$)|\{([A-Za-z0-9_]+)\}|([A-Za-z0-9_]+))")


def clean_path(path: str) -> str:
    """Return the shortest equivalent slash-separated path."""
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def join_path(*elements: str) -> str:
    """Join the non-empty elements and clean the result; empty if none."""
    parts = [element for element in elements if element]
    return clean_path("/".join(parts)) if parts else ""


def remove_nix_case_hack_suffix(path: str) -> str:
    """Strip the case-hack suffix Nix adds on case-insensitive filesystems."""
    parts = [part.split(_CASE_HACK_SUFFIX, 1)[0] for part in path.split("/")]
    prefix = "/" if path.startswith("/") else ""
    return prefix + join_path(*parts)


def split_path(path: str) -> list[str]:
    """Split a cleaned path on slashes; the root becomes a single empty part."""
    parts = clean_path(path).split("/")
    if parts == ["", ""]:
        return [""]
    return parts


def _expand(template: str, match: re.Match[str]) -> str:
    def substitute(token: re.Match[str]) -> str:
        if token.group(1):
            return "$"
        name = token.group(2) or token.group(3)
        try:
            value = match.group(int(name) if name.isdigit() else name)
        except IndexError:
            return ""
        return value or ""

    return _TEMPLATE.sub(substitute, template)


def file_path_to_tar_path(path: str, options: PathOptions | None) -> str:
    """Return the name a file gets in the tar stream.

    When the options carry a regex, every match is replaced by the
    replacement text, which may hold ``$1``, ``${name}`` and ``$$``.
    """
    rewrite = options.rewrite if options is not None else None
    if rewrite is None or not rewrite.regex:
        return path
    pattern = re.compile(rewrite.regex)
    return pattern.sub(lambda m: _expand(rewrite.repl, m), path)
"""Windows executable search (PATH + PATHEXT) and command token quoting."""

from __future__ import annotations

import os

__all__ = [
    "DEFAULT_PATHEXT",
    "find_executable_in_path",
    "quote_token",
    "unquote_token",
]

DEFAULT_PATHEXT = ".COM;.EXE;.BAT;.CMD"


def unquote_token(token: str) -> str:
    """Strip one pair of surrounding double quotes."""
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return token[1:-1]
    return token


def quote_token(token: str) -> str:
    """Quote a command token containing whitespace, unless already quoted."""
    if token.startswith('"') and token.endswith('"') and len(token) >= 2:
        return token
    if any(ch.isspace() for ch in token):
        return f'"{token}"'
    return token


def _windows_path(path: str) -> str:
    return os.path.abspath(path).replace("/", "\\")


def _candidates(base: str, extensions: list[str]) -> list[str]:
    _, ext = os.path.splitext(base)
    if ext and ext.lower() in (e.lower() for e in extensions):
        return [base]
    return [base + e for e in extensions] + [base]


def find_executable_in_path(
    token: str,
    *,
    path: str | None = None,
    pathext: str | None = None,
    cwd: str | None = None,
) -> str | None:
    """Resolve ``token`` to an executable file the way cmd.exe does.

    The working directory is searched before ``PATH``. A token without a
    known extension is tried with each ``PATHEXT`` extension in order, and
    then as given. Path elements may be double-quoted.

    Args:
        token: Command name, optionally quoted or with a directory part
        path: Search path (defaults to ``PATH`` from the environment)
        pathext: Extensions (defaults to ``PATHEXT`` from the environment)
        cwd: Directory searched first (defaults to the current directory)

    Returns:
        Absolute backslash-separated path, or None when nothing matches
    """
    token = unquote_token(token.strip())
    if not token:
        return None
    extensions = [
        ext for ext in (pathext or os.environ.get("PATHEXT") or DEFAULT_PATHEXT).split(";") if ext
    ]

    if os.path.dirname(token):
        for candidate in _candidates(token, extensions):
            if os.path.isfile(candidate):
                return _windows_path(candidate)
        return None

    search_path = os.environ.get("PATH", "") if path is None else path
    directories = [cwd or os.getcwd()]
    directories.extend(
        unquote_token(entry) for entry in search_path.split(";") if entry.strip()
    )
    for directory in directories:
        for candidate in _candidates(os.path.join(directory, token), extensions):
            if os.path.isfile(candidate):
                return _windows_path(candidate)
    return None

"""Child environment construction.

POSIX children get the parent's environment with the caller's overrides
applied on top. Windows children get a merge of several sources, lowest
precedence first:

    process env < machine registry < user registry < caller overrides

Windows keys compare case-insensitively, the first spelling seen is kept,
and ``PATH`` values are merged instead of replaced. Keys in
``BLACKLISTED_KEYS`` describe the running session and are never taken from
registry sources.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Optional

__all__ = [
    "BLACKLISTED_KEYS",
    "merge_posix_environment",
    "merge_environment",
    "merge_path_value",
    "string_block_to_environment",
    "environment_to_string_block",
]

BLACKLISTED_KEYS = frozenset(
    key.lower()
    for key in (
        "CommonProgramFiles",
        "CommonProgramFiles(x86)",
        "CommonProgramW6432",
        "ComSpec",
        "NUMBER_OF_PROCESSORS",
        "OS",
        "PROCESSOR_ARCHITECTURE",
        "PROCESSOR_IDENTIFIER",
        "PROCESSOR_LEVEL",
        "PROCESSOR_REVISION",
        "ProgramFiles",
        "ProgramFiles(x86)",
        "ProgramW6432",
        "PSModulePath",
        "TEMP",
        "TMP",
        "USERDOMAIN",
        "USERNAME",
        "USERPROFILE",
        "windir",
    )
)

_PATH_KEY = "path"
_WINDOWS_PATH_SEPARATOR = ";"

EnvironmentOverrides = Mapping[str, Optional[str]]


def merge_posix_environment(
    overrides: EnvironmentOverrides | None,
    *,
    locale: bool = True,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the environment for a POSIX child.

    Args:
        overrides: Caller variables; a None value removes the variable
        locale: Set ``LC_ALL=C`` before applying overrides
        base: Starting environment (defaults to ``os.environ``)
    """
    environment = dict(os.environ if base is None else base)
    if locale:
        environment["LC_ALL"] = "C"
    for key, value in (overrides or {}).items():
        if value is None:
            environment.pop(str(key), None)
        else:
            environment[str(key)] = str(value)
    return environment


def merge_path_value(preferred: str | None, existing: str | None) -> str | None:
    """Merge two Windows PATH values.

    Entries of ``preferred`` come first; entries of ``existing`` not already
    present (case-insensitively) are appended. Forward slashes become
    backslashes. ``merge_path_value(a, a) == a`` for normalized input.
    """
    if preferred:
        preferred = preferred.replace("/", "\\")
    if existing:
        existing = existing.replace("/", "\\")
    if not existing:
        return preferred
    if not preferred:
        return existing

    seen = {entry.lower() for entry in preferred.split(_WINDOWS_PATH_SEPARATOR)}
    appended = [
        entry
        for entry in existing.split(_WINDOWS_PATH_SEPARATOR)
        if entry.lower() not in seen
    ]
    return _WINDOWS_PATH_SEPARATOR.join([preferred, *appended])


def _merge_into(
    merged: dict[str, tuple[str, str | None]],
    source: Mapping[str, str | None],
    blacklist: Iterable[str] = (),
) -> None:
    """Merge ``source`` into ``merged`` (lowercased key -> (key, value))."""
    blacklist = frozenset(blacklist)
    for key, value in source.items():
        key = str(key)
        folded = key.lower()
        if folded in blacklist:
            continue
        value = None if value is None else str(value)
        current = merged.get(folded)
        if current is None:
            merged[folded] = (key, value)
            continue
        current_key, current_value = current
        if folded == _PATH_KEY and value is not None and current_value is not None:
            value = merge_path_value(value, current_value)
        merged[folded] = (current_key, value)


def merge_environment(
    overrides: EnvironmentOverrides | None,
    *,
    user_environment: Mapping[str, str] | None = None,
    machine_environment: Mapping[str, str] | None = None,
    process_environment: Mapping[str, str] | None = None,
) -> dict[str, str | None]:
    """Merge environment sources with Windows semantics.

    Args:
        overrides: Caller variables (highest precedence, may clear with None)
        user_environment: User registry variables, None to skip
        machine_environment: Machine registry variables
        process_environment: Parent environment (defaults to ``os.environ``)

    Returns:
        Mapping keyed by the first spelling seen; cleared keys map to None
    """
    merged: dict[str, tuple[str, str | None]] = {}
    _merge_into(merged, os.environ if process_environment is None else process_environment)
    if machine_environment:
        _merge_into(merged, machine_environment, BLACKLISTED_KEYS)
    if user_environment:
        _merge_into(merged, user_environment, BLACKLISTED_KEYS)
    if overrides:
        _merge_into(merged, overrides)
    return dict(merged.values())


def string_block_to_environment(block: str) -> dict[str, str]:
    """Parse a NUL-delimited ``KEY=value`` block (as from GetEnvironmentStrings).

    Entries beginning with ``=`` (per-drive cwd pseudo variables) are skipped.
    """
    environment: dict[str, str] = {}
    for entry in block.split("\0"):
        if not entry or entry.startswith("="):
            continue
        key, sep, value = entry.partition("=")
        if sep:
            environment[key] = value
    return environment


def environment_to_string_block(environment: Mapping[str, str | None]) -> str:
    """Serialize to a sorted, NUL-delimited block terminated by an extra NUL.

    Entries whose value is None are omitted.
    """
    entries = sorted(
        ((key, value) for key, value in environment.items() if value is not None),
        key=lambda item: item[0].lower(),
    )
    return "".join(f"{key}={value}\0" for key, value in entries) + "\0"

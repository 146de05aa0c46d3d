"""Version string normalisation and comparison."""

from __future__ import annotations

import re

Version = tuple[int, int, int]

#: Result of ``parse_version`` for input that holds no version at all.
NO_VERSION: None = None

_NUMERIC = re.compile(r"^\d+$")


def parse_version(text: str | None) -> Version | None:
    """Normalise ``text`` into ``(major, minor, patch)``.

    A leading ``v``/``V`` is dropped, as is anything after ``-`` or ``+``.
    Up to three leading dot separated numbers are read and missing ones
    default to zero. Returns ``NO_VERSION`` when not even the major
    number parses.

    >>> parse_version("v1.2.3")
    (1, 2, 3)
    >>> parse_version("1.0.0-beta+build5")
    (1, 0, 0)
    >>> parse_version("garbage") is NO_VERSION
    True
    """

    if not text:
        return NO_VERSION

    core = text.strip()
    if core[:1] in ("v", "V"):
        core = core[1:]
    core = re.split(r"[-+]", core, maxsplit=1)[0]

    numbers: list[int] = []
    for token in core.split(".")[:3]:
        token = token.strip()
        if not _NUMERIC.match(token):
            break
        numbers.append(int(token))

    if not numbers:
        return NO_VERSION
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


def compare_versions(left: str | None, right: str | None) -> int:
    """Return -1, 0 or 1 as ``left`` is older than, equal to or newer than ``right``.

    An unparsable version sorts below every parsed one; two unparsable
    versions compare equal.
    """

    a = parse_version(left)
    b = parse_version(right)
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return (a > b) - (a < b)


def is_newer(candidate: str | None, current: str | None) -> bool:
    """True only when ``candidate`` parses and is strictly newer than ``current``."""

    if parse_version(candidate) is None:
        return False
    return compare_versions(candidate, current) > 0


def is_development_build(version: str | None) -> bool:
    """Builds versioned ``0.0.x`` never prompt for updates."""

    parsed = parse_version(version)
    return parsed is not None and parsed[0] == 0 and parsed[1] == 0

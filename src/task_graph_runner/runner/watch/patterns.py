"""Glob matching for watch bindings and file actions.

Patterns follow the conventions of front-end build tools:

- ``*``, ``?`` and ``[...]`` match within a single path segment
- ``**`` as a whole segment matches zero or more segments
- a leading ``!`` turns the pattern into an exclusion

Segment matching is delegated to :mod:`fnmatch`; this module only handles
path splitting, ``**`` and exclusions. Paths are compared as POSIX paths
relative to a project root.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Iterator
from functools import lru_cache
from pathlib import Path, PurePosixPath

_MAGIC = frozenset("*?[")


def has_magic(pattern: str) -> bool:
    return any(ch in _MAGIC for ch in pattern)


def normalize(pattern: str) -> str:
    pattern = pattern.replace("\\", "/")
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def split_patterns(patterns: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split patterns into (includes, excludes), stripping the ``!`` prefix."""

    includes: list[str] = []
    excludes: list[str] = []
    for raw in patterns:
        if raw.startswith("!"):
            excludes.append(normalize(raw[1:]))
        else:
            includes.append(normalize(raw))
    return includes, excludes


def glob_base(pattern: str) -> str:
    """Return the static directory prefix of a pattern.

    ``src/app/**/*.ts`` -> ``src/app``; ``src/.htaccess`` -> ``src``;
    ``*.md`` -> ``.``.
    """

    parts = PurePosixPath(normalize(pattern.lstrip("!"))).parts
    static: list[str] = []
    for part in parts:
        if has_magic(part):
            break
        static.append(part)
    else:
        # A literal file path: its base is the containing directory.
        static = static[:-1]
    return "/".join(static) or "."


@lru_cache(maxsize=512)
def _segments(pattern: str) -> tuple[str, ...]:
    return tuple(part for part in normalize(pattern).split("/") if part and part != ".")


def _match_segments(parts: tuple[str, ...], pats: tuple[str, ...]) -> bool:
    if not pats:
        return not parts
    head, rest = pats[0], pats[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatch.fnmatchcase(parts[0], head) and _match_segments(parts[1:], rest)


def match_pattern(path: str, pattern: str) -> bool:
    """Match a single relative POSIX path against a single (non-negated) pattern."""

    parts = tuple(part for part in normalize(path).split("/") if part and part != ".")
    return _match_segments(parts, _segments(pattern))


def matches(path: str, patterns: Iterable[str]) -> bool:
    """True if ``path`` matches any include pattern and no exclude pattern."""

    includes, excludes = split_patterns(patterns)
    if not any(match_pattern(path, p) for p in includes):
        return False
    return not any(match_pattern(path, p) for p in excludes)


def relative_posix(path: str | Path, root: Path) -> str | None:
    """Express ``path`` relative to ``root``; ``None`` if it lies outside it."""

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    try:
        return candidate.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return None


def expand_globs(patterns: Iterable[str], *, root: Path) -> Iterator[tuple[Path, str]]:
    """Yield ``(path, include_pattern)`` for existing files matching ``patterns``.

    Each file is yielded once, paired with the first include pattern that
    matched it. Results are sorted per pattern for a stable order.
    """

    pattern_list = list(patterns)
    includes, _ = split_patterns(pattern_list)
    seen: set[Path] = set()
    for pattern in includes:
        base_dir = root / glob_base(pattern)
        if not has_magic(pattern):
            candidates = [root / pattern]
        elif base_dir.is_dir():
            candidates = sorted(p for p in base_dir.rglob("*"))
        else:
            candidates = []
        for candidate in candidates:
            if not candidate.is_file() or candidate in seen:
                continue
            rel = candidate.relative_to(root).as_posix()
            if matches(rel, pattern_list) and match_pattern(rel, pattern):
                seen.add(candidate)
                yield candidate, pattern

"""Ignore rules applied to archive contents before upload."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pathspec import GitIgnoreSpec

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

logger = logging.getLogger(__name__)

IGNORE_FILE_NAMES = (".gitignore", "project/.gitignore")

# Used only when the archive carries no ignore file of its own.
DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    # Dependencies
    "node_modules/",
    # Build output
    "dist/",
    "build/",
    "out/",
    ".next/",
    ".nuxt/",
    "coverage/",
    # Caches and scratch space
    ".cache/",
    ".temp/",
    "tmp/",
    # Environment files
    ".env",
    ".env.local",
    ".env.*.local",
    # Logs
    "*.log",
    "npm-debug.log*",
    "yarn-debug.log*",
    "yarn-error.log*",
    # Editor and OS metadata
    ".DS_Store",
    ".idea/",
    ".vscode/",
    "*.suo",
    "*.ntvs*",
    "*.njsproj",
    "*.sln",
    "*.sw?",
)

# Excluded whatever the ignore file says.
ALWAYS_IGNORED: tuple[str, ...] = ("node_modules/", ".git/")


def find_ignore_rules(files: Mapping[str, str]) -> list[str] | None:
    """Return the lines of the archive's own ignore file, or None if it has none."""
    for name in IGNORE_FILE_NAMES:
        if name in files:
            return files[name].splitlines()
    return None


def compile_patterns(patterns: Iterable[str]) -> GitIgnoreSpec:
    return GitIgnoreSpec.from_lines(patterns)


def build_ignore_predicate(files: Mapping[str, str]) -> Callable[[str], bool]:
    """Build ``should_ignore(path)`` for the given archive contents.

    An ignore file in the archive replaces the default patterns entirely; it
    does not extend them. The ignore file itself is treated as configuration
    and is reported as ignored.
    """
    rules = find_ignore_rules(files)
    if rules is None:
        logger.debug("No ignore file in archive, using default ignore patterns")
        patterns: list[str] = list(DEFAULT_IGNORE_PATTERNS)
    else:
        logger.debug("Using ignore file from archive (%d lines)", len(rules))
        patterns = rules

    always = compile_patterns(ALWAYS_IGNORED)
    spec = compile_patterns(patterns)

    def should_ignore(path: str) -> bool:
        if path in IGNORE_FILE_NAMES:
            return True
        return always.match_file(path) or spec.match_file(path)

    return should_ignore

"""
Ignore-pattern matching for vaultd.

Compiles a newline-delimited, gitignore-style pattern list into a matcher
deciding which vault documents are eligible for indexing.
"""

import logging

import pathspec

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = """.*/
*.png
*.jpg
*.jpeg
*.gif
*.svg
*.webp
*.pdf"""


class IgnoreMatcher:
    """
    Compiled gitignore-style matcher.

    Immutable once built; create a new matcher when the patterns change.
    """

    def __init__(self, patterns: str = ""):
        """
        Compile the pattern list.

        Args:
            patterns: Newline-delimited patterns in gitignore syntax
        """
        self.patterns = patterns or ""
        lines = [line.strip() for line in self.patterns.splitlines()]
        self._spec = pathspec.GitIgnoreSpec.from_lines([line for line in lines if line])
        logger.debug(f"Compiled {len(self._spec.patterns)} ignore patterns")

    def ignores(self, path: str) -> bool:
        """
        Check whether a vault-relative path is ignored.

        Args:
            path: POSIX-style path relative to the vault root

        Returns:
            True if the path matches the ignore patterns
        """
        return self._spec.match_file(path)

    def __call__(self, path: str) -> bool:
        return self.ignores(path)

    def __repr__(self) -> str:
        """String representation."""
        return f"IgnoreMatcher(patterns={len(self._spec.patterns)})"

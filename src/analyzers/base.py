"""
Shared line-reducer machinery for package database parsers.

Each parser is a reducer `(state, line) -> state` folded over the lines of a
database file. The state holds the finished packages and the package
currently being built; a package is finalized when the next package starts
or the input ends.
"""

import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Callable, Optional

from core.models import AnalyzedPackage, PackageBuilder

logger = logging.getLogger(__name__)


@dataclass
class ParseState:
    """Accumulated parser state."""

    packages: list[AnalyzedPackage] = field(default_factory=list)
    current: Optional[PackageBuilder] = None

    def start_package(self, builder: PackageBuilder) -> "ParseState":
        """Finalize the current package and make `builder` current."""
        return ParseState(packages=self._finalized(), current=builder)

    def finish(self) -> list[AnalyzedPackage]:
        """Finalize the current package and return all packages."""
        return self._finalized()

    def _finalized(self) -> list[AnalyzedPackage]:
        if self.current is None:
            return self.packages
        try:
            package = self.current.build()
        except ValueError as e:
            logger.debug(f"Dropping package record: {e}")
            return self.packages
        self.packages.append(package)
        return self.packages


LineReducer = Callable[[ParseState, str], ParseState]


def parse_lines(text: str, reducer: LineReducer) -> list[AnalyzedPackage]:
    """
    Fold a reducer over every line of `text`.

    Args:
        text: Database file content (empty for an absent file)
        reducer: Parser-specific line reducer

    Returns:
        Packages in declaration order
    """
    if not text:
        return []
    return reduce(reducer, text.splitlines(), ParseState()).finish()

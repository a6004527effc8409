"""
Alpine apk installed-database parser.

The database (/lib/apk/db/installed) is a sequence of `K:value` lines with
single-character keys; a `P` line starts a new package.
"""

import logging

from constants import APK_DB_PATH
from core.models import AnalysisType, AnalyzerResult, ExtractAction, PackageBuilder, to_text
from analyzers.base import ParseState, parse_lines

logger = logging.getLogger(__name__)

APK_DB_ACTION = "apk-db"

EXTRACT_ACTIONS = [
    ExtractAction(name=APK_DB_ACTION, pattern=APK_DB_PATH, callback=to_text),
]


def _names(value: str):
    for token in value.split(" "):
        if token:
            yield token.split("=")[0]


def apk_line_reducer(state: ParseState, line: str) -> ParseState:
    """
    Apply one apk database line.

    Keys: P (name, starts a package), V (version), p (provides),
    D and r (dependencies; `!`-prefixed conflicts skipped), o (origin).
    """
    if not line:
        return state
    key, value = line[0], line[2:].strip()

    if key == "P":
        return state.start_package(PackageBuilder(name=value))

    pkg = state.current
    if pkg is None:
        return state

    if key == "V":
        pkg.version = value
    elif key == "p":
        for name in _names(value):
            pkg.add_provide(name)
    elif key in ("D", "r"):
        for token in value.split(" "):
            if not token or token.startswith("!"):
                continue
            pkg.add_dep(token.split("=")[0])
    elif key == "o":
        pkg.source = value
    return state


def parse_apk_database(text: str):
    """
    Parse the apk installed database.

    Examples:
        >>> [p.name for p in parse_apk_database("P:curl\\nV:7.0\\n")]
        ['curl']
    """
    return parse_lines(text, apk_line_reducer)


def analyze(target_image: str, text: str) -> AnalyzerResult:
    """Build the apk AnalyzerResult from database text (empty when apk is absent)."""
    return AnalyzerResult(
        image=target_image,
        analyze_type=AnalysisType.APK,
        analysis=tuple(parse_apk_database(text)),
    )


def detect(session) -> AnalyzerResult:
    """Read the apk database through the session and analyze it."""
    text = session.get_action_product_by_file_name(APK_DB_PATH, APK_DB_ACTION, to_text) or ""
    result = analyze(session.target_image, text)
    logger.debug(f"apk: {len(result.analysis)} packages")
    return result

"""
Debian dpkg status and apt extended_states parsers.

Both files are `Key: value` stanzas. In dpkg status a `Package` line starts a
new package; extended_states marks packages installed automatically as
dependencies.
"""

import dataclasses
import logging
from typing import Optional

from constants import APT_EXTENDED_STATES_PATH, DPKG_STATUS_PATH
from core.models import AnalysisType, AnalyzedPackage, AnalyzerResult, ExtractAction, PackageBuilder, to_text
from analyzers.base import ParseState, parse_lines

logger = logging.getLogger(__name__)

DPKG_ACTION = "dpkg"
EXT_ACTION = "ext"

EXTRACT_ACTIONS = [
    ExtractAction(name=DPKG_ACTION, pattern=DPKG_STATUS_PATH, callback=to_text),
    ExtractAction(name=EXT_ACTION, pattern=APT_EXTENDED_STATES_PATH, callback=to_text),
]


def _split_field(line: str) -> tuple[str, str]:
    key, _, value = line.partition(": ")
    return key, value


def _first_token(value: str) -> str:
    tokens = value.split()
    return tokens[0] if tokens else ""


def dpkg_line_reducer(state: ParseState, line: str) -> ParseState:
    """
    Apply one dpkg status line.

    Every `|` alternative of Depends and Pre-Depends is recorded as a
    dependency.
    """
    key, value = _split_field(line)

    if key == "Package":
        return state.start_package(PackageBuilder(name=value.strip()))

    pkg = state.current
    if pkg is None:
        return state

    if key == "Version":
        pkg.version = value.strip()
    elif key == "Source":
        pkg.source = _first_token(value)
    elif key == "Provides":
        for element in value.split(","):
            pkg.add_provide(_first_token(element))
    elif key in ("Depends", "Pre-Depends"):
        for group in value.split(","):
            for alternative in group.split("|"):
                pkg.add_dep(_first_token(alternative))
    return state


def parse_dpkg_status(text: str) -> list[AnalyzedPackage]:
    """Parse /var/lib/dpkg/status into packages, in file order."""
    return parse_lines(text, dpkg_line_reducer)


def parse_extended_states(text: str) -> set[str]:
    """
    Parse /var/lib/apt/extended_states.

    Returns:
        Names of packages with `Auto-Installed: 1`
    """
    auto_installed = set()
    current = None
    for line in text.splitlines():
        key, value = _split_field(line)
        if key == "Package":
            current = value.strip()
        elif key == "Auto-Installed" and current is not None:
            try:
                if int(value) == 1:
                    auto_installed.add(current)
            except ValueError:
                logger.debug(f"Ignoring Auto-Installed value {value!r} for {current}")
    return auto_installed


def analyze(target_image: str, dpkg_text: str, ext_text: Optional[str] = None) -> AnalyzerResult:
    """
    Build the apt AnalyzerResult.

    Args:
        target_image: Image reference
        dpkg_text: dpkg status content (empty when dpkg is absent)
        ext_text: extended_states content, if present

    Returns:
        AnalyzerResult with auto-installed packages marked
    """
    packages = parse_dpkg_status(dpkg_text)

    if ext_text:
        auto_installed = parse_extended_states(ext_text)
        packages = [
            dataclasses.replace(pkg, auto_installed=True) if pkg.name in auto_installed else pkg
            for pkg in packages
        ]

    return AnalyzerResult(
        image=target_image,
        analyze_type=AnalysisType.APT,
        analysis=tuple(packages),
    )


def detect(session) -> AnalyzerResult:
    """Read the dpkg databases through the session and analyze them."""
    dpkg_text = session.get_action_product_by_file_name(DPKG_STATUS_PATH, DPKG_ACTION, to_text) or ""
    ext_text = session.get_action_product_by_file_name(APT_EXTENDED_STATES_PATH, EXT_ACTION, to_text) or ""
    result = analyze(session.target_image, dpkg_text, ext_text)
    logger.debug(f"apt: {len(result.analysis)} packages")
    return result

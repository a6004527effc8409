"""
Operating system release detection.

Release files are tried in a fixed order; the first one that parses wins.
A release file that exists but cannot be parsed is only an error when no
other release file could be parsed either.
"""

import logging
import re
from typing import Callable, Optional

from core.exceptions import OSReleaseError
from core.models import ExtractAction, OSRelease, to_text

logger = logging.getLogger(__name__)

OS_RELEASE_ACTION = "os-release"
CHISEL_ACTION = "chisel-manifest"

CHISEL_MANIFEST_PATH = "/var/lib/chisel/manifest.wall"
"""Present in Ubuntu Chisel images, which may ship without release files."""

UNKNOWN_OS = OSRelease(name="unknown", version="0.0")


def try_os_release(text: str) -> Optional[OSRelease]:
    """Parse /etc/os-release or /usr/lib/os-release."""
    id_match = re.search(r"^ID=(.+)$", text, re.MULTILINE)
    if not id_match:
        return None
    name = id_match.group(1).replace('"', "").strip()

    version_match = re.search(r"^VERSION_ID=(.+)$", text, re.MULTILINE)
    version = version_match.group(1).replace('"', "").strip() if version_match else "unstable"

    pretty_match = re.search(r"^PRETTY_NAME=(.+)$", text, re.MULTILINE)
    pretty_name = pretty_match.group(1).replace('"', "").strip() if pretty_match else ""

    return OSRelease(name=name, version=version, pretty_name=pretty_name)


def try_lsb_release(text: str) -> Optional[OSRelease]:
    """Parse /etc/lsb-release."""
    id_match = re.search(r"^DISTRIB_ID=(.+)$", text, re.MULTILINE)
    if not id_match:
        return None
    name = id_match.group(1).replace('"', "").strip().lower()

    version_match = re.search(r"^DISTRIB_RELEASE=(.+)$", text, re.MULTILINE)
    version = version_match.group(1).replace('"', "").strip() if version_match else "unstable"

    pretty_match = re.search(r"^DISTRIB_DESCRIPTION=(.+)$", text, re.MULTILINE)
    pretty_name = pretty_match.group(1).replace('"', "").strip() if pretty_match else ""

    return OSRelease(name=name, version=version, pretty_name=pretty_name)


def try_debian_version(text: str) -> Optional[OSRelease]:
    """Parse /etc/debian_version (e.g. "12.5" yields debian 12)."""
    version = text.strip().split(".")[0]
    if len(version) < 2:
        return None
    return OSRelease(name="debian", version=version)


def try_alpine_release(text: str) -> Optional[OSRelease]:
    """Parse /etc/alpine-release."""
    version = text.strip()
    if not version:
        return None
    return OSRelease(name="alpine", version=version)


def try_oracle_release(text: str) -> Optional[OSRelease]:
    """Parse /etc/oracle-release (e.g. "Oracle Linux Server release 8.9")."""
    version_match = re.search(r"(\d+\.\d+)", text)
    if not version_match:
        return None
    return OSRelease(name="oracle", version=version_match.group(1))


def try_redhat_release(text: str) -> Optional[OSRelease]:
    """Parse /etc/redhat-release or /etc/centos-release."""
    name_match = re.search(r"^(\S+)", text, re.MULTILINE)
    version_match = re.search(r"(\d+)\.", text)
    if not name_match or not version_match:
        return None
    return OSRelease(
        name=name_match.group(1).replace('"', "").lower(),
        version=version_match.group(1),
    )


RELEASE_DETECTORS: list[tuple[str, Callable[[str], Optional[OSRelease]]]] = [
    ("/etc/os-release", try_os_release),
    # Same file in its other location, or the target of an /etc symlink
    ("/usr/lib/os-release", try_os_release),
    ("/etc/lsb-release", try_lsb_release),
    ("/etc/debian_version", try_debian_version),
    ("/etc/alpine-release", try_alpine_release),
    ("/etc/oracle-release", try_oracle_release),
    ("/etc/redhat-release", try_redhat_release),
    ("/etc/centos-release", try_redhat_release),
]
"""Release files in detection order with their parsers."""

EXTRACT_ACTIONS = [
    ExtractAction(name=OS_RELEASE_ACTION, pattern=path, callback=to_text)
    for path, _ in RELEASE_DETECTORS
] + [
    ExtractAction(name=CHISEL_ACTION, pattern=CHISEL_MANIFEST_PATH, callback=lambda content: True),
]


def normalize(release: OSRelease) -> OSRelease:
    """Apply naming fixups: "ol" becomes "oracle"; sles "15" becomes "15.0"."""
    name = release.name.strip()
    version = release.version
    if name == "ol":
        name = "oracle"
    if name == "sles" and version and "." not in version:
        version = f"{version}.0"
    return OSRelease(name=name, version=version, pretty_name=release.pretty_name)


def detect_with_reader(read_file: Callable[[str], Optional[str]], is_chisel: bool = False) -> OSRelease:
    """
    Detect the OS by reading release files in order until one parses.

    Args:
        read_file: Returns a file's content, or None/"" when it does not exist
        is_chisel: Whether a Chisel manifest was found

    Returns:
        Detected OSRelease, "chisel" or "unknown" with version "0.0" when
        no release file exists

    Raises:
        OSReleaseError: If release files exist but none could be parsed
    """
    had_release_file = False
    release = None

    for path, handler in RELEASE_DETECTORS:
        text = read_file(path)
        if not text:
            continue
        had_release_file = True
        try:
            release = handler(text)
        except (ValueError, IndexError) as e:
            logger.debug(f"Malformed OS release file {path}: {e}")
        if release:
            logger.debug(f"OS release detected from {path}")
            break

    if release is None and had_release_file:
        raise OSReleaseError("Failed to parse OS release file")

    if release is None:
        if is_chisel:
            logger.debug(f"{CHISEL_MANIFEST_PATH} found but no OS release files")
            release = OSRelease(name="chisel", version="0.0")
        else:
            release = UNKNOWN_OS

    return normalize(release)


def detect_from_files(files: dict[str, str], is_chisel: bool = False) -> OSRelease:
    """Detect the OS from {path: content} of the release files that exist."""
    return detect_with_reader(files.get, is_chisel=is_chisel)


def detect(session) -> OSRelease:
    """
    Detect the OS of the session's image.

    Raises:
        OSReleaseError: If release files exist but none could be parsed
    """
    def read_file(path: str) -> Optional[str]:
        return session.get_action_product_by_file_name(path, OS_RELEASE_ACTION, to_text)

    is_chisel = CHISEL_MANIFEST_PATH in session.cache
    return detect_with_reader(read_file, is_chisel=is_chisel)

"""OS package database parsers and OS release detection."""

from analyzers import apk, apt, os_release, rpm

PACKAGE_ANALYZERS = (apk, apt, rpm)
"""Package manager analyzers in primary-manager priority order."""

__all__ = [
    "apk",
    "apt",
    "os_release",
    "rpm",
    "PACKAGE_ANALYZERS",
]

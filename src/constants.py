"""
Centralized configuration constants for Strata.

This module provides a single source of truth for configuration values
that are used across multiple modules, making them easier to update
and maintain.
"""

# ============================================================================
# Sizes
# ============================================================================

KB = 1024
MB = KB * 1024
GB = MB * 1024

STATIC_SCAN_MAX_IMAGE_SIZE_IN_BYTES = 3 * GB
"""Largest image (as reported by the runtime) that is saved to disk for a static scan."""

MAX_METADATA_BLOB_SIZE = 4 * MB
"""OCI blobs up to this size are checked for JSON manifests before being walked as layers."""

# ============================================================================
# Container Runtime
# ============================================================================

SUPPORTED_RUNTIMES = ("docker", "podman")
"""Container runtimes probed, in order, when no runtime is configured."""

SAVED_IMAGE_PREFIX = "docker-"
"""Prefix for temporary files written by `docker save`."""

SAVED_IMAGE_SUFFIX = ".image"
"""Suffix for temporary files written by `docker save`."""

# ============================================================================
# Timeouts (in seconds)
# ============================================================================

VERSION_CHECK_TIMEOUT = 5
"""Timeout for runtime version checks (5 seconds)."""

INSPECT_TIMEOUT = 30
"""Timeout for `inspect` calls (30 seconds)."""

RUN_TIMEOUT = 120
"""Timeout for commands executed inside the target image (2 minutes)."""

SAVE_TIMEOUT = 1800
"""Timeout for `save` of a whole image to disk (30 minutes)."""

# ============================================================================
# Concurrency
# ============================================================================

DEFAULT_MAX_WORKERS = 5
"""Analyzers run concurrently against the product cache (inspect, os-release, apk, apt, rpm)."""

# ============================================================================
# Package Database Locations
# ============================================================================

APK_DB_PATH = "/lib/apk/db/installed"
"""Alpine package database."""

DPKG_STATUS_PATH = "/var/lib/dpkg/status"
"""Debian package status database."""

APT_EXTENDED_STATES_PATH = "/var/lib/apt/extended_states"
"""APT auto-installed markers."""

RPM_SQLITE_DB_PATH = "/var/lib/rpm/rpmdb.sqlite"
"""RPM database on RHEL 9 / Fedora 33+ images."""

RPM_SQLITE_DB_ALT_PATH = "/usr/lib/sysimage/rpm/rpmdb.sqlite"
"""RPM database location used by newer SUSE and Fedora images."""

RPM_QUERY_FORMAT = "%{NAME}\t%|EPOCH?{%{EPOCH}:}|%{VERSION}-%{RELEASE}\t%{SIZE}\n"
"""`rpm -qa --qf` format producing one tab separated package per line."""

# ============================================================================
# Environment
# ============================================================================

ENV_PREFIX = "STRATA_"
"""Prefix for environment variables read by ScanConfig.from_env()."""

"""
RPM package database readers.

Two inputs are supported: the output of `rpm -qa` run inside the image
(one `NAME\\tVERSION\\tSIZE` line per package), and the rpmdb.sqlite database
used by current Fedora, RHEL and SUSE releases, whose Packages table stores
one RPM header blob per package.
"""

import logging
import os
import sqlite3
import struct
import tempfile
from typing import Optional

from constants import RPM_QUERY_FORMAT, RPM_SQLITE_DB_ALT_PATH, RPM_SQLITE_DB_PATH
from core.models import AnalysisType, AnalyzedPackage, AnalyzerResult, ExtractAction, PackageBuilder
from analyzers.base import ParseState, parse_lines

logger = logging.getLogger(__name__)

RPM_SQLITE_ACTION = "rpm-sqlite-db"

RPM_SQLITE_PATHS = (RPM_SQLITE_DB_PATH, RPM_SQLITE_DB_ALT_PATH)

EXTRACT_ACTIONS = [
    ExtractAction(name=RPM_SQLITE_ACTION, pattern=path) for path in RPM_SQLITE_PATHS
]

# Header tags
RPMTAG_NAME = 1000
RPMTAG_VERSION = 1001
RPMTAG_RELEASE = 1002
RPMTAG_EPOCH = 1003
RPMTAG_SOURCERPM = 1044
RPMTAG_PROVIDENAME = 1047
RPMTAG_REQUIRENAME = 1049

# Header data types
RPM_INT8_TYPE = 2
RPM_INT16_TYPE = 3
RPM_INT32_TYPE = 4
RPM_INT64_TYPE = 5
RPM_STRING_TYPE = 6
RPM_STRING_ARRAY_TYPE = 8
RPM_I18NSTRING_TYPE = 9

_INT_FORMATS = {
    RPM_INT8_TYPE: ">b",
    RPM_INT16_TYPE: ">h",
    RPM_INT32_TYPE: ">i",
    RPM_INT64_TYPE: ">q",
}

_WANTED_TAGS = {
    RPMTAG_NAME,
    RPMTAG_VERSION,
    RPMTAG_RELEASE,
    RPMTAG_EPOCH,
    RPMTAG_SOURCERPM,
    RPMTAG_PROVIDENAME,
    RPMTAG_REQUIRENAME,
}

_INDEX_ENTRY = struct.Struct(">iiii")
_HEADER_INTRO = struct.Struct(">ii")


def rpm_query_line_reducer(state: ParseState, line: str) -> ParseState:
    """Each complete `NAME\\tVERSION\\tSIZE` line is one package."""
    parts = line.split("\t")
    if len(parts) < 3 or not all(parts[:3]):
        return state
    name, version = parts[0], parts[1]
    return state.start_package(PackageBuilder(name=name, version=version))


def parse_rpm_query_output(text: str) -> list[AnalyzedPackage]:
    """Parse `rpm -qa --qf RPM_QUERY_FORMAT` output."""
    return parse_lines(text, rpm_query_line_reducer)


def _read_string(data: bytes, offset: int) -> tuple[str, int]:
    end = data.index(b"\x00", offset)
    return data[offset:end].decode("utf-8", errors="replace"), end + 1


def _read_entry(store: bytes, entry_type: int, offset: int, count: int):
    if entry_type == RPM_STRING_TYPE:
        return _read_string(store, offset)[0]
    if entry_type in (RPM_STRING_ARRAY_TYPE, RPM_I18NSTRING_TYPE):
        values = []
        for _ in range(count):
            value, offset = _read_string(store, offset)
            values.append(value)
        return values
    int_format = _INT_FORMATS.get(entry_type)
    if int_format is not None:
        size = struct.calcsize(int_format)
        return [struct.unpack_from(int_format, store, offset + i * size)[0] for i in range(count)]
    return None


def parse_rpm_header(blob: bytes) -> dict[int, object]:
    """
    Decode the tags of interest from one RPM header blob.

    The blob layout is: index entry count and data length (big-endian
    int32 each), then 16-byte index entries (tag, type, offset, count), then
    the data store.

    Raises:
        ValueError: If the blob is truncated or malformed
    """
    try:
        index_count, data_length = _HEADER_INTRO.unpack_from(blob, 0)
        store_start = _HEADER_INTRO.size + index_count * _INDEX_ENTRY.size
        store = blob[store_start:store_start + data_length]
        if index_count < 0 or len(store) != data_length:
            raise ValueError("truncated header")

        tags = {}
        for i in range(index_count):
            tag, entry_type, offset, count = _INDEX_ENTRY.unpack_from(
                blob, _HEADER_INTRO.size + i * _INDEX_ENTRY.size
            )
            if tag in _WANTED_TAGS:
                tags[tag] = _read_entry(store, entry_type, offset, count)
        return tags
    except struct.error as e:
        raise ValueError(f"malformed header: {e}") from e


def _first(value) -> Optional[object]:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def package_from_header(tags: dict[int, object]) -> AnalyzedPackage:
    """
    Build a package from decoded header tags.

    The version uses the same `[EPOCH:]VERSION-RELEASE` form as the rpm query
    output.

    Raises:
        ValueError: If the header has no name
    """
    version = _first(tags.get(RPMTAG_VERSION))
    release = _first(tags.get(RPMTAG_RELEASE))
    epoch = _first(tags.get(RPMTAG_EPOCH))
    if version is not None and release:
        version = f"{version}-{release}"
    if version is not None and epoch is not None:
        version = f"{epoch}:{version}"

    builder = PackageBuilder(
        name=_first(tags.get(RPMTAG_NAME)) or "",
        version=version,
        source=_first(tags.get(RPMTAG_SOURCERPM)),
    )
    for name in tags.get(RPMTAG_PROVIDENAME) or []:
        builder.add_provide(name)
    for name in tags.get(RPMTAG_REQUIRENAME) or []:
        builder.add_dep(name)
    return builder.build()


def parse_rpm_sqlite(db_content: bytes) -> list[AnalyzedPackage]:
    """
    Read packages from an rpmdb.sqlite database.

    Unreadable databases and individual malformed headers are logged and
    skipped.

    Args:
        db_content: Raw bytes of the sqlite database file

    Returns:
        Packages in database order
    """
    if not db_content:
        return []

    tmp = tempfile.NamedTemporaryFile(prefix="rpmdb-", suffix=".sqlite", delete=False)
    try:
        with tmp:
            tmp.write(db_content)

        packages = []
        conn = sqlite3.connect(tmp.name)
        try:
            for (blob,) in conn.execute("SELECT blob FROM Packages"):
                try:
                    packages.append(package_from_header(parse_rpm_header(bytes(blob))))
                except ValueError as e:
                    logger.debug(f"Skipping rpm header: {e}")
        finally:
            conn.close()
        return packages
    except sqlite3.DatabaseError as e:
        logger.warning(f"Failed to read rpm sqlite database: {e}")
        return []
    finally:
        try:
            os.unlink(tmp.name)
        except FileNotFoundError:
            pass


def analyze(target_image: str, packages: list[AnalyzedPackage]) -> AnalyzerResult:
    """Build the rpm AnalyzerResult."""
    return AnalyzerResult(
        image=target_image,
        analyze_type=AnalysisType.RPM,
        analysis=tuple(packages),
    )


def detect(session) -> AnalyzerResult:
    """
    Find rpm packages through the session.

    The sqlite database is preferred; when it is absent and the session may
    run commands inside the image, `rpm -qa` is used instead.
    """
    for path in RPM_SQLITE_PATHS:
        content = session.get_action_product_by_file_name(path, RPM_SQLITE_ACTION)
        if content:
            packages = parse_rpm_sqlite(content)
            logger.debug(f"rpm: {len(packages)} packages from {path}")
            return analyze(session.target_image, packages)

    client = session.client if session.live_available else None
    if client is None:
        return analyze(session.target_image, [])

    output = client.run_safe(
        session.target_image,
        "rpm",
        ["--nodigest", "--nosignature", "-qa", "--qf", RPM_QUERY_FORMAT],
    )
    packages = parse_rpm_query_output(output.stdout)
    logger.debug(f"rpm: {len(packages)} packages from rpm query")
    return analyze(session.target_image, packages)

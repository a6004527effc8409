"""
Walk a single image layer and collect products for matching files.

A layer is a tar stream (optionally gzip, bzip2 or xz compressed). Each
regular file whose absolute path matches an ExtractAction pattern is read
once, and every matching action stores its own product under the file's
path.
"""

import logging
import posixpath
import tarfile
import zlib
from typing import BinaryIO, Iterable, Optional

from core.models import ExtractAction, ProductsByAction, ProductsByFilename

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
"""Basename prefix marking a path deleted by this layer."""

OPAQUE_WHITEOUT = ".wh..wh..opq"
"""Marker for an opaque directory; not treated as a file deletion."""

_STREAM_ERRORS = (tarfile.TarError, EOFError, OSError, zlib.error)


def absolute_path(member_name: str) -> str:
    """
    Convert a tar member name into an absolute image path.

    Examples:
        >>> absolute_path("./etc/os-release")
        '/etc/os-release'
        >>> absolute_path("var/lib/dpkg/status")
        '/var/lib/dpkg/status'
    """
    return posixpath.normpath("/" + member_name.lstrip("/"))


def whiteout_target(path: str) -> Optional[str]:
    """Return the path deleted by a whiteout entry, or None if `path` is not one."""
    directory, base = posixpath.split(path)
    if not base.startswith(WHITEOUT_PREFIX) or base == OPAQUE_WHITEOUT:
        return None
    return posixpath.join(directory, base[len(WHITEOUT_PREFIX):])


def _apply_actions(path: str, content: bytes, actions: list[ExtractAction]) -> ProductsByAction:
    products = {}
    for action in actions:
        try:
            products[action.name] = action.apply(content)
        except Exception as e:
            logger.warning(f"Extract action {action.name} failed for {path}: {e}")
    return products


def extract_from_layer(layer_stream: BinaryIO, actions: Iterable[ExtractAction]) -> ProductsByFilename:
    """
    Extract products from one layer stream.

    The stream is consumed to the end. Per-entry problems are logged and
    skipped; a truncated or corrupt stream ends the walk with the products
    collected so far.

    Args:
        layer_stream: Readable binary stream of the layer tar
        actions: Extract actions to match against every file

    Returns:
        {absolute path: {action name: product}}. Every path deleted by a
        whiteout entry maps to an empty dict, whether it names a file or a
        directory.
    """
    actions = list(actions)
    result: ProductsByFilename = {}

    try:
        with tarfile.open(fileobj=layer_stream, mode="r|*") as layer:
            for member in layer:
                path = absolute_path(member.name)

                if member.islnk() or member.issym():
                    logger.debug(f"Skipping link {path} -> {member.linkname}")
                    continue
                if not member.isfile():
                    continue

                deleted = whiteout_target(path)
                if deleted is not None:
                    logger.debug(f"Whiteout for {deleted}")
                    result.setdefault(deleted, {})
                    continue
                if posixpath.basename(path).startswith(WHITEOUT_PREFIX):
                    continue

                matched = [action for action in actions if action.matches(path)]
                if not matched:
                    continue

                try:
                    fileobj = layer.extractfile(member)
                    content = fileobj.read() if fileobj is not None else b""
                except _STREAM_ERRORS as e:
                    logger.warning(f"Failed to read {path} from layer: {e}")
                    continue

                result[path] = _apply_actions(path, content, matched)
    except _STREAM_ERRORS as e:
        logger.warning(f"Layer stream ended unexpectedly ({e}); keeping {len(result)} extracted files")

    return result


__all__ = ["extract_from_layer", "absolute_path", "whiteout_target"]

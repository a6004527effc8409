"""
Read saved image archives and reconstruct the union view of their layers.

Supports `docker save` archives (manifest.json plus per-layer `layer.tar` or
blob entries) and OCI image layouts (index.json plus `blobs/<alg>/<hex>`).
Layers are returned most recent first; merging them keeps the first product
seen for each path, so later layers shadow earlier ones.
"""

import io
import json
import logging
import posixpath
import tarfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from constants import MAX_METADATA_BLOB_SIZE
from core.exceptions import ArchiveReadError
from core.models import ExtractAction, ProductsByFilename
from extractor.layer import extract_from_layer
from utils.logging_helpers import log_warning_section

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
OCI_INDEX_FILE = "index.json"
BLOBS_DIR = "blobs/"

MAX_INDEX_DEPTH = 4
"""Nested OCI indexes followed before giving up on finding an image manifest."""


@dataclass
class ImageArchive:
    """
    Contents of a saved image archive.

    Attributes:
        archive_path: Path of the outer archive
        layers: Per-layer products, most recent layer first
        layer_names: Layer entry names in application order (oldest first),
            as declared by the archive metadata
        config: Entry name of the image config
        config_data: Parsed image config, if present in the archive
        repo_tags: Tags recorded in manifest.json
    """

    archive_path: str
    layers: list[ProductsByFilename] = field(default_factory=list)
    layer_names: list[str] = field(default_factory=list)
    config: Optional[str] = None
    config_data: Optional[dict] = None
    repo_tags: list[str] = field(default_factory=list)

    def merged(self) -> ProductsByFilename:
        """Union view of all layers."""
        return merge_layers(self.layers)

    @property
    def image_id(self) -> Optional[str]:
        """Image ID derived from the config entry name ("sha256:<hex>")."""
        if not self.config:
            return None
        name = self.config.rsplit("/", 1)[-1]
        if name.endswith(".json"):
            name = name[: -len(".json")]
        if self.config.startswith(BLOBS_DIR):
            alg = self.config[len(BLOBS_DIR):].split("/", 1)[0]
            return f"{alg}:{name}"
        return f"sha256:{name}"

    def inspect_data(self) -> dict[str, Any]:
        """Inspect-shaped view ({Id, RootFS: {Layers}, RepoTags}) of the archive metadata."""
        diff_ids = None
        if isinstance(self.config_data, dict):
            diff_ids = (self.config_data.get("rootfs") or {}).get("diff_ids")
        return {
            "Id": self.image_id,
            "RepoTags": list(self.repo_tags),
            "RootFS": {"Type": "layers", "Layers": list(diff_ids or self.layer_names)},
        }


def order_layers_most_recent_first(layer_names: Iterable[str], available: Iterable[str]) -> list[str]:
    """
    Order layer names most recent first, keeping only layers that exist.

    Args:
        layer_names: Layer names in application order (oldest first)
        available: Layer names actually present in the archive

    Returns:
        Reversed list filtered to available names

    Examples:
        >>> order_layers_most_recent_first(["a", "b", "c"], {"a", "c"})
        ['c', 'a']
    """
    available = set(available)
    return [name for name in reversed(list(layer_names)) if name in available]


def _is_removed(path: str, removed: set[str]) -> bool:
    while path not in ("/", ""):
        if path in removed:
            return True
        path = posixpath.dirname(path)
    return False


def merge_layers(layers: Iterable[ProductsByFilename]) -> ProductsByFilename:
    """
    Fold most-recent-first layers into a single union view.

    The first layer to provide a path wins. Empty product dicts (whiteouts)
    shadow that path and everything below it in older layers, and are then
    dropped from the result.
    """
    merged: ProductsByFilename = {}
    removed: set[str] = set()
    for layer in layers:
        for file_name, products in layer.items():
            if file_name not in merged and not _is_removed(file_name, removed):
                merged[file_name] = products
        removed.update(file_name for file_name, products in layer.items() if not products)
    return {file_name: products for file_name, products in merged.items() if products}


def _entry_name(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name


def _blob_name(digest: str) -> Optional[str]:
    alg, sep, hex_part = digest.partition(":")
    if not sep or not alg or not hex_part:
        return None
    return f"{BLOBS_DIR}{alg}/{hex_part}"


def _is_layer_entry(name: str) -> bool:
    return name == "layer.tar" or name.endswith(".tar")


def _is_blob_entry(name: str) -> bool:
    return name.startswith(BLOBS_DIR) and name.count("/") == 2


def _load_json(data: bytes) -> Optional[Any]:
    try:
        return json.loads(data)
    except ValueError:
        return None


def _find_oci_manifest(documents: dict[str, Any]) -> Optional[dict]:
    doc = documents.get(OCI_INDEX_FILE)
    for _ in range(MAX_INDEX_DEPTH):
        if not isinstance(doc, dict):
            return None
        if "layers" in doc:
            return doc
        manifests = doc.get("manifests") or []
        if not manifests:
            return None
        doc = documents.get(_blob_name(manifests[0].get("digest", "")) or "")
    return None


def _walk_outer_archive(archive_path: str, actions: list[ExtractAction]):
    """Stream the outer archive once, walking layers and collecting JSON documents."""
    extracted: dict[str, ProductsByFilename] = {}
    documents: dict[str, Any] = {}

    with open(archive_path, "rb") as f, tarfile.open(fileobj=f, mode="r|*") as outer:
        for member in outer:
            if not member.isfile():
                continue
            name = _entry_name(member.name)

            if name.endswith(".json"):
                if member.size > MAX_METADATA_BLOB_SIZE:
                    logger.debug(f"Skipping oversized metadata entry {name}")
                    continue
                doc = _load_json(outer.extractfile(member).read())
                if doc is None:
                    if name == MANIFEST_FILE:
                        raise ArchiveReadError(archive_path, "manifest.json is not valid JSON")
                    logger.debug(f"Ignoring unparseable JSON entry {name}")
                    continue
                documents[name] = doc
            elif _is_layer_entry(name):
                logger.debug(f"Walking layer {name}")
                extracted[name] = extract_from_layer(outer.extractfile(member), actions)
            elif _is_blob_entry(name):
                stream = outer.extractfile(member)
                if member.size <= MAX_METADATA_BLOB_SIZE:
                    data = stream.read()
                    doc = _load_json(data)
                    if doc is not None:
                        documents[name] = doc
                        continue
                    stream = io.BytesIO(data)
                logger.debug(f"Walking layer blob {name}")
                extracted[name] = extract_from_layer(stream, actions)

    return extracted, documents


def read_image_archive(
    archive_path: Union[str, Path],
    actions: Iterable[ExtractAction],
) -> ImageArchive:
    """
    Read an image archive and extract per-layer products.

    Args:
        archive_path: Path to a `docker save` archive or OCI layout tar
        actions: Extract actions applied to every layer

    Returns:
        ImageArchive with layers ordered most recent first

    Raises:
        ArchiveReadError: If the outer archive cannot be read
    """
    archive_path = str(archive_path)
    actions = list(actions)

    try:
        extracted, documents = _walk_outer_archive(archive_path, actions)
    except ArchiveReadError:
        raise
    except (OSError, tarfile.TarError, EOFError, zlib.error) as e:
        raise ArchiveReadError(archive_path, str(e)) from e

    archive = ImageArchive(archive_path=archive_path)

    manifest = documents.get(MANIFEST_FILE)
    if manifest is not None:
        first = manifest[0] if isinstance(manifest, list) and manifest else {}
        archive.layer_names = [_entry_name(name) for name in first.get("Layers") or []]
        archive.config = first.get("Config")
        archive.repo_tags = list(first.get("RepoTags") or [])
    else:
        oci_manifest = _find_oci_manifest(documents)
        if oci_manifest is not None:
            archive.layer_names = [
                name for name in (_blob_name(layer.get("digest", "")) for layer in oci_manifest["layers"])
                if name
            ]
            archive.config = _blob_name((oci_manifest.get("config") or {}).get("digest", ""))
        else:
            log_warning_section(
                f"No image manifest in {archive_path}",
                [f"Using archive order for {len(extracted)} layers", "Later entries shadow earlier ones"],
                logger=logger,
            )
            archive.layer_names = list(extracted)

    if archive.config:
        archive.config = _entry_name(archive.config)
        archive.config_data = documents.get(archive.config)

    ordered = order_layers_most_recent_first(archive.layer_names, extracted)
    missing = len(archive.layer_names) - len(ordered)
    if missing:
        logger.debug(f"{missing} layers listed in the manifest are missing from {archive_path}")

    archive.layers = [extracted[name] for name in ordered]
    logger.info(f"✓ Read {len(archive.layers)} layers from {archive_path}")
    return archive


def extract_layers_from_tar(
    archive_path: Union[str, Path],
    actions: Iterable[ExtractAction],
) -> list[ProductsByFilename]:
    """
    Extract per-layer products from an image archive, most recent layer first.

    Raises:
        ArchiveReadError: If the outer archive cannot be read
    """
    return read_image_archive(archive_path, actions).layers


def extract_from_tar(
    archive_path: Union[str, Path],
    actions: Iterable[ExtractAction],
) -> ProductsByFilename:
    """
    Extract the union view of an image archive.

    Returns:
        {absolute path: {action name: product}}, empty if the archive has no layers

    Raises:
        ArchiveReadError: If the outer archive cannot be read
    """
    return merge_layers(extract_layers_from_tar(archive_path, actions))


__all__ = [
    "ImageArchive",
    "order_layers_most_recent_first",
    "merge_layers",
    "read_image_archive",
    "extract_layers_from_tar",
    "extract_from_tar",
]

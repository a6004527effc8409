"""Image layer walking and archive reconstruction."""

from extractor.archive import (
    ImageArchive,
    extract_from_tar,
    extract_layers_from_tar,
    merge_layers,
    order_layers_most_recent_first,
    read_image_archive,
)
from extractor.layer import extract_from_layer

__all__ = [
    "ImageArchive",
    "extract_from_layer",
    "extract_from_tar",
    "extract_layers_from_tar",
    "merge_layers",
    "order_layers_most_recent_first",
    "read_image_archive",
]

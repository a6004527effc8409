"""Utility modules for container runtime access and image references."""

from utils.docker_utils import DockerClient, DockerOptions
from utils.image_utils import parse_image_reference, is_valid_image_reference

__all__ = [
    "DockerClient",
    "DockerOptions",
    "parse_image_reference",
    "is_valid_image_reference",
]

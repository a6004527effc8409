"""
Parsing and validation of container image references and digests.

Implements the OCI distribution reference grammar:

    [registry[:port]/]repo(/repo)*[:tag][@algorithm:hexdigest]

The full reference is matched by one regular expression; a second expression
is applied to the captured repository path to peel off a leading registry.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from core.exceptions import (
    EmptyReferenceError,
    InvalidDigestError,
    InvalidFormatError,
    UppercaseRepositoryError,
)

_HOST_LABEL = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|[-]+)[a-z0-9]+)*"

# Groups: 1 = repository path (registry included), 2 = tag, 3 = digest
IMAGE_REFERENCE_PATTERN = re.compile(
    r"("
    rf"(?:(?:{_HOST_LABEL}(?:\.{_HOST_LABEL})*|\[(?:[a-fA-F0-9:]+)\])(?::[0-9]+)?/)?"
    rf"{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
    r")"
    r"(?::([a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}))?"
    r"(?:@([A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*[:][a-fA-F0-9]{32,}))?"
)

# A leading segment is a registry only with a '.', a port, brackets or "localhost"
IMAGE_REGISTRY_PATTERN = re.compile(
    r"("
    rf"(?:{_HOST_LABEL}(?:\.{_HOST_LABEL})+|\[(?:[a-fA-F0-9:]+)\]|localhost)(?::[0-9]+)?"
    rf"|{_HOST_LABEL}:[0-9]+"
    r")(?:/|@)"
)

DOCKER_HUB_REGISTRIES = ("registry-1.docker.io", "docker.io")
DOCKER_HUB_PULL_REGISTRY = "registry-1.docker.io"

NAME_TOTAL_LENGTH_MAX = 255

DIGEST_ALGORITHMS = {
    "sha256": 64,
    "sha384": 96,
    "sha512": 128,
}
"""Supported digest algorithms and their exact hex lengths."""

_LOWER_HEX = re.compile(r"[a-f0-9]+")


@dataclass(frozen=True)
class ParsedImageReference:
    """Parsed container image reference."""

    repository: str
    registry: Optional[str] = None
    tag: Optional[str] = None
    digest: Optional[str] = None

    def __str__(self) -> str:
        """Rebuild the reference as [registry/]repository[:tag][@digest]."""
        ref = self.full_name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref

    @property
    def full_name(self) -> str:
        """Registry and repository combined."""
        if self.registry:
            return f"{self.registry}/{self.repository}"
        return self.repository

    @property
    def is_docker_hub(self) -> bool:
        return self.registry is None or self.registry in DOCKER_HUB_REGISTRIES

    @property
    def registry_for_pull(self) -> str:
        """Registry to pull from; Docker Hub when none was given."""
        if self.is_docker_hub:
            return DOCKER_HUB_PULL_REGISTRY
        return self.registry

    @property
    def tail_reference_for_pull(self) -> str:
        """Digest if present, else tag, else "latest"."""
        return self.digest or self.tag or "latest"

    @property
    def normalized_repository(self) -> str:
        """Repository with the implicit "library/" namespace of Docker Hub official images."""
        if self.is_docker_hub and "/" not in self.repository:
            return f"library/{self.repository}"
        return self.repository


def parse_image_reference(reference: str) -> ParsedImageReference:
    """
    Parse an OCI image reference into repository, registry, tag and digest.

    Args:
        reference: Image reference (e.g., "gcr.io/project/app:1.0@sha256:...")

    Returns:
        ParsedImageReference with parsed components

    Raises:
        EmptyReferenceError: If the reference is empty
        UppercaseRepositoryError: If lowercasing the reference would make it valid
        InvalidFormatError: If the reference does not match the grammar

    Examples:
        >>> parse_image_reference("nginx:1.23")
        ParsedImageReference(repository='nginx', registry=None, tag='1.23', digest=None)

        >>> parse_image_reference("library/nginx")
        ParsedImageReference(repository='library/nginx', registry=None, tag=None, digest=None)

        >>> parse_image_reference("myregistry.io/team/app:v2")
        ParsedImageReference(repository='team/app', registry='myregistry.io', tag='v2', digest=None)
    """
    if reference == "":
        raise EmptyReferenceError()

    match = IMAGE_REFERENCE_PATTERN.fullmatch(reference)
    if match is None:
        if IMAGE_REFERENCE_PATTERN.fullmatch(reference.lower()) is not None:
            raise UppercaseRepositoryError()
        raise InvalidFormatError()

    repository, tag, digest = match.groups()

    registry = None
    registry_match = IMAGE_REGISTRY_PATTERN.match(repository)
    if registry_match is not None:
        registry = registry_match.group(1)
        repository = repository[len(registry) + 1:]

    return ParsedImageReference(
        repository=repository,
        registry=registry,
        tag=tag,
        digest=digest,
    )


def is_valid_image_reference(reference: str) -> bool:
    """
    Validate an image reference without raising.

    Returns:
        True if parse_image_reference would succeed
    """
    try:
        parse_image_reference(reference)
    except (EmptyReferenceError, InvalidFormatError, UppercaseRepositoryError):
        return False
    return True


@dataclass(frozen=True)
class ImageDigest:
    """A validated "algorithm:hex" content digest."""

    alg: str
    hex: str

    def __str__(self) -> str:
        return f"{self.alg}:{self.hex}"

    @classmethod
    def parse(cls, digest: str) -> "ImageDigest":
        """
        Parse and validate a digest string.

        The hex part must have exactly the length defined for the algorithm
        and may only contain lowercase hex characters.

        Raises:
            InvalidDigestError: If the digest is malformed
        """
        index = digest.find(":")
        if index <= 0 or index + 1 == len(digest):
            raise InvalidDigestError("invalid digest format")

        alg, hex_part = digest[:index], digest[index + 1:]
        expected_length = DIGEST_ALGORITHMS.get(alg)
        if expected_length is None:
            raise InvalidDigestError(f"unsupported digest algorithm: {alg}")
        if len(hex_part) != expected_length:
            raise InvalidDigestError(
                f"digest algorithm {alg} suggested length {expected_length}, "
                f"but got digest with length {len(hex_part)}"
            )
        if not _LOWER_HEX.fullmatch(hex_part):
            raise InvalidDigestError("digest contains invalid characters")
        return cls(alg=alg, hex=hex_part)


def validate_digest(digest: str) -> bool:
    """Check a digest string without raising."""
    try:
        ImageDigest.parse(digest)
    except InvalidDigestError:
        return False
    return True


@dataclass
class ImageName:
    """
    Display identity of a scanned image.

    The tag defaults to "latest" only when the reference carries neither a tag
    nor a digest. An inline digest that matches neither the manifest nor the
    index digest is kept as the "unknown" digest.
    """

    name: str
    tag: Optional[str] = None
    digests: dict[str, ImageDigest] = field(default_factory=dict)

    @classmethod
    def from_reference(
        cls,
        target_image: str,
        manifest_digest: Optional[str] = None,
        index_digest: Optional[str] = None,
    ) -> "ImageName":
        """
        Build an ImageName from a reference and optional known digests.

        Raises:
            ImageReferenceError: If the reference is invalid
            InvalidDigestError: If any digest is invalid
        """
        ref = parse_image_reference(target_image)
        name = ref.full_name
        if len(name) > NAME_TOTAL_LENGTH_MAX:
            raise InvalidFormatError(
                f"image repository name is more than {NAME_TOTAL_LENGTH_MAX} characters"
            )

        tag = ref.tag if (ref.tag or ref.digest) else "latest"

        digests: dict[str, ImageDigest] = {}
        if index_digest:
            digests["index"] = ImageDigest.parse(index_digest)
        if manifest_digest:
            digests["manifest"] = ImageDigest.parse(manifest_digest)
        if ref.digest:
            inline = ImageDigest.parse(ref.digest)
            if inline not in (digests.get("manifest"), digests.get("index")):
                digests["unknown"] = inline

        return cls(name=name, tag=tag, digests=digests)

    def all_names(self) -> list[str]:
        """List every name:tag and name@digest form of this image."""
        names = []
        if self.tag:
            names.append(f"{self.name}:{self.tag}")
        for kind in ("manifest", "index", "unknown"):
            if kind in self.digests:
                names.append(f"{self.name}@{self.digests[kind]}")
        return names

"""
Scan session for a single target image.

The session decides once per scan whether the image is analyzed statically
(save the image, walk its layers, serve files from the product cache) or
live (read files by running commands inside the image), and gives analyzers
one lookup interface over whichever source was chosen.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from constants import SAVED_IMAGE_PREFIX, SAVED_IMAGE_SUFFIX
from core.cache import ProductCache
from core.config import ScanConfig
from core.exceptions import ConfigurationException, DockerCommandError, ScanException, StrataException
from core.models import ExtractAction, ExtractCallback, ProductsByAction
from core.sources import DataSource, LiveSource, StaticSource
from extractor.archive import ImageArchive, read_image_archive
from utils.docker_utils import DockerClient

logger = logging.getLogger(__name__)


class ImageSession:
    """
    Holds the target image identity, runtime connection and product cache.

    Attributes:
        target_image: Image reference being analyzed
        config: Scan configuration
        cache: Products of the static archive walk
        archive: Metadata of the archive walked, if any
    """

    def __init__(
        self,
        target_image: str,
        docker_client: Optional[DockerClient] = None,
        config: Optional[ScanConfig] = None,
    ):
        """
        Initialize the session.

        Args:
            target_image: Image reference to analyze
            docker_client: Runtime client; created from config on first use if omitted
            config: Scan configuration (defaults used if omitted)
        """
        self.target_image = target_image
        self.config = config or ScanConfig()
        self.cache = ProductCache()
        self.archive: Optional[ImageArchive] = None
        self._client = docker_client
        self._client_resolved = docker_client is not None
        self._archive_supplied = False
        self._sources: list[DataSource] = []

    @property
    def client(self) -> Optional[DockerClient]:
        """Runtime client, or None when no container runtime is available."""
        if not self._client_resolved:
            self._client_resolved = True
            try:
                self._client = DockerClient(
                    runtime=self.config.runtime,
                    options=self.config.docker_options(),
                )
            except ConfigurationException as e:
                logger.warning(f"No container runtime available: {e}")
                self._client = None
        return self._client

    @property
    def source(self) -> Optional[DataSource]:
        """Authoritative data source chosen for this scan (None before the scan decision)."""
        return self._sources[0] if self._sources else None

    @property
    def live_available(self) -> bool:
        """Whether files may be read by running commands inside the image."""
        return any(isinstance(source, LiveSource) for source in self._ensure_sources())

    def size_safe(self) -> Optional[int]:
        """
        Best-effort image size lookup.

        Returns:
            Size in bytes, or None if it could not be determined
        """
        client = self.client
        if client is None:
            return None
        try:
            return client.get_image_size(self.target_image)
        except (StrataException, ValueError, OSError) as e:
            logger.debug(f"Could not determine size of {self.target_image}: {e}")
            return None

    def scan_statically_if_needed(
        self,
        actions: Iterable[ExtractAction],
        archive_path: Optional[Union[str, Path]] = None,
    ) -> bool:
        """
        Walk the image archive once if a static scan is possible.

        A supplied archive is always walked and is the only source for the
        rest of the scan, since the runtime may not hold the image. Otherwise the image is saved
        from the runtime and walked only when its size is known and within
        the configured ceiling.

        Args:
            actions: Union of every analyzer's extract actions
            archive_path: Pre-saved image archive to walk

        Returns:
            True if products were collected statically

        Raises:
            ArchiveReadError: If the archive cannot be read
            ImageNotFoundError: If the runtime has no such image
            DockerCommandError: If saving the image fails
        """
        actions = list(actions)

        if archive_path is not None:
            self._extract_and_cache(str(archive_path), actions)
            self._archive_supplied = True
            self._sources = [StaticSource(self.cache)]
            logger.debug(f"Using supplied archive only for {self.target_image}")
            return True

        size = self.size_safe()
        if not size or size > self.config.static_scan_max_size:
            reason = "unknown size" if not size else f"{size} bytes exceeds {self.config.static_scan_max_size}"
            logger.info(f"Skipping static scan of {self.target_image} ({reason})")
            self._use_live()
            return False

        self._save_and_extract(actions)
        self._use_static()
        return True

    def _use_static(self) -> None:
        self._sources = [StaticSource(self.cache)]
        if self.client is not None:
            self._sources.append(LiveSource(self.client, self.target_image))
        logger.debug(f"Using static source for {self.target_image}")

    def _use_live(self) -> None:
        if self.client is not None:
            self._sources = [LiveSource(self.client, self.target_image)]
        else:
            self._sources = [StaticSource(self.cache)]
        logger.debug(f"Using {self._sources[0].name()} source for {self.target_image}")

    def _save_and_extract(self, actions: list[ExtractAction]) -> None:
        tmp = tempfile.NamedTemporaryFile(
            prefix=SAVED_IMAGE_PREFIX,
            suffix=SAVED_IMAGE_SUFFIX,
            dir=self.config.temp_dir,
            delete=False,
        )
        tmp.close()
        try:
            try:
                self.client.save(self.target_image, tmp.name)
            except DockerCommandError as e:
                error_type = self.client.classify_error_type(e.stderr)
                logger.error(f"Failed to save {self.target_image} ({error_type}): {e}")
                raise
            self._extract_and_cache(tmp.name, actions)
        finally:
            try:
                os.unlink(tmp.name)
            except FileNotFoundError:
                pass

    def _extract_and_cache(self, archive_path: str, actions: list[ExtractAction]) -> None:
        self.archive = read_image_archive(archive_path, actions)
        self.cache.merge(self.archive.merged())
        logger.info(f"✓ Static scan of {self.target_image}: {len(self.cache)} files extracted")

    def _ensure_sources(self) -> list[DataSource]:
        if not self._sources:
            self._use_live()
        return self._sources

    def get_action_product_by_file_name(
        self,
        path: str,
        action_name: str,
        callback: Optional[ExtractCallback] = None,
    ) -> Optional[Any]:
        """
        Get a file's product from the static cache, falling back to a live read.

        Args:
            path: Absolute path inside the image
            action_name: Extract action whose product is wanted
            callback: Applied to bytes read live, matching the static product shape

        Returns:
            The product, or None if the file does not exist in the image
        """
        for source in self._ensure_sources():
            product = source.product(path, action_name, callback)
            if product is not None:
                return product
        return None

    def get_text_file(self, path: str, action_name: str = "txt") -> str:
        """Get a file's content as text; an absent file yields an empty string."""
        product = self.get_action_product_by_file_name(path, action_name)
        if product is None:
            return ""
        if isinstance(product, bytes):
            return product.decode("utf-8", errors="replace")
        return str(product)

    def get_action_products(self, action_name: str = "txt") -> ProductsByAction:
        """Return {file_name: product} for every statically extracted file with the action's product."""
        return self.cache.products_for(action_name)

    def inspect(self) -> dict[str, Any]:
        """
        Inspect the image.

        Returns:
            {Id, RootFS: {Layers}, ...} from the runtime, or built from the
            archive metadata when the archive was supplied by the caller

        Raises:
            ScanException: If neither archive metadata nor a runtime is available
            DockerCommandError: If the runtime inspect fails
        """
        if self._archive_supplied and self.archive is not None:
            return self.archive.inspect_data()
        client = self.client
        if client is None:
            if self.archive is not None:
                return self.archive.inspect_data()
            raise ScanException(self.target_image, "no container runtime available to inspect image")
        return client.inspect(self.target_image)


__all__ = ["ImageSession"]

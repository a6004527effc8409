"""
File data sources for a scan session.

A scan reads image files either from the products of a static archive walk
or by running a read command inside the image. Both are exposed through the
same interface so analyzers receive identically shaped products regardless
of where the data came from.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from core.cache import ProductCache
from core.models import ExtractCallback
from utils.docker_utils import DockerClient

logger = logging.getLogger(__name__)


class DataSource(ABC):
    """Abstract source of per-file products."""

    @abstractmethod
    def name(self) -> str:
        """
        Return the source name.

        Returns:
            Source identifier ("static" or "live")
        """
        pass

    @abstractmethod
    def product(
        self,
        path: str,
        action_name: str,
        callback: Optional[ExtractCallback] = None,
    ) -> Optional[Any]:
        """
        Look up the product of an extract action for one file.

        Args:
            path: Absolute path inside the image
            action_name: Extract action whose product is wanted
            callback: Transform for raw bytes read on demand

        Returns:
            The product, or None if the file is not available from this source
        """
        pass


class StaticSource(DataSource):
    """Products collected by the archive walk, served from the product cache."""

    def __init__(self, cache: ProductCache):
        self.cache = cache

    def name(self) -> str:
        return "static"

    def product(
        self,
        path: str,
        action_name: str,
        callback: Optional[ExtractCallback] = None,
    ) -> Optional[Any]:
        # Cached products already had the action's callback applied
        return self.cache.get(path, action_name)


class LiveSource(DataSource):
    """Files read on demand from inside the image through the container runtime."""

    def __init__(self, client: DockerClient, image: str):
        self.client = client
        self.image = image

    def name(self) -> str:
        return "live"

    def product(
        self,
        path: str,
        action_name: str,
        callback: Optional[ExtractCallback] = None,
    ) -> Optional[Any]:
        """
        Read a file from the image and apply the callback.

        Raises:
            DockerCommandError: If the runtime fails for a reason other than
                the file being absent
        """
        content = self.client.cat_bytes(self.image, path)
        if content is None:
            logger.debug(f"{path} not present in {self.image}")
            return None
        return callback(content) if callback else content


__all__ = ["DataSource", "StaticSource", "LiveSource"]

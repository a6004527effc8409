"""
In-memory product cache for a single scan.

Holds the union-view products of an image archive walk, keyed by absolute
file path and then by extract action name. A cache lives for one scan only;
nothing is persisted.
"""

import logging
import threading
from typing import Any, Optional

from core.models import ProductsByAction, ProductsByFilename

logger = logging.getLogger(__name__)


class ProductCache:
    """
    Per-scan cache of extracted file products.

    Tracks hits and misses the same way for every lookup so the summary
    reflects how much of the analysis was served from the archive walk.
    """

    def __init__(self):
        self._products: ProductsByFilename = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def merge(self, products: ProductsByFilename) -> None:
        """
        Add products from an archive walk.

        Products already cached for a file are kept; new action products for
        the same file are added alongside them.

        Args:
            products: Union-view products keyed by absolute path
        """
        for file_name, by_action in products.items():
            cached = self._products.setdefault(file_name, {})
            for action_name, product in by_action.items():
                cached.setdefault(action_name, product)
        logger.debug(f"Cached products for {len(products)} files ({len(self._products)} total)")

    def get(self, file_name: str, action_name: str) -> Optional[Any]:
        """
        Look up one product.

        Args:
            file_name: Absolute path inside the image
            action_name: Extract action that produced the product

        Returns:
            The product, or None when the file or action is not cached
        """
        by_action = self._products.get(file_name)
        found = by_action is not None and action_name in by_action
        with self._lock:
            if found:
                self.hits += 1
            else:
                self.misses += 1
        return by_action[action_name] if found else None

    def products_for(self, action_name: str) -> ProductsByAction:
        """Return {file_name: product} for every file that has the action's product."""
        return {
            file_name: by_action[action_name]
            for file_name, by_action in self._products.items()
            if action_name in by_action
        }

    def __contains__(self, file_name: str) -> bool:
        return file_name in self._products

    def __len__(self) -> int:
        return len(self._products)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100

    def summary(self) -> str:
        """Get cache usage summary."""
        total = self.hits + self.misses
        if total == 0:
            return "No cache activity"

        return f"Cache: {self.hits} hits, {self.misses} misses ({self.hit_rate:.1f}% hit rate)"

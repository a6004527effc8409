"""
Orchestrates the analysis of one image, from archive walk to binary detection.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from analyzers import PACKAGE_ANALYZERS, os_release
from core.exceptions import AnalysisException
from core.models import AnalyzerResult, ExtractAction, ImageAnalysis
from core.session import ImageSession
from integrations.binaries import BinaryAnalyzer, RuntimeBinaryAnalyzer
from utils.logging_helpers import log_error_section

logger = logging.getLogger(__name__)


def primary_package_manager(results: list[AnalyzerResult]) -> tuple[list[str], Optional[str]]:
    """
    Pick the first package manager result with packages.

    Args:
        results: Package manager results in priority order (apk, apt, rpm)

    Returns:
        (installed package names, lowercased manager name), or ([], None)
        when no manager found packages
    """
    for result in results:
        if result.analysis:
            return result.package_names, result.analyze_type.value.lower()
    return [], None


class AnalysisOrchestrator:
    """
    Runs every analyzer against a single image session.

    The archive is walked once with the union of all analyzers' extract
    actions; the analyzers then read from the session concurrently.
    """

    def __init__(
        self,
        session: ImageSession,
        binary_analyzer: Optional[BinaryAnalyzer] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            session: Scan session for the target image
            binary_analyzer: Binary collaborator (runtime probing by default,
                disabled when the scan reads only a supplied archive)
            max_workers: Thread pool size (defaults to the session config)
        """
        self.session = session
        self.binary_analyzer = binary_analyzer
        self.max_workers = max_workers or session.config.max_workers

    @staticmethod
    def extract_actions() -> list[ExtractAction]:
        """Union of every analyzer's extract actions, without duplicates."""
        actions = []
        seen = set()
        for module in (*PACKAGE_ANALYZERS, os_release):
            for action in module.EXTRACT_ACTIONS:
                key = (action.name, action.pattern)
                if key not in seen:
                    seen.add(key)
                    actions.append(action)
        return actions

    def _binary_analyzer(self) -> BinaryAnalyzer:
        if self.binary_analyzer is not None:
            return self.binary_analyzer
        client = self.session.client if self.session.live_available else None
        return RuntimeBinaryAnalyzer(client)

    def analyze(self, archive_path: Optional[Union[str, Path]] = None) -> ImageAnalysis:
        """
        Analyze the image.

        Args:
            archive_path: Pre-saved image archive; the image is saved from the
                runtime when omitted and small enough

        Returns:
            ImageAnalysis for the target image

        Raises:
            AnalysisException: If OS package detection or binary detection fails
            ArchiveReadError: If the archive cannot be read
            DockerCommandError: If saving the image fails
        """
        target = self.session.target_image
        logger.info(f"Analyzing {target}")

        self.session.scan_statically_if_needed(self.extract_actions(), archive_path)

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                inspect_future = executor.submit(self.session.inspect)
                os_future = executor.submit(os_release.detect, self.session)
                pkg_futures = [
                    executor.submit(analyzer.detect, self.session)
                    for analyzer in PACKAGE_ANALYZERS
                ]

                inspection = inspect_future.result()
                os_info = os_future.result()
                results = [future.result() for future in pkg_futures]
        except Exception as e:
            log_error_section(
                "Failed to detect installed OS packages",
                [f"Image: {target}", f"Cause: {e}"],
                logger=logger,
            )
            raise AnalysisException("Failed to detect installed OS packages") from e

        installed_packages, pkg_manager = primary_package_manager(results)
        if pkg_manager:
            logger.info(f"✓ {len(installed_packages)} {pkg_manager} packages in {target}")
        else:
            logger.info(f"No OS packages found in {target}")

        try:
            binaries = self._binary_analyzer().analyze(target, installed_packages, pkg_manager)
        except Exception as e:
            log_error_section(
                "Failed to detect binaries versions",
                [f"Image: {target}", f"Cause: {e}"],
                logger=logger,
            )
            raise AnalysisException("Failed to detect binaries versions") from e

        root_fs = inspection.get("RootFS") or {}
        image_layers = tuple(str(layer) for layer in root_fs.get("Layers") or [])

        logger.info(f"✓ Analysis of {target} complete ({self.session.cache.summary()})")
        return ImageAnalysis(
            image_id=inspection.get("Id"),
            os_release=os_info,
            results=tuple(results),
            binaries=binaries,
            image_layers=image_layers,
            package_manager=pkg_manager,
        )


__all__ = ["AnalysisOrchestrator", "primary_package_manager"]

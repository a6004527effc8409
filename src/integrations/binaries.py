"""
Binary analyzer interface and runtime-probing implementation.

Finds language runtimes installed outside of the OS package manager by
running their version commands inside the image.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from core.exceptions import DockerCommandError
from core.models import AnalysisType, AnalyzerResult, Binary
from utils.docker_utils import DockerClient

logger = logging.getLogger(__name__)

SEMVER_PATTERN = re.compile(
    r"^v?(\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?)$"
)

JAVA_BUILD_PATTERN = re.compile(r"\(build (.*)\)$")


class BinaryAnalyzer(ABC):
    """
    Abstract base class for binary analyzers.

    Receives the package names the primary package manager installed so
    binaries it already owns are not reported twice.
    """

    @abstractmethod
    def analyze(
        self,
        target_image: str,
        installed_packages: list[str],
        pkg_manager: Optional[str] = None,
    ) -> AnalyzerResult:
        """
        Detect binaries in the image.

        Args:
            target_image: Image reference
            installed_packages: Package names from the primary package manager
            pkg_manager: Primary package manager name ("apk", "apt", "rpm")

        Returns:
            AnalyzerResult with AnalysisType.BINARIES
        """
        pass


def parse_node_version(output: str) -> Optional[Binary]:
    """
    Parse `node --version` output.

    Examples:
        >>> parse_node_version("v18.19.0\\n")
        Binary(name='node', version='18.19.0')
    """
    match = SEMVER_PATTERN.match(output.strip()) if output else None
    if not match:
        return None
    return Binary(name="node", version=match.group(1))


def parse_openjdk_version(output: str) -> Optional[Binary]:
    """
    Parse `java -version` output.

    The build version is taken from the second of exactly three lines, e.g.
    "OpenJDK Runtime Environment (build 1.8.0_191-b12)" yields 1.8.0_191-b12.
    """
    lines = output.strip().split("\n") if output else []
    if len(lines) != 3:
        return None
    match = JAVA_BUILD_PATTERN.search(lines[1].strip())
    if not match or not match.group(1):
        return None
    return Binary(name="openjdk-jre", version=match.group(1))


class RuntimeBinaryAnalyzer(BinaryAnalyzer):
    """Probes node and Java versions by running them inside the image."""

    PROBES = (
        ("node", ["--version"], ("node", "nodejs"), parse_node_version),
        ("java", ["-version"], ("java",), parse_openjdk_version),
    )

    def __init__(self, docker_client: Optional[DockerClient] = None):
        """
        Initialize the analyzer.

        Args:
            docker_client: Runtime client; without one no binaries are probed
        """
        self.docker_client = docker_client

    def analyze(
        self,
        target_image: str,
        installed_packages: list[str],
        pkg_manager: Optional[str] = None,
    ) -> AnalyzerResult:
        binaries = []
        if self.docker_client is None:
            logger.debug("No container runtime; skipping binary probes")
        else:
            installed = set(installed_packages)
            for cmd, args, package_names, parser in self.PROBES:
                if installed.intersection(package_names):
                    logger.debug(f"{cmd} installed by {pkg_manager}; skipping probe")
                    continue
                binary = self._probe(target_image, cmd, args, parser)
                if binary:
                    binaries.append(binary)

        return AnalyzerResult(
            image=target_image,
            analyze_type=AnalysisType.BINARIES,
            analysis=tuple(binaries),
        )

    def _probe(self, target_image: str, cmd: str, args: list[str], parser) -> Optional[Binary]:
        try:
            result = self.docker_client.run(target_image, cmd, args)
        except DockerCommandError as e:
            if "not found" in e.stderr:
                return None
            raise

        stdout = result.stdout.decode("utf-8", errors="replace")
        stderr = result.stderr.decode("utf-8", errors="replace")
        # java -version reports on stderr
        return parser(stdout.strip() or stderr.strip())


__all__ = [
    "BinaryAnalyzer",
    "RuntimeBinaryAnalyzer",
    "parse_node_version",
    "parse_openjdk_version",
]

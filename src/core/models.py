"""
Domain models for image analysis.

This module defines the core data structures used throughout the pipeline.
Finished records are immutable (frozen dataclasses); the only mutable model is
PackageBuilder, which exists while a database file is being parsed.
"""

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

ExtractCallback = Callable[[bytes], Any]
"""Turns the raw bytes of a matched file into a derived product."""

ProductsByAction = dict[str, Any]
ProductsByFilename = dict[str, ProductsByAction]


class AnalysisType(str, Enum):
    """Analyzer identifiers, as reported in AnalyzerResult.analyze_type."""

    APK = "Apk"
    APT = "Apt"
    RPM = "Rpm"
    BINARIES = "binaries"

    @classmethod
    def package_managers(cls) -> list["AnalysisType"]:
        """Return package managers in primary-manager priority order."""
        return [cls.APK, cls.APT, cls.RPM]


@dataclass(frozen=True)
class ExtractAction:
    """
    Declares interest in files whose absolute path matches `pattern`.

    Attributes:
        name: Product slot name, unique per action set
        pattern: Shell-style glob matched against the absolute path
        callback: Optional transform applied to the raw bytes; when absent
            the bytes themselves are the product
    """

    name: str
    pattern: str
    callback: Optional[ExtractCallback] = None

    def matches(self, path: str) -> bool:
        """Check whether an absolute path matches this action's pattern."""
        return fnmatch.fnmatchcase(path, self.pattern)

    def apply(self, content: bytes) -> Any:
        """Produce this action's product for a file's content."""
        return self.callback(content) if self.callback else content


@dataclass(frozen=True)
class AnalyzedPackage:
    """
    One package declared in an OS package database.

    Attributes:
        name: Package name
        version: Package version, if the database declared one
        source: Source package (dpkg Source, apk origin, rpm source RPM)
        provides: Names this package provides, deduplicated, in first-seen order
        deps: Dependency names, deduplicated, in first-seen order
        auto_installed: True when APT marks the package as pulled in as a dependency
    """

    name: str
    version: Optional[str] = None
    source: Optional[str] = None
    provides: tuple[str, ...] = ()
    deps: tuple[str, ...] = ()
    auto_installed: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dictionary shape consumed by report builders."""
        return {
            "Name": self.name,
            "Version": self.version,
            "Source": self.source,
            "Provides": list(self.provides),
            "Deps": {dep: True for dep in self.deps},
            "AutoInstalled": self.auto_installed,
        }


@dataclass
class PackageBuilder:
    """In-progress package record, mutated line by line while parsing."""

    name: str
    version: Optional[str] = None
    source: Optional[str] = None
    provides: list[str] = field(default_factory=list)
    deps: dict[str, bool] = field(default_factory=dict)
    auto_installed: Optional[bool] = None

    def add_provide(self, name: str) -> None:
        if name and name not in self.provides:
            self.provides.append(name)

    def add_dep(self, name: str) -> None:
        if name:
            self.deps[name] = True

    def build(self) -> AnalyzedPackage:
        """
        Finalize into an immutable AnalyzedPackage.

        Raises:
            ValueError: If the package has no name
        """
        if not self.name:
            raise ValueError("package record without a name")
        return AnalyzedPackage(
            name=self.name,
            version=self.version,
            source=self.source,
            provides=tuple(self.provides),
            deps=tuple(self.deps),
            auto_installed=self.auto_installed,
        )


@dataclass(frozen=True)
class AnalyzerResult:
    """Packages found by one analyzer. An absent package manager yields an empty analysis."""

    image: str
    analyze_type: AnalysisType
    analysis: tuple[Any, ...] = ()

    @property
    def package_names(self) -> list[str]:
        return [pkg.name for pkg in self.analysis]

    def to_dict(self) -> dict[str, Any]:
        return {
            "Image": self.image,
            "AnalyzeType": self.analyze_type.value,
            "Analysis": [item.to_dict() for item in self.analysis],
        }


@dataclass(frozen=True)
class Binary:
    """A runtime binary found outside of any package manager."""

    name: str
    version: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}


@dataclass(frozen=True)
class OSRelease:
    """Operating system identity detected from release files."""

    name: str
    version: str
    pretty_name: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version, "prettyName": self.pretty_name}


@dataclass(frozen=True)
class ImageAnalysis:
    """
    Complete analysis of a single image.

    Attributes:
        image_id: Image ID (config digest)
        os_release: Detected operating system
        results: One AnalyzerResult per package manager (apk, apt, rpm)
        binaries: Binary analyzer result
        image_layers: Layer identifiers in application order
        package_manager: Primary package manager, if any had packages
    """

    image_id: Optional[str]
    os_release: OSRelease
    results: tuple[AnalyzerResult, ...]
    binaries: AnalyzerResult
    image_layers: tuple[str, ...] = ()
    package_manager: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "imageId": self.image_id,
            "osRelease": self.os_release.to_dict(),
            "results": [result.to_dict() for result in self.results],
            "binaries": self.binaries.to_dict(),
            "imageLayers": list(self.image_layers),
            "packageManager": self.package_manager,
        }


def to_text(content: bytes) -> str:
    """Decode file content as UTF-8, replacing undecodable bytes."""
    return content.decode("utf-8", errors="replace")

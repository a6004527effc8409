"""
Strata - Container Image Layer Analysis Engine

Reconstructs the effective filesystem of a container image across its layers
and decodes the operating system package databases found in it.
"""

__version__ = "0.3.0"
__author__ = "Strata Developers"

from core.models import (
    AnalyzedPackage,
    AnalyzerResult,
    ExtractAction,
    ImageAnalysis,
)

__all__ = [
    "AnalyzedPackage",
    "AnalyzerResult",
    "ExtractAction",
    "ImageAnalysis",
]

"""Core domain models, product cache and scan orchestration."""

from core.models import (
    AnalysisType,
    AnalyzedPackage,
    AnalyzerResult,
    ExtractAction,
    ImageAnalysis,
    OSRelease,
)
from core.cache import ProductCache

__all__ = [
    "AnalysisType",
    "AnalyzedPackage",
    "AnalyzerResult",
    "ExtractAction",
    "ImageAnalysis",
    "OSRelease",
    "ProductCache",
]

"""Integrations with collaborators outside the package database parsers."""

from integrations.binaries import BinaryAnalyzer, RuntimeBinaryAnalyzer

__all__ = [
    "BinaryAnalyzer",
    "RuntimeBinaryAnalyzer",
]

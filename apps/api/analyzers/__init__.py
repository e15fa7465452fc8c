"""Website analyzers invoked by the audit orchestrator."""

from .base import Analyzer, AnalyzerOptions, default_analyzers

__all__ = ["Analyzer", "AnalyzerOptions", "default_analyzers"]

"""Analyzer contract shared by the performance, meta-tag and image analyzers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from services.scoring import round_half_up


@dataclass(frozen=True)
class AnalyzerOptions:
    device_type: str = "desktop"
    location: str = "us"


class Analyzer(ABC):
    """Inspects one facet of a page and returns a scored category result or raises."""

    category: str
    timeout_seconds: float
    # Extra sub-records an analyzer may return nested under these keys.
    companion_categories: Tuple[str, ...] = ()

    @abstractmethod
    async def analyze(self, url: str, options: AnalyzerOptions) -> Dict[str, Any]:
        raise NotImplementedError


def clamp_score(value: float) -> int:
    return int(max(0, min(100, round_half_up(value))))


def default_analyzers() -> List[Analyzer]:
    """Analyzer registry in fixed category order."""
    from analyzers.images import ImageAnalyzer
    from analyzers.meta_tags import MetaTagAnalyzer
    from analyzers.performance import PerformanceAnalyzer

    return [PerformanceAnalyzer(), MetaTagAnalyzer(), ImageAnalyzer()]

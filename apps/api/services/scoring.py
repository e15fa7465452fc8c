"""Overall score aggregation over whichever category results are present."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Canonical weighting. Absent categories are excluded and the remaining
# weights renormalized, so a failed analysis is not counted as zero.
CATEGORY_WEIGHTS: Dict[str, float] = {
    "performance": 0.4,
    "seo": 0.3,
    "images": 0.3,
}
SCORED_CATEGORIES = tuple(CATEGORY_WEIGHTS.keys())


def _safe_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def category_score(record: Optional[Dict[str, Any]]) -> Optional[float]:
    """Score of a category sub-record, or None when the record is missing or unscored."""
    if not isinstance(record, dict):
        return None
    score = _safe_float(record.get("score"))
    if score is None or math.isnan(score):
        return None
    return _clamp(score)


@dataclass
class PartialCategoryResults:
    """Category sub-records of one job; any of them may be absent."""

    performance: Optional[Dict[str, Any]] = None
    seo: Optional[Dict[str, Any]] = None
    images: Optional[Dict[str, Any]] = None
    accessibility: Optional[Dict[str, Any]] = None

    @classmethod
    def from_job(cls, job: Any) -> "PartialCategoryResults":
        return cls(
            performance=getattr(job, "performance", None),
            seo=getattr(job, "seo", None),
            images=getattr(job, "images", None),
            accessibility=getattr(job, "accessibility", None),
        )

    def get(self, category: str) -> Optional[Dict[str, Any]]:
        return getattr(self, category, None)

    def present_categories(self) -> List[str]:
        return [key for key in SCORED_CATEGORIES if category_score(self.get(key)) is not None]


def aggregate_overall_score(results: PartialCategoryResults) -> int:
    """Weighted mean of present category scores, rounded to the nearest integer; 0 if none."""
    weighted_total = 0.0
    weight_total = 0.0
    for category, weight in CATEGORY_WEIGHTS.items():
        score = category_score(results.get(category))
        if score is None:
            continue
        weighted_total += weight * score
        weight_total += weight

    if weight_total <= 0:
        return 0
    return int(_clamp(round_half_up(weighted_total / weight_total)))


def score_breakdown(results: PartialCategoryResults) -> Dict[str, Any]:
    """Per-category contribution used to explain an overall score."""
    present = results.present_categories()
    weight_total = sum(CATEGORY_WEIGHTS[key] for key in present)
    categories: Dict[str, Any] = {}
    for category, weight in CATEGORY_WEIGHTS.items():
        score = category_score(results.get(category))
        effective = (weight / weight_total) if (score is not None and weight_total > 0) else 0.0
        categories[category] = {
            "present": score is not None,
            "score": score,
            "weight": weight,
            "effective_weight": round(effective, 4),
        }
    return {
        "overall_score": aggregate_overall_score(results),
        "categories": categories,
    }

"""Rule-based recommendation generation for completed audits."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from services.scoring import PartialCategoryResults, category_score

SCORE_THRESHOLD = 80
OPEN_GRAPH_THRESHOLD = 60
WEBP_SHARE_THRESHOLD = 0.5
LAZY_SHARE_THRESHOLD = 0.8

# Evaluation order; recommendations are emitted in this order and never re-ranked.
CATEGORY_ORDER = ("performance", "seo", "images")
CATEGORY_LABELS = {
    "performance": "performance",
    "seo": "meta-tags",
    "images": "images",
}


@dataclass(frozen=True)
class RecommendationRule:
    key: str
    category: str
    priority: str
    title: str
    impact: str
    effort: str
    applies: Callable[[Dict[str, Any]], bool]
    describe: Callable[[Dict[str, Any]], str]
    resources: List[str] = field(default_factory=list)

    def build(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "rule": self.key,
            "category": CATEGORY_LABELS[self.category],
            "priority": self.priority,
            "title": self.title,
            "description": self.describe(record),
            "impact": self.impact,
            "effort": self.effort,
            "resources": list(self.resources),
        }


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _sub_score(record: Dict[str, Any], key: str) -> Optional[float]:
    sub = record.get(key)
    return category_score(sub) if isinstance(sub, dict) else None


def _below(record: Dict[str, Any], threshold: float) -> bool:
    score = category_score(record)
    return score is not None and score < threshold


def _sub_below(key: str, threshold: float) -> Callable[[Dict[str, Any]], bool]:
    def _check(record: Dict[str, Any]) -> bool:
        score = _sub_score(record, key)
        return score is not None and score < threshold

    return _check


def _share_below(count_key: str, share: float) -> Callable[[Dict[str, Any]], bool]:
    def _check(record: Dict[str, Any]) -> bool:
        total = _int(record.get("total_images"))
        if total <= 0:
            return False
        return _int(record.get(count_key)) < total * share

    return _check


RULES: List[RecommendationRule] = [
    RecommendationRule(
        key="performance_score",
        category="performance",
        priority="high",
        title="Improve Page Performance",
        impact="High impact on user experience and SEO rankings",
        effort="Medium effort - requires development work",
        applies=lambda r: _below(r, SCORE_THRESHOLD),
        describe=lambda r: (
            f"Your page performance score is {round(category_score(r) or 0)}, below {SCORE_THRESHOLD}. "
            "Consider optimizing images, reducing JavaScript, and improving server response times."
        ),
        resources=["https://web.dev/fast/", "https://developers.google.com/speed/pagespeed/insights/"],
    ),
    RecommendationRule(
        key="meta_tags_score",
        category="seo",
        priority="medium",
        title="Optimize Meta Tags",
        impact="Medium impact on search rankings and click-through rates",
        effort="Low effort - quick win",
        applies=lambda r: _below(r, SCORE_THRESHOLD),
        describe=lambda r: "Improve your meta tags for better SEO and social media sharing.",
        resources=[
            "https://developers.google.com/search/docs/beginner/seo-starter-guide",
            "https://moz.com/learn/seo/title-tag",
        ],
    ),
    RecommendationRule(
        key="title_tag",
        category="seo",
        priority="high",
        title="Optimize Title Tag",
        impact="High impact on search rankings",
        effort="Low effort - quick win",
        applies=_sub_below("title", SCORE_THRESHOLD),
        describe=lambda r: (
            "Add a descriptive title between 30 and 60 characters."
            if not (r.get("title") or {}).get("present")
            else f"Your title is {_int((r.get('title') or {}).get('length'))} characters; aim for 30 to 60."
        ),
    ),
    RecommendationRule(
        key="meta_description",
        category="seo",
        priority="high",
        title="Optimize Meta Description",
        impact="High impact on click-through rates",
        effort="Low effort - quick win",
        applies=_sub_below("description", SCORE_THRESHOLD),
        describe=lambda r: (
            "Add a meta description between 120 and 160 characters."
            if not (r.get("description") or {}).get("present")
            else (
                f"Your meta description is {_int((r.get('description') or {}).get('length'))} characters; "
                "aim for 120 to 160."
            )
        ),
    ),
    RecommendationRule(
        key="open_graph",
        category="seo",
        priority="medium",
        title="Add Open Graph Tags",
        impact="Medium impact on social sharing",
        effort="Low effort - quick win",
        applies=_sub_below("open_graph", OPEN_GRAPH_THRESHOLD),
        describe=lambda r: "Add Open Graph tags for better social media sharing.",
    ),
    RecommendationRule(
        key="images_score",
        category="images",
        priority="medium",
        title="Optimize Images",
        impact="Medium impact on page load speed",
        effort="Medium effort - requires image optimization",
        applies=lambda r: _below(r, SCORE_THRESHOLD),
        describe=lambda r: "Improve your image optimization for better page load speeds.",
        resources=[
            "https://web.dev/fast/#optimize-your-images",
            "https://developers.google.com/speed/docs/insights/OptimizeImages",
        ],
    ),
    RecommendationRule(
        key="image_alt_text",
        category="images",
        priority="high",
        title="Add Alt Text to Images",
        impact="High impact on accessibility and SEO",
        effort="Low effort - quick win",
        applies=lambda r: _int(r.get("images_without_alt")) > 0,
        describe=lambda r: f"{_int(r.get('images_without_alt'))} images are missing alt text.",
        resources=["https://web.dev/alt-text/", "https://www.w3.org/WAI/tutorials/images/"],
    ),
    RecommendationRule(
        key="webp_images",
        category="images",
        priority="medium",
        title="Convert Images to WebP",
        impact="Medium impact on page load speed",
        effort="Medium effort - requires development work",
        applies=_share_below("webp_images", WEBP_SHARE_THRESHOLD),
        describe=lambda r: "Consider converting images to WebP format for better compression.",
        resources=["https://developers.google.com/speed/webp", "https://web.dev/serve-images-webp/"],
    ),
    RecommendationRule(
        key="large_images",
        category="images",
        priority="high",
        title="Optimize Large Images",
        impact="High impact on page load speed",
        effort="Medium effort - requires image optimization",
        applies=lambda r: _int(r.get("large_images")) > 0,
        describe=lambda r: f"{_int(r.get('large_images'))} images are larger than 500KB.",
    ),
    RecommendationRule(
        key="lazy_loading",
        category="images",
        priority="medium",
        title="Implement Lazy Loading",
        impact="Medium impact on initial page load speed",
        effort="Low effort - quick win",
        applies=_share_below("lazy_loaded_images", LAZY_SHARE_THRESHOLD),
        describe=lambda r: "Add lazy loading to images below the fold.",
        resources=["https://web.dev/lazy-loading-images/"],
    ),
]


def generate_recommendations(
    results: PartialCategoryResults,
    rules: Optional[List[RecommendationRule]] = None,
) -> List[Dict[str, Any]]:
    """Evaluate every rule against the present categories, in fixed category order."""
    active_rules = rules if rules is not None else RULES
    recommendations: List[Dict[str, Any]] = []
    for category in CATEGORY_ORDER:
        record = results.get(category)
        if not isinstance(record, dict):
            continue
        for rule in active_rules:
            if rule.category != category:
                continue
            if rule.applies(record):
                recommendations.append(rule.build(record))
    return recommendations

"""Lighthouse performance analyzer backed by the PageSpeed Insights API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from analyzers.base import Analyzer, AnalyzerOptions, clamp_score
from config import settings

logger = logging.getLogger(__name__)

METRIC_AUDITS = {
    "first_contentful_paint": "first-contentful-paint",
    "largest_contentful_paint": "largest-contentful-paint",
    "cumulative_layout_shift": "cumulative-layout-shift",
    "time_to_interactive": "interactive",
    "speed_index": "speed-index",
    "first_input_delay": "max-potential-fid",
    "total_blocking_time": "total-blocking-time",
}
ISSUE_SCORE_THRESHOLD = 0.9


def _metric_value(audits: Dict[str, Any], audit_id: str) -> Optional[float]:
    audit = audits.get(audit_id)
    if not isinstance(audit, dict) or audit.get("numericValue") is None:
        return None
    value = float(audit["numericValue"])
    # CLS is unitless; keep precision instead of rounding to whole milliseconds.
    return round(value, 3) if audit_id == "cumulative-layout-shift" else float(round(value))


def _category_issues(lighthouse: Dict[str, Any], category_key: str) -> List[Dict[str, Any]]:
    category = (lighthouse.get("categories") or {}).get(category_key) or {}
    audits = lighthouse.get("audits") or {}
    issues: List[Dict[str, Any]] = []
    for ref in category.get("auditRefs") or []:
        audit = audits.get(ref.get("id"))
        if not isinstance(audit, dict) or audit.get("score") is None:
            continue
        if float(audit["score"]) < ISSUE_SCORE_THRESHOLD:
            issues.append(
                {
                    "id": ref.get("id"),
                    "title": audit.get("title"),
                    "score": clamp_score(float(audit["score"]) * 100),
                }
            )
    return issues


def parse_lighthouse_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a PageSpeed Insights response to the performance record.

    The accessibility record, when the report carries that category, rides
    along under the "accessibility" key.
    """
    lighthouse = payload.get("lighthouseResult") or {}
    categories = lighthouse.get("categories") or {}
    performance_category = categories.get("performance") or {}
    if performance_category.get("score") is None:
        raise ValueError("Lighthouse report has no performance score")

    audits = lighthouse.get("audits") or {}
    record: Dict[str, Any] = {
        "score": clamp_score(float(performance_category["score"]) * 100),
        **{field: _metric_value(audits, audit_id) for field, audit_id in METRIC_AUDITS.items()},
        "issues": _category_issues(lighthouse, "performance"),
    }

    accessibility_category = categories.get("accessibility") or {}
    if accessibility_category.get("score") is not None:
        record["accessibility"] = {
            "score": clamp_score(float(accessibility_category["score"]) * 100),
            "issues": _category_issues(lighthouse, "accessibility"),
        }
    return record


class PerformanceAnalyzer(Analyzer):
    category = "performance"
    companion_categories = ("accessibility",)

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.PERFORMANCE_TIMEOUT_SECONDS
        self._transport = transport

    def _params(self, url: str, options: AnalyzerOptions) -> List[tuple]:
        strategy = "mobile" if options.device_type == "mobile" else "desktop"
        params: List[tuple] = [
            ("url", url),
            ("strategy", strategy),
            ("category", "PERFORMANCE"),
            ("category", "ACCESSIBILITY"),
        ]
        if settings.PAGESPEED_API_KEY:
            params.append(("key", settings.PAGESPEED_API_KEY))
        return params

    async def analyze(self, url: str, options: AnalyzerOptions) -> Dict[str, Any]:
        logger.info("Starting Lighthouse audit for %s (%s)", url, options.device_type)
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await asyncio.wait_for(
                client.get(settings.PAGESPEED_ENDPOINT, params=self._params(url, options)),
                self.timeout_seconds,
            )
        response.raise_for_status()
        return parse_lighthouse_result(response.json())

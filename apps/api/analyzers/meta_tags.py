"""Meta-tag / on-page SEO analyzer."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from analyzers.base import Analyzer, AnalyzerOptions, clamp_score
from analyzers.fetch import build_client, fetch_html
from config import settings

logger = logging.getLogger(__name__)

ELEMENT_WEIGHTS = {
    "title": 0.25,
    "description": 0.25,
    "open_graph": 0.15,
    "twitter_card": 0.10,
    "canonical": 0.10,
    "robots": 0.05,
    "structured_data": 0.05,
    "h1": 0.05,
}


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return str(tag.get("content") or "").strip()


def _length_score(length: int, low: int, high: int) -> int:
    if length == 0:
        return 0
    score = 50
    if low <= length <= high:
        score += 30
    elif length > high:
        score -= 20
    else:
        score -= 10
    return clamp_score(score)


def analyze_title(soup: BeautifulSoup) -> Dict[str, Any]:
    title = soup.title.get_text(strip=True) if soup.title else ""
    length = len(title)
    issues: List[str] = []
    if not title:
        issues.append("Title tag is missing")
    else:
        if length < 30:
            issues.append("Title is too short (less than 30 characters)")
        if length > 60:
            issues.append("Title is too long (more than 60 characters)")
        lowered = title.lower()
        if "untitled" in lowered:
            issues.append('Title contains "Untitled"')
        if "homepage" in lowered:
            issues.append('Title is generic (contains "Homepage")')
    return {
        "present": bool(title),
        "content": title,
        "length": length,
        "score": _length_score(length, 30, 60),
        "issues": issues,
    }


def analyze_description(soup: BeautifulSoup) -> Dict[str, Any]:
    description = _meta_content(soup, name="description")
    length = len(description)
    issues: List[str] = []
    if not description:
        issues.append("Meta description is missing")
    else:
        if length < 120:
            issues.append("Description is too short (less than 120 characters)")
        if length > 160:
            issues.append("Description is too long (more than 160 characters)")
        if "lorem ipsum" in description.lower():
            issues.append("Description contains placeholder text")
    return {
        "present": bool(description),
        "content": description,
        "length": length,
        "score": _length_score(length, 120, 160),
        "issues": issues,
    }


def analyze_open_graph(soup: BeautifulSoup) -> Dict[str, Any]:
    points = {"title": 20, "description": 20, "image": 20, "url": 15, "type": 15, "site_name": 10}
    tags = {key: _meta_content(soup, property=f"og:{key}") for key in points}
    score = sum(value for key, value in points.items() if tags[key])
    issues = [
        f"Open Graph {key} is missing"
        for key in ("title", "description", "image", "url", "type")
        if not tags[key]
    ]
    return {**tags, "present": any(tags.values()), "score": score, "issues": issues}


def analyze_twitter_card(soup: BeautifulSoup) -> Dict[str, Any]:
    points = {"card": 25, "title": 20, "description": 20, "image": 20, "site": 10, "creator": 5}
    tags = {key: _meta_content(soup, name=f"twitter:{key}") for key in points}
    score = sum(value for key, value in points.items() if tags[key])
    issues = [
        f"Twitter Card {key} is missing"
        for key in ("card", "title", "description", "image")
        if not tags[key]
    ]
    return {**tags, "present": any(tags.values()), "score": score, "issues": issues}


def analyze_canonical(soup: BeautifulSoup) -> Dict[str, Any]:
    link = soup.find("link", rel="canonical")
    href = str(link.get("href") or "").strip() if link else ""
    return {
        "present": bool(href),
        "url": href,
        "score": 100 if href else 0,
        "issues": [] if href else ["Canonical URL is missing"],
    }


def analyze_robots(soup: BeautifulSoup) -> Dict[str, Any]:
    robots = _meta_content(soup, name="robots")
    issues: List[str] = [] if robots else ["Robots meta tag is missing"]
    if "noindex" in robots.lower():
        issues.append("Page is marked noindex")
    return {
        "present": bool(robots),
        "content": robots,
        "score": 100 if robots else 50,
        "issues": issues,
    }


def analyze_structured_data(soup: BeautifulSoup) -> Dict[str, Any]:
    blocks: List[Any] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            blocks.append(json.loads(script.string or ""))
        except (TypeError, ValueError):
            continue

    types: List[str] = []
    for block in blocks:
        items = block if isinstance(block, list) else [block]
        for item in items:
            if isinstance(item, dict) and item.get("@type"):
                value = item["@type"]
                types.extend(value if isinstance(value, list) else [str(value)])

    microdata = len(soup.find_all(attrs={"itemscope": True}))
    rdfa = len(soup.find_all(attrs={"typeof": True}))
    return {
        "present": bool(blocks) or microdata > 0 or rdfa > 0,
        "types": types,
        "count": len(blocks),
        "microdata_count": microdata,
        "rdfa_count": rdfa,
        "score": 100 if blocks else 0,
        "issues": [] if blocks else ["No structured data found"],
    }


def analyze_h1(soup: BeautifulSoup) -> Dict[str, Any]:
    headings = [tag.get_text(strip=True) for tag in soup.find_all("h1")]
    issues: List[str] = []
    if not headings:
        issues.append("No H1 tag found")
    elif len(headings) > 1:
        issues.append("Multiple H1 tags found (should be only one)")
    return {
        "count": len(headings),
        "tags": headings,
        "score": 100 if len(headings) == 1 else (0 if not headings else 50),
        "issues": issues,
    }


def _presence(value: str, missing_issue: str) -> Dict[str, Any]:
    return {
        "present": bool(value),
        "value": value,
        "score": 100 if value else 0,
        "issues": [] if value else [missing_issue],
    }


def weighted_meta_score(analysis: Dict[str, Any]) -> int:
    total = 0.0
    weight_total = 0.0
    for key, weight in ELEMENT_WEIGHTS.items():
        element = analysis.get(key)
        if isinstance(element, dict) and element.get("score") is not None:
            total += float(element["score"]) * weight
            weight_total += weight
    return clamp_score(total / weight_total) if weight_total > 0 else 0


def analyze_meta_html(html: str) -> Dict[str, Any]:
    """Inspect an HTML document and return the scored meta-tag record."""
    soup = BeautifulSoup(html or "", "html.parser")
    html_tag = soup.find("html")
    lang = str(html_tag.get("lang") or "").strip() if html_tag else ""
    charset_tag = soup.find("meta", charset=True)
    charset = str(charset_tag.get("charset") or "").strip() if charset_tag else ""
    if not charset:
        charset = _meta_content(soup, **{"http-equiv": "Content-Type"})

    analysis: Dict[str, Any] = {
        "title": analyze_title(soup),
        "description": analyze_description(soup),
        "open_graph": analyze_open_graph(soup),
        "twitter_card": analyze_twitter_card(soup),
        "canonical": analyze_canonical(soup),
        "robots": analyze_robots(soup),
        "structured_data": analyze_structured_data(soup),
        "h1": analyze_h1(soup),
        "h2_count": len(soup.find_all("h2")),
        "language": _presence(lang, "HTML lang attribute is missing"),
        "charset": _presence(charset, "Charset declaration is missing"),
        "viewport": _presence(_meta_content(soup, name="viewport"), "Viewport meta tag is missing"),
    }
    analysis["score"] = weighted_meta_score(analysis)
    return analysis


class MetaTagAnalyzer(Analyzer):
    category = "seo"

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.ANALYZER_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    async def analyze(self, url: str, options: AnalyzerOptions) -> Dict[str, Any]:
        logger.info("Analyzing meta tags for %s", url)
        async with build_client(self.timeout_seconds, self._transport) as client:
            html, final_url = await asyncio.wait_for(fetch_html(client, url), self.timeout_seconds * 2)
        result = analyze_meta_html(html)
        result["final_url"] = final_url
        return result

"""Image inventory analyzer."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from analyzers.base import Analyzer, AnalyzerOptions, clamp_score
from analyzers.fetch import build_client, fetch_html, resolve_url
from config import settings

logger = logging.getLogger(__name__)

BACKGROUND_IMAGE_RE = re.compile(r"background-image:\s*url\(['\"]?([^'\")]+)['\"]?\)", re.IGNORECASE)
FORMAT_BY_CONTENT_TYPE = {
    "image/webp": "webp",
    "image/avif": "avif",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}
FORMAT_BY_EXTENSION = {
    ".webp": "webp",
    ".avif": "avif",
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".png": "png",
    ".gif": "gif",
    ".svg": "svg",
}


def _format_from_url(src: str) -> Optional[str]:
    path = urlparse(src).path.lower()
    for ext, fmt in FORMAT_BY_EXTENSION.items():
        if path.endswith(ext):
            return fmt
    return None


def extract_images(html: str, base_url: str) -> List[Dict[str, Any]]:
    """Collect <img> tags and inline background images from a document."""
    soup = BeautifulSoup(html or "", "html.parser")
    images: List[Dict[str, Any]] = []

    for tag in soup.find_all("img"):
        src = str(tag.get("src") or tag.get("data-src") or "").strip()
        if not src:
            continue
        alt = tag.get("alt")
        loading = str(tag.get("loading") or "eager").lower()
        images.append(
            {
                "src": resolve_url(src, base_url),
                "alt": str(alt or ""),
                "has_alt": bool(str(alt or "").strip()),
                "loading": loading,
                "is_lazy_loaded": loading == "lazy",
                "is_background_image": False,
            }
        )

    for tag in soup.find_all(style=True):
        match = BACKGROUND_IMAGE_RE.search(str(tag.get("style") or ""))
        if not match:
            continue
        images.append(
            {
                "src": resolve_url(match.group(1), base_url),
                "alt": "",
                "has_alt": False,
                "loading": "eager",
                "is_lazy_loaded": False,
                "is_background_image": True,
            }
        )
    return images


def _format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 * 1024:
        return f"{round(size_bytes / (1024 * 1024), 2)}MB"
    return f"{round(size_bytes / 1024)}KB"


async def probe_image(client: httpx.AsyncClient, src: str) -> Dict[str, Any]:
    """HEAD an image to learn its format and byte size."""
    response = await client.head(src)
    if response.status_code == 405:
        response = await client.get(src, headers={"Range": "bytes=0-0"})
    response.raise_for_status()
    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    # Ranged GET fallback reports the full size after the slash.
    total = response.headers.get("content-range", "").rsplit("/", 1)[-1]
    length = response.headers.get("content-length", "")
    if total.isdigit():
        size_bytes = int(total)
    elif length.isdigit():
        size_bytes = int(length)
    else:
        size_bytes = 0
    fmt = FORMAT_BY_CONTENT_TYPE.get(content_type) or _format_from_url(src)
    return {
        "url": src,
        "format": fmt,
        "size": size_bytes,
        "size_formatted": _format_size(size_bytes),
        "is_large": size_bytes > settings.LARGE_IMAGE_BYTES,
    }


def summarize_images(images: List[Dict[str, Any]], probes: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Count inventory metrics and collect issues; `probes` maps src to probe result."""
    analysis: Dict[str, Any] = {
        "total_images": len(images),
        "images_with_alt": 0,
        "images_without_alt": 0,
        "webp_images": 0,
        "large_images": 0,
        "lazy_loaded_images": 0,
        "background_images": 0,
        "issues": [],
        "image_details": [],
    }
    issues: List[Dict[str, str]] = analysis["issues"]

    for image in images:
        src = image["src"]
        if image["has_alt"]:
            analysis["images_with_alt"] += 1
        else:
            analysis["images_without_alt"] += 1
            if not image["is_background_image"]:
                issues.append({"type": "missing-alt", "message": f"Image missing alt text: {src}", "severity": "high"})
        if image["is_lazy_loaded"]:
            analysis["lazy_loaded_images"] += 1
        if image["is_background_image"]:
            analysis["background_images"] += 1

        probe = probes.get(src)
        fmt = (probe or {}).get("format") or _format_from_url(src)
        if fmt in {"webp", "avif"}:
            analysis["webp_images"] += 1
        elif fmt in {"jpeg", "png"}:
            issues.append({"type": "format-optimization", "message": f"Consider converting to WebP: {src}", "severity": "low"})
        if probe is None:
            continue
        if probe.get("error"):
            issues.append({"type": "analysis-error", "message": f"Failed to analyze image: {src}", "severity": "low"})
            continue
        analysis["image_details"].append(probe)
        if probe.get("is_large"):
            analysis["large_images"] += 1
            issues.append(
                {
                    "type": "large-image",
                    "message": f"Large image detected: {src} ({probe.get('size_formatted')})",
                    "severity": "medium",
                }
            )

    analysis["score"] = image_score(analysis)
    return analysis


def image_score(analysis: Dict[str, Any]) -> int:
    total = int(analysis.get("total_images") or 0)
    if total == 0:
        return 100
    alt_score = analysis["images_with_alt"] / total * 100
    format_score = analysis["webp_images"] / total * 100
    size_score = max(0.0, 100 - analysis["large_images"] / total * 100)
    lazy_score = analysis["lazy_loaded_images"] / total * 100
    return clamp_score(alt_score * 0.4 + format_score * 0.3 + size_score * 0.2 + lazy_score * 0.1)


class ImageAnalyzer(Analyzer):
    category = "images"

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        probe_limit: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.ANALYZER_HTTP_TIMEOUT_SECONDS
        self.probe_limit = settings.IMAGE_PROBE_LIMIT if probe_limit is None else probe_limit
        self._transport = transport

    async def _probe_all(self, client: httpx.AsyncClient, sources: List[str]) -> Dict[str, Dict[str, Any]]:
        async def _one(src: str) -> Dict[str, Any]:
            try:
                return await asyncio.wait_for(probe_image(client, src), settings.IMAGE_PROBE_TIMEOUT_SECONDS)
            except Exception as exc:
                logger.warning("Failed to analyze image %s: %s", src, exc)
                return {"url": src, "error": str(exc) or type(exc).__name__}

        results = await asyncio.gather(*(_one(src) for src in sources))
        return {result["url"]: result for result in results}

    async def analyze(self, url: str, options: AnalyzerOptions) -> Dict[str, Any]:
        logger.info("Analyzing images for %s", url)
        async with build_client(self.timeout_seconds, self._transport) as client:
            html, final_url = await asyncio.wait_for(fetch_html(client, url), self.timeout_seconds * 2)
            images = extract_images(html, final_url)
            sources: List[str] = []
            for image in images:
                src = image["src"]
                if src.startswith(("http://", "https://")) and src not in sources:
                    sources.append(src)
            probes = await self._probe_all(client, sources[: max(self.probe_limit, 0)])
        return summarize_images(images, probes)

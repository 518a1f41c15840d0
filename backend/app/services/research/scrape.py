from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from app.schemas.research import ModuleId, ResearchInput
from app.services.cache import TTLCache

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 20


class ScrapeError(RuntimeError):
    pass


class FirecrawlClient:
    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        timeout_s: float = 12.0,
        max_chars: int = 3000,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._endpoint = (endpoint or "").strip()
        self._max_chars = max(1, int(max_chars or 3000))
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def scrape(self, url: str) -> str | None:
        if not self._api_key:
            raise ScrapeError("FIRECRAWL_API_KEY is not configured")
        target = (url or "").strip()
        if not target:
            return None

        try:
            resp = await self._client.post(
                self._endpoint,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
                json={"url": target, "formats": ["markdown"], "onlyMainContent": True, "waitFor": 1000},
            )
        except httpx.HTTPError as e:
            raise ScrapeError(f"Firecrawl request failed: {e}")

        if resp.status_code >= 400:
            raise ScrapeError(f"Firecrawl error {resp.status_code} for {target}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise ScrapeError(f"Firecrawl returned invalid JSON: {e}")

        data = payload.get("data") if isinstance(payload, dict) else None
        content = data.get("markdown") if isinstance(data, dict) else None
        if not isinstance(content, str) or len(content) <= MIN_CONTENT_CHARS:
            return None
        return content[: self._max_chars]


async def scrape_urls(
    client: FirecrawlClient,
    urls: list[str],
    cache: TTLCache | None = None,
) -> dict[str, str]:
    async def one(url: str) -> tuple[str, str | None]:
        key = f"scrape:{url}"
        if cache is not None:
            hit = cache.get(key)
            if hit is not None:
                return (url, hit)
        try:
            content = await client.scrape(url)
        except ScrapeError as e:
            logger.info("scrape.failed url=%s error=%s", url, e)
            return (url, None)
        if content and cache is not None:
            cache.set(key, content)
        return (url, content)

    results = await asyncio.gather(*(one(u) for u in urls))
    pages: dict[str, str] = {}
    for url, content in results:
        if content:
            pages[url] = content
    logger.info("scrape.batch_done urls=%s pages=%s", len(urls), len(pages))
    return pages


def _slug(company_name: str) -> str:
    s = re.sub(r"\s+", "-", (company_name or "").strip().lower())
    return re.sub(r"[^a-z0-9-]", "", s)


def _root_name(domain: str) -> str:
    d = (domain or "").strip().lower()
    d = d[4:] if d.startswith("www.") else d
    return d.split(".")[0]


def get_scrape_targets(module_id: ModuleId, input: ResearchInput) -> list[str]:
    domains = input.all_domains()
    if not domains:
        return []
    primary = domains[0]
    extra = domains[1:3]
    slug = _slug(input.company_name)
    root = _root_name(primary)

    if module_id == ModuleId.PAYMENT_METHODS:
        paths = ["help", "support", "payment-methods", "faq", "help/payment", "how-to-pay"]
        return [f"https://{primary}/{p}" for p in paths]

    if module_id == ModuleId.PSP_DETECTION:
        return [
            f"https://spreedly.com/customers/{slug}",
            f"https://nuvei.com/posts/{slug}",
            f"https://dlocal.com/resources/{slug}",
            f"https://www.adyen.com/customers/{slug}",
        ]

    if module_id == ModuleId.LOCAL_ENTITY:
        out = [f"https://{primary}/{p}" for p in ["legal", "terms", "terms-and-conditions", "privacy"]]
        out.extend(f"https://{d}/legal" for d in extra)
        out.extend(f"https://{d}/terms" for d in extra)
        return out

    if module_id == ModuleId.COMPLAINTS:
        return [
            f"https://www.trustpilot.com/review/{root}.com",
            f"https://www.trustpilot.com/review/{primary}",
            f"https://{root}.pissedconsumer.com/review.html",
        ]

    if module_id == ModuleId.COMPANY_OVERVIEW:
        return [f"https://{primary}/{p}" for p in ["about", "about-us", "company", "press"]]

    if module_id in (ModuleId.EXPANSION, ModuleId.NEWS):
        return [f"https://{primary}/{p}" for p in ["blog", "newsroom", "press", "news", "press-releases"]]

    if module_id == ModuleId.TOP_MARKETS:
        return [f"https://{primary}/{p}" for p in ["careers", "jobs", "about"]]

    return []


def format_scraped_context(pages: dict[str, Any], company_name: str) -> str:
    entries = [(url, content) for url, content in (pages or {}).items() if content]
    if not entries:
        return ""
    sections = "\n\n".join(f"--- Scraped from: {url} ---\n{content}" for url, content in entries)
    return (
        "SCRAPED WEB CONTENT (direct from actual pages, treat as PRIMARY SOURCE, more reliable than search results):\n"
        f"The following content was scraped in real-time from {company_name}'s web pages and from relevant "
        "third-party sites (PSP case studies, review platforms). Use this data first when filling in your JSON "
        "response, then use the search evidence to fill any remaining gaps.\n\n"
        f"{sections}\n\n--- END OF SCRAPED CONTENT ---"
    )

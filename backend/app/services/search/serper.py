from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class SerperError(RuntimeError):
    pass


class _SerperRateLimiter:
    def __init__(self, qps: int) -> None:
        self._qps = max(1, int(qps))
        self._lock = asyncio.Lock()
        self._events: list[float] = []

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._events = [t for t in self._events if t >= now - 1.0]
            if len(self._events) >= self._qps:
                sleep_for = (self._events[0] + 1.0) - now
                if sleep_for > 0:
                    await asyncio.sleep(sleep_for)
                now = time.monotonic()
                self._events = [t for t in self._events if t >= now - 1.0]
            self._events.append(time.monotonic())


def trim_search_response(payload: Any, *, max_organic: int = 6, max_news: int = 4) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {"organic": []}

    out: dict[str, Any] = {}
    kg = payload.get("knowledgeGraph")
    if isinstance(kg, dict):
        out["knowledgeGraph"] = {
            k: kg.get(k) for k in ["title", "type", "website", "description", "attributes"] if k in kg
        }

    organic = payload.get("organic")
    trimmed: list[dict[str, Any]] = []
    if isinstance(organic, list):
        for item in organic[: max(1, max_organic)]:
            if isinstance(item, dict):
                trimmed.append({k: item.get(k) for k in ["title", "link", "snippet", "date"] if k in item})
    out["organic"] = trimmed

    news = payload.get("news") or payload.get("topStories")
    if max_news > 0 and isinstance(news, list):
        out["news"] = [
            {k: item.get(k) for k in ["title", "link", "snippet", "date", "source"] if k in item}
            for item in news[:max_news]
            if isinstance(item, dict)
        ]
    return out


class SerperClient:
    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        gl: str,
        hl: str,
        num: int,
        qps: int,
        timeout_s: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._endpoint = (endpoint or "").strip()
        self._gl = (gl or "").strip()
        self._hl = (hl or "").strip()
        self._num = max(1, min(int(num or 10), 100))
        self._limiter = _SerperRateLimiter(qps=qps)
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, q: str, *, num: int | None = None) -> dict[str, Any]:
        if not self._api_key:
            raise SerperError("SERPER_API_KEY is not configured")
        query = (q or "").strip()
        if not query:
            return {"organic": []}

        payload: dict[str, Any] = {
            "q": query,
            "gl": self._gl or "us",
            "hl": self._hl or "en",
            "num": max(1, min(int(num or self._num), 100)),
        }

        await self._limiter.acquire()

        try:
            resp = await self._client.post(
                self._endpoint,
                headers={"X-API-KEY": self._api_key, "Content-Type": "application/json"},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise SerperError(f"Serper request failed: {e}")

        if resp.status_code >= 400:
            raise SerperError(f"Serper error {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise SerperError(f"Serper returned invalid JSON: {e}")

        return trim_search_response(data)

    async def search_many(self, queries: list[str]) -> list[dict[str, Any]]:
        evidence: list[dict[str, Any]] = []
        for q in queries:
            try:
                result = await self.search(q)
            except SerperError as e:
                logger.info("serper.query_failed q=%s error=%s", q, e)
                result = {"error": str(e)}
            evidence.append({"q": q, "result": result})
        logger.info("serper.batch_done queries=%s", len(evidence))
        return evidence


def format_search_evidence(evidence: list[dict[str, Any]]) -> str:
    usable = [e for e in evidence or [] if isinstance(e, dict) and "error" not in (e.get("result") or {})]
    if not usable:
        return ""
    blob = json.dumps(usable, ensure_ascii=False, indent=2)
    return (
        "WEB SEARCH EVIDENCE (Google results for this research task; cite only what appears here or in "
        f"the scraped content):\n{blob}\n--- END OF SEARCH EVIDENCE ---"
    )

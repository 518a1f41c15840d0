from __future__ import annotations

import logging
from typing import Any

from app.schemas.research import (
    DomainsResponse,
    ModuleId,
    ModuleResponse,
    ModuleResult,
    ModuleStatus,
    ResearchInput,
    ResearchReport,
    ScoreCriterion,
    SynthesisResponse,
)
from app.services.cache import TTLCache, stable_json_dumps
from app.services.llm.client import LLMDisabledError
from app.services.llm.extraction import AsyncRecoverFn, ExtractionResult, Markers, extract_async
from app.services.llm.recovery import CompletionClient
from app.services.research.modules import (
    MODULE_ORDER,
    MODULE_TITLES,
    get_domains_prompt,
    get_module_prompt,
    get_search_queries,
    get_structure_prompt,
    get_synthesis_prompt,
)
from app.services.research.scrape import FirecrawlClient, format_scraped_context, get_scrape_targets, scrape_urls
from app.services.search.serper import SerperClient, format_search_evidence

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 300


def _log_outcome(kind: str, label: str, result: ExtractionResult, raw_text: str, truncated: bool) -> None:
    if truncated:
        logger.warning("%s.truncated module=%s chars=%s", kind, label, len(raw_text))
    if result.succeeded:
        logger.info("%s.parsed module=%s strategy=%s keys=%s", kind, label, result.strategy, len(result.data))
    else:
        logger.warning("%s.parse_failed module=%s preview=%r", kind, label, raw_text[:PREVIEW_CHARS])


def _coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _coerce_breakdown(items: Any) -> list[ScoreCriterion]:
    out: list[ScoreCriterion] = []
    if not isinstance(items, list):
        return out
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        out.append(
            ScoreCriterion(
                name=name,
                present=bool(item.get("present")),
                impact=_coerce_float(item.get("impact")),
                description=str(item.get("description") or ""),
            )
        )
    return out


def clean_domains(candidates: Any, exclude: str) -> list[str]:
    if not isinstance(candidates, list):
        return []
    exclude_norm = (exclude or "").strip().lower()
    out: list[str] = []
    for d in candidates:
        if not isinstance(d, str):
            continue
        s = d.strip()
        if not s or " " in s or s.lower() == exclude_norm or s in out:
            continue
        out.append(s)
    return out


class ResearchService:
    def __init__(
        self,
        llm: CompletionClient,
        *,
        recover: AsyncRecoverFn | None = None,
        serper: SerperClient | None = None,
        scraper: FirecrawlClient | None = None,
        scrape_cache: TTLCache | None = None,
        markers: Markers | None = None,
        mode: str = "single",
        max_tokens: int = 4000,
        synthesis_max_tokens: int = 3000,
        structure_model: str | None = None,
        queries_per_module: int = 3,
    ) -> None:
        self._llm = llm
        self._recover = recover
        self._serper = serper
        self._scraper = scraper
        self._scrape_cache = scrape_cache
        self._markers = markers
        self._mode = mode
        self._max_tokens = max_tokens
        self._synthesis_max_tokens = synthesis_max_tokens
        self._structure_model = structure_model
        self._queries_per_module = queries_per_module

    @property
    def mode(self) -> str:
        return self._mode

    async def _gather_context(self, module_id: ModuleId, input: ResearchInput) -> list[str]:
        blocks: list[str] = []
        if self._scraper is not None:
            targets = get_scrape_targets(module_id, input)
            pages = await scrape_urls(self._scraper, targets, cache=self._scrape_cache) if targets else {}
            scraped = format_scraped_context(pages, input.company_name)
            if scraped:
                blocks.append(scraped)
        if self._serper is not None and self._queries_per_module > 0:
            queries = get_search_queries(module_id, input, limit=self._queries_per_module)
            evidence = format_search_evidence(await self._serper.search_many(queries))
            if evidence:
                blocks.append(evidence)
        return blocks

    async def run_module(self, module_id: ModuleId, input: ResearchInput) -> ModuleResponse:
        two_pass = self._mode == "two_pass"
        markers = None if two_pass else self._markers
        prompt = get_module_prompt(module_id, input, markers=markers)
        context = await self._gather_context(module_id, input)
        if context:
            prompt = prompt + "\n\n" + "\n\n".join(context)

        completion = await self._llm.complete(
            prompt,
            purpose=f"module.{module_id.value}",
            max_tokens=self._max_tokens,
        )
        raw_text = completion.text or ""
        truncated = completion.truncated

        if two_pass and raw_text.strip():
            if truncated:
                logger.warning("module.truncated module=%s pass=research chars=%s", module_id.value, len(raw_text))
            structured = await self._llm.complete(
                get_structure_prompt(module_id, input, raw_text),
                purpose=f"module.{module_id.value}.structure",
                json_mode=True,
                model=self._structure_model,
                max_tokens=self._max_tokens,
            )
            result = await extract_async(structured.text or "", self._recover)
            if not result.succeeded:
                result = await extract_async(raw_text, self._recover)
            truncated = truncated or structured.truncated
        else:
            result = await extract_async(raw_text, self._recover, markers=markers)

        _log_outcome("module", module_id.value, result, raw_text, truncated)
        return ModuleResponse(
            module_id=module_id,
            title=MODULE_TITLES[module_id],
            data=result.data,
            raw_text=raw_text,
            succeeded=result.succeeded,
            truncated=truncated,
            strategy=result.strategy,
        )

    async def synthesize(self, input: ResearchInput, modules: list[ModuleResult]) -> SynthesisResponse:
        findings = [{"module": m.title, "findings": m.data} for m in modules]
        prompt = get_synthesis_prompt(input, stable_json_dumps(findings, indent=2), markers=self._markers)
        completion = await self._llm.complete(
            prompt,
            purpose="synthesis",
            max_tokens=self._synthesis_max_tokens,
        )
        raw_text = completion.text or ""
        result = await extract_async(raw_text, self._recover, markers=self._markers)
        _log_outcome("synthesis", input.company_name, result, raw_text, completion.truncated)
        return SynthesisResponse(
            data=result.data,
            raw_text=raw_text,
            succeeded=result.succeeded,
            truncated=completion.truncated,
        )

    async def discover_domains(self, company_name: str, domain: str) -> DomainsResponse:
        completion = await self._llm.complete(
            get_domains_prompt(company_name, domain),
            purpose="domains",
            max_tokens=1000,
        )
        raw_text = completion.text or ""
        result = await extract_async(raw_text, self._recover)
        domains = clean_domains(result.data.get("domains"), domain) if result.succeeded else []
        logger.info("domains.done company=%s found=%s parsed=%s", company_name, len(domains), result.succeeded)
        return DomainsResponse(domains=domains, raw_text=raw_text)

    async def build_report(self, input: ResearchInput) -> ResearchReport:
        modules: list[ModuleResult] = []
        for module_id in MODULE_ORDER:
            title = MODULE_TITLES[module_id]
            try:
                resp = await self.run_module(module_id, input)
            except LLMDisabledError:
                raise
            except Exception as e:
                logger.exception("report.module_failed module=%s", module_id.value)
                modules.append(ModuleResult(module_id=module_id, title=title, status=ModuleStatus.ERROR, error=str(e)))
                continue
            modules.append(
                ModuleResult(
                    module_id=module_id,
                    title=title,
                    status=ModuleStatus.DONE,
                    data=resp.data,
                    raw_text=resp.raw_text,
                    succeeded=resp.succeeded,
                )
            )

        report = ResearchReport(input=input, modules=modules)
        try:
            synthesis = await self.synthesize(input, modules)
        except LLMDisabledError:
            raise
        except Exception:
            logger.exception("report.synthesis_failed company=%s", input.company_name)
            return report

        data = synthesis.data if synthesis.succeeded else {}
        talking_points = data.get("talking_points")
        report.opportunity_score = _coerce_float(data.get("opportunity_score"))
        report.score_breakdown = _coerce_breakdown(data.get("score_breakdown"))
        report.executive_summary = str(data.get("executive_summary") or "")
        report.talking_points = [str(t) for t in talking_points if str(t).strip()] if isinstance(talking_points, list) else []
        report.synthesis_raw_text = synthesis.raw_text
        report.synthesis_succeeded = synthesis.succeeded
        return report

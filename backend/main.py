import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import research
from app.core.auth import enforce_research_auth_for_request
from app.core.settings import Settings, settings as default_settings
from app.services.cache import TTLCache
from app.services.llm.client import LLMDisabledError, build_llm_client
from app.services.llm.recovery import LLMJsonRecovery
from app.services.research.scrape import FirecrawlClient
from app.services.research.service import ResearchService
from app.services.search.serper import SerperClient

logger = logging.getLogger(__name__)


def build_research_service(settings: Settings) -> tuple[ResearchService, list]:
    llm = build_llm_client(settings)
    closeables: list = [llm]

    serper = None
    if settings.serper_api_key:
        serper = SerperClient(
            api_key=settings.serper_api_key,
            endpoint=settings.serper_endpoint,
            gl=settings.serper_gl,
            hl=settings.serper_hl,
            num=settings.serper_num,
            qps=settings.serper_qps,
        )
        closeables.append(serper)

    scraper = None
    if settings.firecrawl_api_key:
        scraper = FirecrawlClient(
            api_key=settings.firecrawl_api_key,
            endpoint=settings.firecrawl_endpoint,
            timeout_s=settings.firecrawl_timeout_s,
            max_chars=settings.firecrawl_max_chars,
        )
        closeables.append(scraper)

    service = ResearchService(
        llm,
        recover=LLMJsonRecovery(
            llm,
            model=settings.llm_recovery_model,
            timeout_s=settings.llm_recovery_timeout_s,
            max_tokens=settings.llm_max_tokens,
        ),
        serper=serper,
        scraper=scraper,
        scrape_cache=TTLCache(max_items=settings.scrape_cache_max_items, ttl_s=settings.scrape_cache_ttl_s),
        markers=settings.extraction_markers(),
        mode=settings.research_mode,
        max_tokens=settings.llm_max_tokens,
        synthesis_max_tokens=settings.llm_synthesis_max_tokens,
        structure_model=settings.llm_structure_model,
        queries_per_module=settings.serper_queries_per_module,
    )
    return service, closeables


def create_app(settings: Settings = default_settings, service: ResearchService | None = None) -> FastAPI:
    app = FastAPI(title="Account Research Engine API")
    app.state.settings = settings
    app.state.research_service = service
    app.state.llm_disabled_reason = None
    app.state.closeables = []

    origins = settings.resolved_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    def startup() -> None:
        if app.state.research_service is not None:
            return
        try:
            built, closeables = build_research_service(settings)
        except LLMDisabledError as e:
            logger.warning("startup.llm_disabled reason=%s", e)
            app.state.llm_disabled_reason = str(e)
            return
        app.state.research_service = built
        app.state.closeables = closeables
        logger.info(
            "startup.ready mode=%s markers=%s serper=%s firecrawl=%s",
            built.mode,
            bool(settings.extraction_markers()),
            bool(settings.serper_api_key),
            bool(settings.firecrawl_api_key),
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        for c in app.state.closeables:
            await c.aclose()
        app.state.closeables = []

    @app.middleware("http")
    async def research_auth_middleware(request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        try:
            enforce_research_auth_for_request(request, settings)
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=exc.headers,
            )

        return await call_next(request)

    app.include_router(research.router, prefix="/api", tags=["research"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "llm": app.state.research_service is not None}

    return app


app = create_app()

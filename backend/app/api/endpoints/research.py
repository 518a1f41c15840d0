import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.core import auth
from app.core.settings import Settings
from app.schemas.research import (
    AuthRequest,
    DomainsRequest,
    DomainsResponse,
    ModuleRequest,
    ModuleResponse,
    ReportRequest,
    ResearchReport,
    SynthesisRequest,
    SynthesisResponse,
)
from app.services.llm.client import LLMDisabledError
from app.services.research.service import ResearchService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_research_service(request: Request) -> ResearchService:
    service = getattr(request.app.state, "research_service", None)
    if service is None:
        detail = getattr(request.app.state, "llm_disabled_reason", None) or "LLM is not configured"
        raise HTTPException(status_code=503, detail=detail)
    return service


def _server_error(where: str, e: Exception) -> HTTPException:
    if isinstance(e, LLMDisabledError):
        return HTTPException(status_code=503, detail=str(e))
    logger.exception("research.%s_failed", where)
    return HTTPException(status_code=500, detail=f"{where} failed: {e}")


@router.post("/research/auth")
def research_login(body: AuthRequest, response: Response, settings: Settings = Depends(get_settings)):
    auth.login(response, body.password, settings)
    return {"success": True}


@router.delete("/research/auth")
def research_logout(response: Response, settings: Settings = Depends(get_settings)):
    auth.logout(response, settings)
    return {"success": True}


@router.post("/research/module", response_model=ModuleResponse)
async def run_module(body: ModuleRequest, service: ResearchService = Depends(get_research_service)):
    try:
        return await service.run_module(body.module_id, body.input)
    except Exception as e:
        raise _server_error("module", e)


@router.post("/research/synthesize", response_model=SynthesisResponse)
async def synthesize(body: SynthesisRequest, service: ResearchService = Depends(get_research_service)):
    try:
        return await service.synthesize(body.input, body.modules)
    except Exception as e:
        raise _server_error("synthesis", e)


@router.post("/research/domains", response_model=DomainsResponse)
async def discover_domains(body: DomainsRequest, service: ResearchService = Depends(get_research_service)):
    try:
        return await service.discover_domains(body.company_name, body.domain)
    except Exception as e:
        raise _server_error("domains", e)


@router.post("/research/report", response_model=ResearchReport)
async def build_report(body: ReportRequest, service: ResearchService = Depends(get_research_service)):
    try:
        return await service.build_report(body.input)
    except Exception as e:
        raise _server_error("report", e)

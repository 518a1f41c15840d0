from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Industry(str, Enum):
    RETAIL_ECOMMERCE = "Retail/Ecommerce"
    TRAVEL_OTAS = "Travel/OTAs"
    GAMING_GAMBLING = "Gaming/Gambling"
    SAAS = "SaaS"
    TICKETING = "Ticketing"
    FOOD_DRINKS = "Food & Drinks"
    HEALTHCARE = "Healthcare"
    HOSPITALITY_HOTELS = "Hospitality/Hotels"
    COSMETICS = "Cosmetics"
    FINTECH = "Fintech"
    MARKETPLACES = "Marketplaces"
    SOCIAL_MEDIA = "Social Media"
    STREAMING = "Streaming"
    OTHER = "Other"


class Region(str, Enum):
    US = "US"
    LATAM = "LATAM"
    APAC = "APAC"
    EMEA = "EMEA"
    GLOBAL = "Global"


class ModuleId(str, Enum):
    COMPANY_OVERVIEW = "company_overview"
    TOP_MARKETS = "top_markets"
    LOCAL_ENTITY = "local_entity"
    PAYMENT_METHODS = "payment_methods"
    PSP_DETECTION = "psp_detection"
    COMPLAINTS = "complaints"
    EXPANSION = "expansion"
    NEWS = "news"


class ModuleStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"


class _CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class ResearchInput(_CamelModel):
    company_name: str = Field(alias="companyName", min_length=1)
    domain: str = Field(min_length=1)
    region: Region = Region.GLOBAL
    industry: Industry = Industry.OTHER
    sdr_name: str = Field(default="", alias="sdrName")
    additional_domains: List[str] = Field(default_factory=list, alias="additionalDomains")

    def all_domains(self) -> List[str]:
        out: List[str] = []
        for d in [self.domain, *self.additional_domains]:
            d = (d or "").strip()
            if d and d not in out:
                out.append(d)
        return out


class ModuleRequest(_CamelModel):
    module_id: ModuleId = Field(alias="moduleId")
    input: ResearchInput


class ModuleResponse(_CamelModel):
    module_id: ModuleId = Field(alias="moduleId")
    title: str
    data: Dict[str, Any]
    raw_text: str = Field(alias="rawText")
    succeeded: bool
    truncated: bool = False
    strategy: Optional[str] = None


class ModuleResult(_CamelModel):
    module_id: ModuleId = Field(alias="moduleId")
    title: str
    status: ModuleStatus = ModuleStatus.DONE
    data: Dict[str, Any] = Field(default_factory=dict)
    raw_text: str = Field(default="", alias="rawText")
    succeeded: bool = False
    error: Optional[str] = None


class SynthesisRequest(_CamelModel):
    input: ResearchInput
    modules: List[ModuleResult]


class SynthesisResponse(_CamelModel):
    data: Dict[str, Any]
    raw_text: str = Field(alias="rawText")
    succeeded: bool
    truncated: bool = False


class DomainsRequest(_CamelModel):
    company_name: str = Field(alias="companyName", min_length=1)
    domain: str = Field(min_length=1)


class DomainsResponse(_CamelModel):
    domains: List[str]
    raw_text: str = Field(alias="rawText")


class ScoreCriterion(_CamelModel):
    name: str
    present: bool = False
    impact: float = 0.0
    description: str = ""


class ReportRequest(_CamelModel):
    input: ResearchInput


class ResearchReport(_CamelModel):
    input: ResearchInput
    opportunity_score: float = Field(default=0, alias="opportunityScore")
    score_breakdown: List[ScoreCriterion] = Field(default_factory=list, alias="scoreBreakdown")
    executive_summary: str = Field(default="", alias="executiveSummary")
    talking_points: List[str] = Field(default_factory=list, alias="talkingPoints")
    modules: List[ModuleResult] = Field(default_factory=list)
    synthesis_raw_text: str = Field(default="", alias="synthesisRawText")
    synthesis_succeeded: bool = Field(default=False, alias="synthesisSucceeded")


class AuthRequest(BaseModel):
    password: str = ""

import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


RESEARCH_MODES = {"single", "two_pass"}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.research_password = _getenv("RESEARCH_PASSWORD")
        self.research_auth_cookie = _getenv("RESEARCH_AUTH_COOKIE", "research_auth") or "research_auth"
        self.research_auth_max_age_s = _getenv_int("RESEARCH_AUTH_MAX_AGE_S", 60 * 60 * 24 * 30)

        self.openrouter_api_key = _getenv("OPENROUTER_API_KEY")
        self.openrouter_model = _getenv("OPENROUTER_MODEL")
        self.openrouter_site_url = _getenv("OPENROUTER_SITE_URL")
        self.openrouter_app_name = _getenv("OPENROUTER_APP_NAME")

        self.llm_api_key = _getenv("LLM_API_KEY") or self.openrouter_api_key
        self.llm_base_url = _getenv("LLM_BASE_URL") or ("https://openrouter.ai/api/v1" if self.openrouter_api_key else None)
        self.llm_model = _getenv("LLM_MODEL") or self.openrouter_model
        self.llm_temperature = _getenv_float("LLM_TEMPERATURE", 0.2)
        self.llm_max_tokens = _getenv_int("LLM_MAX_TOKENS", 4000)
        self.llm_synthesis_max_tokens = _getenv_int("LLM_SYNTHESIS_MAX_TOKENS", 3000)
        self.llm_recovery_model = _getenv("LLM_RECOVERY_MODEL") or self.llm_model
        self.llm_recovery_timeout_s = _getenv_float("LLM_RECOVERY_TIMEOUT_S", 30.0)
        self.llm_structure_model = _getenv("LLM_STRUCTURE_MODEL") or self.llm_model

        mode = (_getenv("RESEARCH_MODE", "single") or "single").lower()
        self.research_mode = mode if mode in RESEARCH_MODES else "single"

        self.extraction_json_start = _getenv("EXTRACTION_JSON_START", "<<<JSON_START>>>") or "<<<JSON_START>>>"
        self.extraction_json_end = _getenv("EXTRACTION_JSON_END", "<<<JSON_END>>>") or "<<<JSON_END>>>"
        self.extraction_use_markers = _getenv_bool("EXTRACTION_USE_MARKERS", default=True)

        self.serper_api_key = _getenv("SERPER_API_KEY")
        self.serper_endpoint = _getenv("SERPER_ENDPOINT", "https://google.serper.dev/search") or "https://google.serper.dev/search"
        self.serper_gl = _getenv("SERPER_GL", "us") or "us"
        self.serper_hl = _getenv("SERPER_HL", "en") or "en"
        self.serper_num = _getenv_int("SERPER_NUM", 10)
        self.serper_qps = _getenv_int("SERPER_QPS", 50)
        self.serper_queries_per_module = max(0, _getenv_int("SERPER_QUERIES_PER_MODULE", 3))

        self.firecrawl_api_key = _getenv("FIRECRAWL_API_KEY")
        self.firecrawl_endpoint = _getenv("FIRECRAWL_ENDPOINT", "https://api.firecrawl.dev/v1/scrape") or "https://api.firecrawl.dev/v1/scrape"
        self.firecrawl_timeout_s = _getenv_float("FIRECRAWL_TIMEOUT_S", 12.0)
        self.firecrawl_max_chars = _getenv_int("FIRECRAWL_MAX_CHARS", 3000)

        self.scrape_cache_ttl_s = _getenv_int("SCRAPE_CACHE_TTL_S", 3600)
        self.scrape_cache_max_items = _getenv_int("SCRAPE_CACHE_MAX_ITEMS", 2000)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.research_password)

    def extraction_markers(self) -> tuple[str, str] | None:
        if not self.extraction_use_markers:
            return None
        return (self.extraction_json_start, self.extraction_json_end)

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()

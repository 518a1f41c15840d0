import asyncio
import json
import logging
import os
import random
import weakref
from dataclasses import dataclass, field
from typing import Any

from openai import APIStatusError, AsyncOpenAI

from app.core.settings import Settings

logger = logging.getLogger(__name__)


class LLMDisabledError(RuntimeError):
    pass


DEFAULT_LLM_CONCURRENCY = 50
_LLM_SEMAPHORES: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()

try:
    from openai import APIConnectionError, APITimeoutError, RateLimitError
except Exception:  # type: ignore[misc]
    APIConnectionError = Exception  # type: ignore[assignment]
    APITimeoutError = Exception  # type: ignore[assignment]
    RateLimitError = Exception  # type: ignore[assignment]


def _get_llm_semaphore() -> asyncio.Semaphore:
    loop = asyncio.get_running_loop()
    sem = _LLM_SEMAPHORES.get(loop)
    if sem is None:
        limit = int(os.getenv("LLM_CONCURRENCY", str(DEFAULT_LLM_CONCURRENCY)) or str(DEFAULT_LLM_CONCURRENCY))
        limit = max(1, limit)
        sem = asyncio.Semaphore(limit)
        _LLM_SEMAPHORES[loop] = sem
    return sem


def _estimate_tokens_from_text(text: str) -> int:
    s = text or ""
    if not s:
        return 0
    return max(1, int(len(s) / 4))


def _estimate_tokens_from_messages(messages: list[dict[str, Any]]) -> int:
    total = 0
    for m in messages or []:
        c = m.get("content")
        if isinstance(c, str):
            total += _estimate_tokens_from_text(c)
        else:
            try:
                total += _estimate_tokens_from_text(json.dumps(c))
            except (TypeError, ValueError):
                continue
    return total


def _message_text(message: Any) -> str:
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            text = block.get("text") if isinstance(block, dict) else getattr(block, "text", None)
            if isinstance(text, str):
                parts.append(text)
        return "".join(parts)
    return ""


@dataclass
class Completion:
    text: str
    truncated: bool = False
    finish_reason: str | None = None
    usage: dict[str, int | None] = field(default_factory=dict)


class OpenAICompatibleLLM:
    def __init__(
        self,
        api_key: str,
        base_url: str | None,
        model: str,
        temperature: float,
        extra_headers: dict[str, str] | None = None,
        http_client: Any | None = None,
    ) -> None:
        import httpx

        kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if extra_headers:
            kwargs["default_headers"] = extra_headers
        kwargs["http_client"] = http_client or httpx.AsyncClient(
            limits=httpx.Limits(max_connections=200, max_keepalive_connections=50),
            timeout=httpx.Timeout(120.0),
        )
        self._client = AsyncOpenAI(**kwargs)
        self._model = model
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.close()

    async def _chat_completion(
        self,
        *,
        messages: list[dict[str, Any]],
        purpose: str = "",
        json_mode: bool = False,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        sem = _get_llm_semaphore()
        async with sem:
            max_retries = max(1, int(os.getenv("LLM_MAX_RETRIES", "4") or "4"))
            base_sleep_s = float(os.getenv("LLM_RETRY_BASE_S", "0.7") or "0.7")
            use_response_format = bool(int(os.getenv("LLM_USE_JSON_RESPONSE_FORMAT", "1") or "1"))
            use_model = model or self._model

            def build_kwargs(*, include_response_format: bool) -> dict[str, Any]:
                kwargs: dict[str, Any] = {
                    "model": use_model,
                    "messages": messages,
                    "temperature": self._temperature,
                }
                if max_tokens:
                    kwargs["max_tokens"] = int(max_tokens)
                if json_mode and include_response_format and use_response_format:
                    kwargs["response_format"] = {"type": "json_object"}
                return kwargs

            last_err: Exception | None = None
            include_response_format = True

            for attempt in range(1, max_retries + 1):
                try:
                    response = await self._client.chat.completions.create(
                        **build_kwargs(include_response_format=include_response_format)
                    )
                    usage = getattr(response, "usage", None)
                    logger.info(
                        "llm.request_done model=%s purpose=%s messages=%s est_prompt_tokens=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
                        use_model,
                        purpose or "",
                        len(messages or []),
                        _estimate_tokens_from_messages(messages),
                        getattr(usage, "prompt_tokens", None),
                        getattr(usage, "completion_tokens", None),
                        getattr(usage, "total_tokens", None),
                    )
                    return response
                except APIStatusError as e:
                    status = getattr(e, "status_code", None)
                    if status == 402:
                        raise LLMDisabledError("LLM provider: insufficient credits.")
                    msg = str(e).lower()
                    if status == 400 and include_response_format and "response_format" in msg:
                        include_response_format = False
                        last_err = e
                        continue
                    if status in {408, 409, 425, 429, 500, 502, 503, 504} and attempt < max_retries:
                        sleep_s = base_sleep_s * (2 ** (attempt - 1)) + random.random() * 0.25
                        await asyncio.sleep(min(15.0, sleep_s))
                        last_err = e
                        continue
                    raise
                except (APIConnectionError, APITimeoutError, RateLimitError) as e:  # type: ignore[misc]
                    if attempt < max_retries:
                        sleep_s = base_sleep_s * (2 ** (attempt - 1)) + random.random() * 0.25
                        await asyncio.sleep(min(15.0, sleep_s))
                        last_err = e  # type: ignore[assignment]
                        continue
                    raise

            if last_err is not None:
                raise last_err
            raise RuntimeError("LLM call failed")

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        purpose: str = "",
        json_mode: bool = False,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        response = await self._chat_completion(
            messages=messages,
            purpose=purpose,
            json_mode=json_mode,
            model=model,
            max_tokens=max_tokens,
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return Completion(text="")
        choice = choices[0]
        finish_reason = getattr(choice, "finish_reason", None)
        usage = getattr(response, "usage", None)
        return Completion(
            text=_message_text(getattr(choice, "message", None)),
            truncated=(finish_reason == "length"),
            finish_reason=finish_reason,
            usage={
                "prompt_tokens": getattr(usage, "prompt_tokens", None),
                "completion_tokens": getattr(usage, "completion_tokens", None),
                "total_tokens": getattr(usage, "total_tokens", None),
            },
        )


def build_llm_client(settings: Settings) -> OpenAICompatibleLLM:
    if settings.llm_api_key is None:
        raise LLMDisabledError("LLM is not configured")

    base_url = settings.llm_base_url
    model = settings.llm_model
    if not model:
        raise LLMDisabledError(
            "LLM model is not configured. Set the LLM_MODEL (or OPENROUTER_MODEL) environment variable."
        )
    extra_headers: dict[str, str] = {}
    if base_url and "openrouter.ai" in base_url:
        if settings.openrouter_site_url:
            extra_headers["HTTP-Referer"] = settings.openrouter_site_url
        if settings.openrouter_app_name:
            extra_headers["X-Title"] = settings.openrouter_app_name
    return OpenAICompatibleLLM(
        api_key=settings.llm_api_key,
        base_url=base_url,
        model=model,
        temperature=settings.llm_temperature,
        extra_headers=(extra_headers or None),
    )

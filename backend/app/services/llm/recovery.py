from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from app.services.llm.client import Completion

logger = logging.getLogger(__name__)


RECOVERY_SYSTEM_PROMPT = (
    "You convert text into JSON. The user message contains research output that should include "
    "a single JSON object, possibly buried in commentary, markdown, or broken syntax.\n"
    "Return ONLY that JSON object: no markdown fences, no explanation, no text before or after it.\n"
    "Keep the original keys and values. Fix syntax errors (unquoted keys, trailing commas, "
    "unescaped quotes). If the text is cut off, close any open strings, arrays and objects.\n"
    "If the text holds no recoverable data, return {}."
)


class CompletionClient(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        purpose: str = "",
        json_mode: bool = False,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion: ...


class LLMJsonRecovery:
    def __init__(
        self,
        llm: CompletionClient,
        *,
        model: str | None = None,
        timeout_s: float = 30.0,
        max_tokens: int | None = 4000,
    ) -> None:
        self._llm = llm
        self._model = model
        self._timeout_s = max(1.0, float(timeout_s or 1.0))
        self._max_tokens = max_tokens

    async def __call__(self, text: str) -> str | None:
        if not (text or "").strip():
            return None
        completion = await asyncio.wait_for(
            self._llm.complete(
                text,
                system=RECOVERY_SYSTEM_PROMPT,
                purpose="extraction.recover",
                json_mode=True,
                model=self._model,
                max_tokens=self._max_tokens,
            ),
            timeout=self._timeout_s,
        )
        out = (completion.text or "").strip()
        if not out:
            logger.info("extraction.recover_empty chars=%s", len(text))
            return None
        if completion.truncated:
            logger.warning("extraction.recover_truncated chars=%s", len(out))
        return out

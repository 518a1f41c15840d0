from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


Markers = tuple[str, str]
Strategy = Callable[[str], Optional[dict[str, Any]]]
RecoverFn = Callable[[str], Optional[str]]
AsyncRecoverFn = Callable[[str], Awaitable[Optional[str]]]

_FENCE_RE = re.compile(r"```[ \t]*[A-Za-z0-9_+.-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ExtractionResult:
    data: dict[str, Any]
    succeeded: bool
    strategy: str | None


def fallback_record(raw_text: str) -> dict[str, Any]:
    return {"raw_text": raw_text, "parse_error": True}


def _fallback(raw_text: str) -> ExtractionResult:
    return ExtractionResult(data=fallback_record(raw_text), succeeded=False, strategy=None)


def strip_trailing_commas(text: str) -> str:
    """Drop each comma that, after optional whitespace, precedes ``}`` or ``]``.

    Commas and brackets inside string literals are left alone.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i = j
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def _loads(candidate: str) -> tuple[bool, Any]:
    try:
        return (True, json.loads(candidate))
    except (ValueError, RecursionError):
        return (False, None)


def parse_json_object(candidate: str | None) -> dict[str, Any] | None:
    """Strict parse, then one trailing-comma repair.

    Only a non-empty mapping counts as a candidate. A stray ``parse_error`` key
    is dropped so a parsed object can never look like the fallback record.
    """
    s = (candidate or "").strip()
    if not s:
        return None
    ok, payload = _loads(s)
    if not ok:
        repaired = strip_trailing_commas(s)
        if repaired == s:
            return None
        ok, payload = _loads(repaired)
        if not ok:
            return None
    if not isinstance(payload, dict):
        return None
    if "parse_error" in payload:
        payload = {k: v for k, v in payload.items() if k != "parse_error"}
    return payload or None


def find_balanced_object(text: str) -> str | None:
    """Return the span of the last top-level ``{...}`` in ``text``.

    Scans right to left from the last ``}``: each ``}`` deepens, each ``{``
    closes, and the span ends where depth returns to zero.
    """
    end = text.rfind("}")
    if end == -1:
        return None
    depth = 0
    for i in range(end, -1, -1):
        ch = text[i]
        if ch == "}":
            depth += 1
        elif ch == "{":
            depth -= 1
            if depth == 0:
                return text[i : end + 1]
    return None


def delimited_block(text: str, markers: Markers) -> str | None:
    start_marker, end_marker = markers
    if not start_marker or not end_marker:
        return None
    start = text.find(start_marker)
    if start == -1:
        return None
    start += len(start_marker)
    end = text.find(end_marker, start)
    if end == -1:
        return None
    return text[start:end]


def fenced_blocks(text: str) -> list[str]:
    return [m.group(1) for m in _FENCE_RE.finditer(text)]


def _delimited_strategy(markers: Markers) -> Strategy:
    def run(text: str) -> dict[str, Any] | None:
        return parse_json_object(delimited_block(text, markers))

    return run


def _fenced_strategy(text: str) -> dict[str, Any] | None:
    for block in fenced_blocks(text):
        payload = parse_json_object(block)
        if payload is not None:
            return payload
    return None


def _balanced_braces_strategy(text: str) -> dict[str, Any] | None:
    return parse_json_object(find_balanced_object(text))


def _whole_text_strategy(text: str) -> dict[str, Any] | None:
    return parse_json_object(text)


def build_strategies(markers: Markers | None = None) -> list[tuple[str, Strategy]]:
    chain: list[tuple[str, Strategy]] = []
    if markers is not None:
        chain.append(("delimited", _delimited_strategy(markers)))
    chain.extend(
        [
            ("fenced", _fenced_strategy),
            ("balanced_braces", _balanced_braces_strategy),
            ("whole_text", _whole_text_strategy),
        ]
    )
    return chain


def run_strategies(raw_text: str, markers: Markers | None = None) -> ExtractionResult | None:
    text = raw_text or ""
    for name, strategy in build_strategies(markers):
        payload = strategy(text)
        if payload:
            return ExtractionResult(data=payload, succeeded=True, strategy=name)
    return None


def _local_pass(raw_text: Any, markers: Markers | None) -> tuple[str, ExtractionResult | None]:
    text = raw_text if isinstance(raw_text, str) else ""
    if not text.strip():
        return text, _fallback(text)
    return text, run_strategies(text, markers)


def _from_recovered(text: str, recovered: Any) -> ExtractionResult:
    payload = parse_json_object(recovered) if isinstance(recovered, str) else None
    if not payload:
        return _fallback(text)
    return ExtractionResult(data=payload, succeeded=True, strategy="recovery")


def extract(
    raw_text: str,
    recover: RecoverFn | None = None,
    markers: Markers | None = None,
) -> ExtractionResult:
    """Turn raw model text into structured data, never raising.

    Local strategies run first; ``recover`` is called at most once, and only
    for non-empty input that no strategy could parse.
    """
    text, result = _local_pass(raw_text, markers)
    if result is not None:
        return result
    if recover is None:
        return _fallback(text)
    try:
        recovered = recover(text)
    except Exception as e:
        logger.debug("extraction.recover_failed error=%s", e)
        return _fallback(text)
    return _from_recovered(text, recovered)


async def extract_async(
    raw_text: str,
    recover: AsyncRecoverFn | None = None,
    markers: Markers | None = None,
) -> ExtractionResult:
    text, result = _local_pass(raw_text, markers)
    if result is not None:
        return result
    if recover is None:
        return _fallback(text)
    try:
        recovered = await recover(text)
    except Exception as e:
        logger.debug("extraction.recover_failed error=%s", e)
        return _fallback(text)
    return _from_recovered(text, recovered)

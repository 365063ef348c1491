"""
Best-effort advisor overlay for ranked recommendations.

The advisor (an OpenAI chat completion by default) may only prepend one key
reason to courses it was given. Ranking, scores and eligibility never change.
Any failure (missing key, API error, malformed answer, deadline) produces a
Fallback carrying the unchanged input truncated to `limit`.
"""

import json
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from typing import Callable, Union

from openai import OpenAI
from prompt_builder import SYSTEM_PROMPT, build_prompt

DEFAULT_TIMEOUT_SECONDS = 10.0
ADVISOR_REASON_PREFIX = "Advisor: "


@dataclass(frozen=True)
class Enhanced:
    recommendations: tuple


@dataclass(frozen=True)
class Fallback:
    recommendations: tuple
    reason: str


EnhancementResult = Union[Enhanced, Fallback]

# (recommendations, profile) -> {course_code: key_reason}
Advisor = Callable[[tuple, object], dict]


def _env_timeout() -> float:
    raw = os.environ.get("ENHANCER_TIMEOUT_SECONDS", "")
    try:
        value = float(raw) if raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_TIMEOUT_SECONDS


def get_openai_client(timeout: float | None = None) -> OpenAI:
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not set in environment")
    return OpenAI(api_key=api_key, timeout=timeout or _env_timeout(), max_retries=0)


def parse_advice(raw: str) -> dict[str, str]:
    """Model output -> {course_code: key_reason}. Raises ValueError when malformed."""
    raw = (raw or "").strip()
    # Strip markdown code fences if the model wraps the JSON
    if raw.startswith("```"):
        lines = raw.splitlines()
        raw = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])

    parsed_output = json.loads(raw)
    if not isinstance(parsed_output, list):
        raise ValueError("Advisor response is not a JSON array.")

    advice: dict[str, str] = {}
    for item in parsed_output:
        if not isinstance(item, dict):
            continue
        code = str(item.get("course_code", "") or "").strip()
        reason = str(item.get("key_reason", "") or "").strip()
        if code and reason:
            advice[code] = reason
    return advice


def call_openai(recommendations: tuple, profile) -> dict[str, str]:
    """Default advisor: one chat completion asking for a key reason per course."""
    client = get_openai_client()
    model = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    user_msg = build_prompt(recommendations, profile)

    response = client.chat.completions.create(
        model=model,
        max_tokens=600,
        temperature=0.2,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_msg},
        ],
    )
    return parse_advice(response.choices[0].message.content or "")


def apply_advice(recommendations: tuple, advice: dict) -> tuple:
    """Prepend the advisor's reason to courses it knows. Unknown codes are ignored."""
    out = []
    for rec in recommendations:
        reason = advice.get(rec.course_code)
        if reason:
            rec = replace(rec, reasons=(f"{ADVISOR_REASON_PREFIX}{reason}",) + tuple(rec.reasons))
        out.append(rec)
    return tuple(out)


def enhance_with_result(
    recommendations,
    profile,
    limit: int,
    advisor: Advisor | None = None,
    timeout: float | None = None,
) -> EnhancementResult:
    base = tuple(recommendations)[:max(0, int(limit))]
    if not base:
        return Fallback(base, "nothing to enhance")

    advisor = advisor or call_openai
    deadline = timeout if timeout is not None else _env_timeout()

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(advisor, base, profile)
    try:
        advice = future.result(timeout=deadline)
    except FutureTimeout:
        future.cancel()
        return _fallback(base, f"advisor timed out after {deadline:g}s")
    except Exception as exc:
        return _fallback(base, f"advisor failed: {type(exc).__name__}: {exc}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not isinstance(advice, dict):
        return _fallback(base, "advisor returned an unexpected payload")
    return Enhanced(apply_advice(base, advice))


def _fallback(base: tuple, reason: str) -> Fallback:
    print(f"[WARN] Recommendation enhancement skipped: {reason}")
    return Fallback(base, reason)


def enhance(
    recommendations,
    profile,
    limit: int,
    advisor: Advisor | None = None,
    timeout: float | None = None,
) -> list:
    """Enhanced recommendations, or the input truncated to `limit` on any failure."""
    return list(enhance_with_result(recommendations, profile, limit, advisor, timeout).recommendations)

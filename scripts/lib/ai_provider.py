"""
KPI Report Hub — AI Provider
==============================

One async entry point over Groq and Claude for the report narrative.
AI_PROVIDER picks the default backend; GROQ_MODEL / CLAUDE_MODEL override
the models. Rate-limited calls are retried with the same back-off as CRM
pagination, and every call (successful or not) lands in ai_call_logs.

Usage:
    from scripts.lib.ai_provider import ai_complete
    response = await ai_complete(
        task="report_narrative",
        system_prompt="You are a marketing analyst...",
        user_prompt="VERIFIED DATA: ...",
        account_id="3f1c...",
        json_mode=True,
    )
    print(response.content)
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Tuple

from scripts.lib.errors import (
    APIError,
    APIRateLimitError,
    APITimeoutError,
    MissingConfigurationError,
)
from scripts.lib.logger import setup_logger
from scripts.lib.pagination import call_with_backoff

logger = setup_logger("ai_provider")


@dataclass
class AIResponse:
    """Standardised response from any AI provider."""
    content: str
    provider: str          # "groq" | "claude"
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int
    truncated: bool = False


GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5-20250929")

DEFAULT_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "2048"))
DEFAULT_TEMPERATURE = 0.3
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "2"))


# ─── Groq ───────────────────────────────────────────────────

async def _call_groq(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    json_mode: bool,
) -> AIResponse:
    import groq

    api_key = os.getenv("GROQ_API_KEY")
    if not api_key:
        raise MissingConfigurationError("Groq", "GROQ_API_KEY")

    kwargs = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    client = groq.AsyncGroq(api_key=api_key)
    start = time.perf_counter()
    try:
        response = await client.chat.completions.create(**kwargs)
    except groq.RateLimitError:
        raise APIRateLimitError("groq/chat/completions")
    except groq.APITimeoutError:
        raise APITimeoutError("groq/chat/completions", client.timeout)
    except groq.APIError as e:
        raise APIError(f"Groq request failed: {e}", url="groq/chat/completions")
    latency_ms = int((time.perf_counter() - start) * 1000)

    choice = response.choices[0]
    usage = response.usage
    return AIResponse(
        content=choice.message.content or "",
        provider="groq",
        model=model,
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
        latency_ms=latency_ms,
        truncated=choice.finish_reason == "length",
    )


# ─── Claude ─────────────────────────────────────────────────

async def _call_claude(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    json_mode: bool,
) -> AIResponse:
    import anthropic

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise MissingConfigurationError("Claude", "ANTHROPIC_API_KEY")

    messages = [{"role": "user", "content": user_prompt}]
    # Reply continues the prefilled "{"
    if json_mode:
        messages.append({"role": "assistant", "content": "{"})

    client = anthropic.AsyncAnthropic(api_key=api_key)
    start = time.perf_counter()
    try:
        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=messages,
        )
    except anthropic.RateLimitError:
        raise APIRateLimitError("anthropic/messages")
    except anthropic.APITimeoutError:
        raise APITimeoutError("anthropic/messages", client.timeout)
    except anthropic.APIError as e:
        raise APIError(f"Claude request failed: {e}", url="anthropic/messages")
    latency_ms = int((time.perf_counter() - start) * 1000)

    content = "".join(block.text for block in response.content if hasattr(block, "text"))
    if json_mode:
        content = "{" + content

    return AIResponse(
        content=content,
        provider="claude",
        model=model,
        input_tokens=response.usage.input_tokens,
        output_tokens=response.usage.output_tokens,
        latency_ms=latency_ms,
        truncated=response.stop_reason == "max_tokens",
    )


Backend = Callable[..., Awaitable[AIResponse]]

PROVIDERS: Dict[str, Tuple[Backend, str]] = {
    "groq": (_call_groq, GROQ_MODEL),
    "claude": (_call_claude, CLAUDE_MODEL),
}


# ─── Entry point ────────────────────────────────────────────

async def ai_complete(
    task: str,
    system_prompt: str,
    user_prompt: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
    account_id: str | None = None,
    json_mode: bool = False,
) -> AIResponse:
    """
    Run one completion and record it in ai_call_logs.

    Raises:
        MissingConfigurationError: unknown provider or its API key unset.
        APIRateLimitError: still rate limited after AI_MAX_RETRIES retries.
        APIError: any other provider failure.
    """
    name = (provider or os.getenv("AI_PROVIDER", "groq")).lower()
    if name not in PROVIDERS:
        raise MissingConfigurationError("AI provider", f"backend '{name}'")
    backend, default_model = PROVIDERS[name]

    async def _call():
        return await backend(
            system_prompt, user_prompt,
            model=model or default_model,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=json_mode,
        )

    response = await call_with_backoff(_call, label=f"{name} {task}", max_retries=AI_MAX_RETRIES)
    if response.truncated:
        logger.warning("AI [%s] task=%s hit max_tokens=%d; reply may be cut off", name, task, max_tokens)

    await _log_ai_call(
        task=task,
        provider=response.provider,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        latency_ms=response.latency_ms,
        account_id=account_id,
    )
    logger.info(
        "AI [%s/%s] task=%s tokens=%d+%d latency=%dms",
        response.provider, response.model, task,
        response.input_tokens, response.output_tokens, response.latency_ms,
    )
    return response


# ─── Audit log ──────────────────────────────────────────────

async def _log_ai_call(
    task: str,
    provider: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    latency_ms: int,
    account_id: str | None = None,
    success: bool = True,
    error_message: str | None = None,
) -> None:
    """Insert one ai_call_logs row. A logging failure never fails the call."""
    row = {
        "task": task,
        "provider": provider,
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "latency_ms": latency_ms,
        "success": success,
        "hubspot_account_id": account_id,
        "error_message": error_message[:500] if error_message else None,
    }
    try:
        from scripts.lib.supabase_client import get_client
        get_client().table("ai_call_logs").insert(row).execute()
    except Exception as e:
        logger.warning("Failed to log AI call: %s", e)


async def log_ai_error(
    task: str,
    provider: str,
    model: str,
    error: Exception,
    account_id: str | None = None,
    latency_ms: int = 0,
) -> None:
    await _log_ai_call(
        task=task,
        provider=provider,
        model=model,
        input_tokens=0,
        output_tokens=0,
        latency_ms=latency_ms,
        account_id=account_id,
        success=False,
        error_message=str(error),
    )

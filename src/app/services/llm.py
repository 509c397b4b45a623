"""Completion provider for the chatbot, backed by a LiteLLM Router.

One router group ("chat") holds every configured deployment: the primary
model first, then the fallback. The router retries and cools down failing
deployments on its own; callers only see the group name.

Customer turns are screened for prompt-injection phrasing (English and
Portuguese) before they reach the model. System and assistant turns are
trusted and passed through untouched.
"""

from __future__ import annotations

import re
from typing import Any, AsyncGenerator, NamedTuple

import structlog
from litellm import Router

from src.app.config import Settings, get_settings

logger = structlog.get_logger(__name__)

CHAT_MODEL_GROUP = "chat"
REDACTION = "[removed]"


# ── Prompt Injection Screening ───────────────────────────────────────────────


class InjectionRule(NamedTuple):
    name: str
    pattern: re.Pattern[str]


INJECTION_RULES: tuple[InjectionRule, ...] = (
    InjectionRule(
        "instruction_override",
        re.compile(
            r"(ignore|disregard|forget|override)\s+(all\s+)?(your\s+|the\s+)?(previous\s+)?instructions"
            r"|ignor[ea]r?\s+(todas\s+)?(as\s+)?instru[cç][oõ]es(\s+anteriores)?"
            r"|esque[cç]a\s+(todas\s+)?(as\s+)?(suas\s+)?instru[cç][oõ]es",
            re.IGNORECASE,
        ),
    ),
    InjectionRule(
        "system_prompt_exfiltration",
        re.compile(
            r"(reveal|show|print|repeat|output)\s+(me\s+)?(your\s+)?(system\s+prompt|instructions)"
            r"|system\s+prompt"
            r"|what\s+are\s+your\s+instructions"
            r"|(mostre|revele|repita)\s+(o\s+)?(seu\s+)?prompt",
            re.IGNORECASE,
        ),
    ),
    InjectionRule(
        "role_hijacking",
        re.compile(
            r"you\s+are\s+now\s+"
            r"|(pretend|act)\s+(to\s+be|you\s+are|as)\s+"
            r"|from\s+now\s+on\s+you\s+are"
            r"|finja\s+(ser|que)\s+"
            r"|a\s+partir\s+de\s+agora\s+voc[eê]\s+[eé]",
            re.IGNORECASE,
        ),
    ),
    InjectionRule("control_characters", re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]{3,}")),
)


def detect_prompt_injection(text: str) -> tuple[bool, str | None]:
    """Return ``(True, rule_name)`` for the first injection rule that matches.

    Returns ``(False, None)`` for ordinary text.
    """
    for rule in INJECTION_RULES:
        if rule.pattern.search(text):
            logger.warning(
                "prompt_injection_detected", rule=rule.name, text_preview=text[:100]
            )
            return True, rule.name
    return False, None


def scrub_customer_text(text: str) -> str:
    """Replace every injection match in ``text`` with the redaction marker."""
    for rule in INJECTION_RULES:
        text = rule.pattern.sub(REDACTION, text)
    return text


def sanitize_messages(messages: list[dict]) -> list[dict]:
    """Screen customer (``user``) turns; every other role passes through."""
    sanitized = []
    for message in messages:
        content = message.get("content") or ""
        if message.get("role") != "user" or not content:
            sanitized.append(message)
            continue

        flagged, rule_name = detect_prompt_injection(content)
        if not flagged:
            sanitized.append(message)
            continue

        cleaned = scrub_customer_text(content)
        logger.warning(
            "customer_turn_sanitized",
            rule=rule_name,
            original_length=len(content),
            cleaned_length=len(cleaned),
        )
        sanitized.append({**message, "content": cleaned})
    return sanitized


def build_messages(system_prompt: str | None, messages: list[dict]) -> list[dict]:
    """Prepend the system prompt (if any) to the conversation turns."""
    if not system_prompt:
        return list(messages)
    return [{"role": "system", "content": system_prompt}, *messages]


def _deployments(settings: Settings) -> list[dict]:
    """Router deployments for every provider that has a key, primary first."""
    candidates = (
        (settings.LLM_PRIMARY_MODEL, settings.ANTHROPIC_API_KEY),
        (settings.LLM_FALLBACK_MODEL, settings.OPENAI_API_KEY),
    )
    return [
        {
            "model_name": CHAT_MODEL_GROUP,
            "litellm_params": {"model": model, "api_key": api_key},
        }
        for model, api_key in candidates
        if api_key
    ]


def _usage(response: Any) -> dict[str, int]:
    usage = getattr(response, "usage", None)
    if not usage:
        return {}
    return {
        "prompt_tokens": usage.prompt_tokens,
        "completion_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }


# ── LLM Service ──────────────────────────────────────────────────────────────


class LLMService:
    """Blocking and streaming completions through one LiteLLM router group.

    Construct one per process and inject it into the orchestrator. Without
    any API key the service is built with ``router = None`` and every call
    raises ``RuntimeError``.

    Args:
        settings: Application settings (defaults to the cached settings).
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        deployments = _deployments(settings)

        if not deployments:
            logger.warning("llm_unavailable", reason="no API keys configured")
            self.router: Router | None = None
            return

        self.router = Router(
            model_list=deployments,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )
        logger.info("llm_router_ready", deployments=len(deployments))

    def _request(
        self,
        messages: list[dict],
        system_prompt: str | None,
        model: str,
        max_tokens: int,
        temperature: float,
        metadata: dict | None,
    ) -> dict[str, Any]:
        if self.router is None:
            raise RuntimeError("No LLM API keys configured")
        return {
            "model": model,
            "messages": sanitize_messages(build_messages(system_prompt, messages)),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "metadata": metadata or {},
        }

    async def completion(
        self,
        messages: list[dict],
        system_prompt: str | None = None,
        model: str = CHAT_MODEL_GROUP,
        max_tokens: int = 500,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> dict:
        """Run one completion and return ``{"content", "model", "usage"}``.

        Args:
            messages: Ordered message dicts with 'role' and 'content'.
            system_prompt: Prepended as the system message when given.
            model: Router model group name.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0-2).
            metadata: Chatbot and conversation ids for cost attribution.

        Raises:
            RuntimeError: If no LLM API keys are configured.
        """
        request = self._request(messages, system_prompt, model, max_tokens, temperature, metadata)
        response = await self.router.acompletion(**request)
        return {
            "content": response.choices[0].message.content or "",
            "model": response.model,
            "usage": _usage(response),
        }

    async def streaming_completion(
        self,
        messages: list[dict],
        system_prompt: str | None = None,
        model: str = CHAT_MODEL_GROUP,
        max_tokens: int = 500,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> AsyncGenerator[str, None]:
        """Yield non-empty content chunks as the provider produces them."""
        request = self._request(messages, system_prompt, model, max_tokens, temperature, metadata)
        response = await self.router.acompletion(**request, stream=True)
        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

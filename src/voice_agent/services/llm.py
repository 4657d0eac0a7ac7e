"""LLM provider abstraction via LiteLLM Router.

Provides the voice agent's reply generator with:
- Gemini Flash as the primary conversational model
- GPT-4o-mini / Claude Haiku as fallbacks when their keys are configured
- Single-shot completion over a fully rendered prompt string
- Call metrics recorded through track_llm_call
"""

from __future__ import annotations

import structlog
from litellm import Router

from src.voice_agent.config import Settings, get_settings
from src.voice_agent.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

# Router model group used for spoken replies
VOICE_MODEL_GROUP = "voice"


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    Every configured provider is registered under the same model group so
    the router falls back between them on errors.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        model_list = []

        # Primary: Gemini
        if settings.gemini_api_key:
            model_list.append({
                "model_name": VOICE_MODEL_GROUP,
                "litellm_params": {
                    "model": settings.GEMINI_MODEL,
                    "api_key": settings.gemini_api_key,
                },
            })

        # Fallbacks
        if settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": VOICE_MODEL_GROUP,
                "litellm_params": {
                    "model": "openai/gpt-4o-mini",
                    "api_key": settings.OPENAI_API_KEY,
                },
            })
        if settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": VOICE_MODEL_GROUP,
                "litellm_params": {
                    "model": "anthropic/claude-3-5-haiku-20241022",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })

        if not model_list:
            logger.warning("llm.unconfigured", hint="set GEMINI_API_KEY")
            self.router = None
            return

        self.router = Router(
            model_list=model_list,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def generate(
        self,
        prompt: str,
        max_tokens: int = 512,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> str:
        """Complete a rendered prompt and return the reply text.

        Args:
            prompt: Full prompt including instructions and conversation.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0-2).
            metadata: Additional metadata forwarded to LiteLLM callbacks.

        Returns:
            Reply text; empty string when the model produced nothing.

        Raises:
            RuntimeError: If no LLM API keys are configured.
        """
        if not self.router:
            raise RuntimeError("No LLM API keys configured")

        async with track_llm_call(VOICE_MODEL_GROUP) as tracker:
            response = await self.router.acompletion(
                model=VOICE_MODEL_GROUP,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
                metadata=metadata or {},
            )
            usage = getattr(response, "usage", None)
            if usage:
                tracker["prompt_tokens"] = usage.prompt_tokens
                tracker["completion_tokens"] = usage.completion_tokens

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

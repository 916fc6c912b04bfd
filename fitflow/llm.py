"""
LLM provider abstraction using LiteLLM.

Used only to enrich notification text. Every failure is reported as
GenerationUnavailable so callers can fall back to templated content.
"""

import asyncio
import logging
import os

from litellm import acompletion

from fitflow.config import get_llm_timeout, is_ai_summaries_enabled
from fitflow.notifications.errors import GenerationUnavailable

logger = logging.getLogger(__name__)


# Default provider - can be overridden per-call or via environment
DEFAULT_PROVIDER = os.environ.get("LLM_PROVIDER", "openai/gpt-4o-mini")


async def generate_text(
    prompt: str,
    system: str,
    provider: str | None = None,
    max_tokens: int = 500,
    temperature: float = 0.7,
    timeout: float | None = None,
) -> str:
    """
    Generate a single (non-streamed) completion.

    Args:
        prompt: User prompt
        system: System prompt
        provider: Model string like "openai/gpt-4o-mini" or "anthropic/claude-sonnet-4-6"
        max_tokens: Maximum tokens in response
        temperature: Sampling temperature
        timeout: Seconds before giving up (defaults to LLM_TIMEOUT_SECONDS)

    Returns:
        The completion text, stripped

    Raises:
        GenerationUnavailable: AI summaries disabled, provider error, timeout
            or empty response
    """
    if not is_ai_summaries_enabled():
        raise GenerationUnavailable("AI summaries are disabled (ENABLE_AI_SUMMARIES not set)")

    model = provider or DEFAULT_PROVIDER
    timeout = timeout if timeout is not None else get_llm_timeout()

    try:
        response = await asyncio.wait_for(
            acompletion(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise GenerationUnavailable(f"{model} timed out after {timeout}s") from e
    except Exception as e:
        logger.warning(f"Text generation with {model} failed: {e}")
        raise GenerationUnavailable(str(e)) from e

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        raise GenerationUnavailable(f"{model} returned an empty response")
    return content.strip()

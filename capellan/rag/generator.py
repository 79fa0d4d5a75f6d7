"""
Generation client for chat completions.

Wraps a single chat completion call with a hard timeout. Timeouts, API
errors and empty answers are all reported as GenerationFailure; retry and
fallback policy belongs to the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI

from capellan import config
from capellan.rag.embedder import _get_openai_client
from capellan.rag.errors import GenerationFailure

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    text: str
    tokens_used: int = 0


async def complete(
    system_prompt: str,
    user_prompt: str,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    timeout_seconds: Optional[float] = None,
) -> Completion:
    """
    Request a chat completion bounded by max_tokens and timeout_seconds.

    Args:
        system_prompt: Persona and task instructions.
        user_prompt: Retrieved context plus the user's query.
        client: Optional pre-existing AsyncOpenAI client.
        model: Chat model, defaults to config.CHAT_MODEL.
        max_tokens: Output cap, defaults to config.MAX_COMPLETION_TOKENS.
        temperature: Sampling temperature, defaults to config.GENERATION_TEMPERATURE.
        timeout_seconds: Hard limit, defaults to config.GENERATION_TIMEOUT_SECONDS.

    Returns:
        Completion with the answer text and the total tokens reported.

    Raises:
        GenerationFailure: On timeout, provider error or empty output.
    """
    model = model or config.CHAT_MODEL
    max_tokens = max_tokens if max_tokens is not None else config.MAX_COMPLETION_TOKENS
    temperature = temperature if temperature is not None else config.GENERATION_TEMPERATURE
    timeout_seconds = timeout_seconds or config.GENERATION_TIMEOUT_SECONDS

    try:
        if client is None:
            client = _get_openai_client()
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_completion_tokens=max_tokens,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning(f"[GENERATOR] Completion TIMEOUT ({timeout_seconds}s) for model {model}")
        raise GenerationFailure(f"Generation timed out after {timeout_seconds}s") from e
    except Exception as e:
        logger.error(f"[GENERATOR] Completion failed [{type(e).__name__}]: {e}")
        raise GenerationFailure(f"Generation failed: {e}") from e

    choices = getattr(response, "choices", None) or []
    text = choices[0].message.content if choices else None
    if not text or not text.strip():
        raise GenerationFailure("Generation provider returned an empty answer")

    usage = getattr(response, "usage", None)
    tokens_used = getattr(usage, "total_tokens", 0) or 0
    return Completion(text=text.strip(), tokens_used=tokens_used)

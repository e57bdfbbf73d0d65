"""
Shared OpenAI GPT helper for the assembly pipeline.

Used by:
  - generation_service.py   (Step 5, shortfall generation)

Model: gpt-4o-mini  (override with GPT_MODEL env var, e.g. "gpt-4o")
"""

import os
from typing import Optional

from openai import AsyncOpenAI

from assembly.config import GPT_MODEL

# Lazy singleton
_client: Optional[AsyncOpenAI] = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set. Add it to your .env file."
            )
        _client = AsyncOpenAI(api_key=api_key)
    return _client


async def call_gpt(
    prompt: str,
    system: str = "You are an assessment item writer. Output only valid JSON.",
    temperature: float = 0.4,
    max_tokens: int = 4096,
    json_mode: bool = True,
) -> str:
    """
    Call OpenAI Chat Completions and return the assistant message text.

    Args:
        prompt:      User-turn message
        system:      System prompt
        temperature: Sampling temperature (lower = more deterministic)
        max_tokens:  Max response tokens
        json_mode:   Ask the API for a JSON object response

    Returns:
        Raw string content of the model response
    """
    client = _get_client()
    extra = {"response_format": {"type": "json_object"}} if json_mode else {}
    response = await client.chat.completions.create(
        model=GPT_MODEL,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
        **extra,
    )
    return response.choices[0].message.content or ""

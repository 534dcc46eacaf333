"""
OpenAI LLM client wrapper for Fieldnote.
"""
from openai import AsyncOpenAI
import json
import logging
import re
from typing import Any, Optional

from fieldnote.config import get_settings
from fieldnote.exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def parse_json_response(text: str) -> Any:
    """Parse model output as JSON, tolerating a Markdown code fence."""
    match = CODE_FENCE.search(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse LLM JSON response: {text[:200]!r}")
        raise MalformedResponseError("Invalid JSON response from LLM") from e


class LLMClient:
    """OpenAI client wrapper with structured output parsing."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None
    ):
        if client is None or model is None:
            settings = get_settings()
            client = client or AsyncOpenAI(api_key=settings.openai_api_key)
            model = model or settings.openai_model
        self.client = client
        self.model = model

    async def complete(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 512
    ) -> str:
        """Get a completion from the LLM."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt}
            ],
            temperature=temperature,
            max_tokens=max_tokens
        )

        choice = response.choices[0]
        usage = response.usage
        if usage is not None:
            logger.info(
                f"OpenAI call completed: prompt={usage.prompt_tokens} "
                f"completion={usage.completion_tokens} limit={max_tokens} "
                f"finish={choice.finish_reason}"
            )
        if choice.finish_reason == "length":
            logger.warning(f"Response was truncated at max_tokens={max_tokens}")

        content = choice.message.content
        if not content:
            raise MalformedResponseError("No content in OpenAI response")
        return content.strip()

    async def complete_json(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 512
    ) -> Any:
        """Get a JSON response from the LLM."""
        content = await self.complete(
            prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens
        )
        return parse_json_response(content)


# Singleton instance
_llm: Optional[LLMClient] = None

def get_llm() -> LLMClient:
    """Get LLM client singleton."""
    global _llm
    if _llm is None:
        _llm = LLMClient()
    return _llm

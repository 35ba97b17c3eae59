"""LLM service for OpenAI text and vision calls."""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from realprice.config import settings

logger = logging.getLogger(__name__)


def image_data_uri(image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode an image as a base64 data URI."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_json_response(response_text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of an LLM answer, tolerating markdown fences.

    Raises:
        ValueError: If the answer is not a JSON object
    """
    text = response_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse LLM JSON response: {e}\nResponse: {text[:200]}")
        raise ValueError(f"Invalid JSON response from LLM: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object from LLM, got {type(parsed).__name__}")
    return parsed


class LLMService:
    """
    Service for LLM interactions with OpenAI.

    Features:
    - Lazy client creation
    - Structured JSON output
    - Vision requests with inline images
    - Call counting
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client
        self._call_count: int = 0
        self._failure_count: int = 0

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def _complete(self, messages: List[Dict[str, Any]], model: str, temperature: float) -> str:
        client = await self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=settings.llm_max_tokens,
                timeout=settings.llm_timeout_seconds,
            )
        except Exception as e:
            self._failure_count += 1
            logger.error(f"LLM API call failed: {e}")
            raise

        self._call_count += 1
        result = response.choices[0].message.content
        return result or ""

    @staticmethod
    def _json_instructions(system_prompt: str, response_schema: Dict[str, Any]) -> str:
        enhanced = system_prompt + "\n\n" if system_prompt else ""
        return enhanced + (
            f"Respond with valid JSON matching this schema: {json.dumps(response_schema, indent=2)}\n"
            "Return only the JSON object, no additional text."
        )

    async def call_llm(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Call LLM with a prompt and return text response.

        Args:
            prompt: User prompt
            system_prompt: System prompt/instructions
            temperature: Temperature (defaults to settings.llm_temperature)
            model: Model name (defaults to settings.llm_model)

        Returns:
            LLM response text
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self._complete(
            messages,
            model or settings.llm_model,
            temperature if temperature is not None else settings.llm_temperature,
        )

    async def call_llm_structured(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        system_prompt: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Call LLM with structured JSON output.

        Returns:
            Parsed JSON response as dictionary
        """
        response_text = await self.call_llm(
            prompt=prompt,
            system_prompt=self._json_instructions(system_prompt, response_schema),
            temperature=temperature,
            model=model,
        )
        return parse_json_response(response_text)

    async def call_vision_structured(
        self,
        prompt: str,
        image_bytes: bytes,
        response_schema: Dict[str, Any],
        mime_type: str = "image/jpeg",
        system_prompt: str = "",
    ) -> Dict[str, Any]:
        """
        Ask a vision model about an image and parse its JSON answer.

        Args:
            prompt: Question about the image
            image_bytes: Raw image
            response_schema: JSON schema describing expected response structure
            mime_type: Image MIME type
            system_prompt: System prompt/instructions

        Returns:
            Parsed JSON response as dictionary
        """
        messages = [
            {"role": "system", "content": self._json_instructions(system_prompt, response_schema)},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": image_data_uri(image_bytes, mime_type)},
                    },
                ],
            },
        ]
        response_text = await self._complete(
            messages, settings.llm_vision_model, settings.llm_temperature
        )
        return parse_json_response(response_text)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "call_count": self._call_count,
            "failure_count": self._failure_count,
            "model": settings.llm_model,
            "vision_model": settings.llm_vision_model,
        }

    async def close(self):
        """Close connections."""
        if self._client:
            await self._client.close()
            self._client = None

"""
texgraph - Extraction Oracle Client
Talks to any OpenAI-compatible chat completions API (OpenRouter by default)
"""
import logging
from typing import Optional, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel

from ..config import settings

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """The oracle answered, but not with something usable."""


class SamplingParams(BaseModel):
    temperature: float = 0.2
    top_p: float = 0.9
    max_tokens: int = 8192

    @classmethod
    def from_settings(cls) -> "SamplingParams":
        return cls(
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            max_tokens=settings.llm_max_tokens,
        )


class ExtractionOracle(Protocol):
    """Anything that turns a prompt into text. May raise on any failure."""

    async def invoke(self, prompt: str, sampling: SamplingParams) -> str:
        ...


def looks_like_html(s: str) -> bool:
    t = s.strip()[:200].lower()
    return t.startswith("<!doctype") or t.startswith("<html") or "<head" in t or "<body" in t


class LLMClient:
    """
    Extraction oracle backed by an OpenAI-compatible API.

    Timeouts and transport retries are owned by the underlying client;
    cancelling the awaiting task aborts the request.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ):
        self.api_key = api_key or settings.llm_api_key
        self.model = model or settings.llm_model
        self.base_url = base_url or settings.llm_base_url
        self.system_prompt = system_prompt

        if not self.api_key:
            raise ValueError(
                "An API key is required for oracle extraction. "
                "Set LLM_API_KEY in your .env file, or run in local mode."
            )

        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.llm_timeout,
            max_retries=max_retries if max_retries is not None else settings.llm_max_retries,
        )

    async def invoke(self, prompt: str, sampling: SamplingParams) -> str:
        """
        Send one prompt and return the raw completion text.

        Args:
            prompt: User prompt
            sampling: Temperature / top_p / max_tokens

        Returns:
            Completion text (expected, but not guaranteed, to be JSON)
        """
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=sampling.temperature,
            top_p=sampling.top_p,
            max_tokens=sampling.max_tokens,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            raise OracleError("oracle returned no choices")
        text = response.choices[0].message.content or ""
        if not text.strip():
            raise OracleError("oracle returned an empty completion")
        if looks_like_html(text):
            raise OracleError(f"oracle returned HTML instead of JSON; first 120 chars: {text[:120]}")
        return text

    async def close(self) -> None:
        await self.client.close()


def get_llm_client(**kwargs) -> LLMClient:
    """Get a configured oracle client instance."""
    return LLMClient(**kwargs)


__all__ = [
    "ExtractionOracle",
    "LLMClient",
    "OracleError",
    "SamplingParams",
    "get_llm_client",
    "looks_like_html",
]

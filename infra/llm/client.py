import json
import logging
from typing import Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

from app.settings import Settings
from domain.errors import MalformedResponse, ProviderNotConfigured
from infra.retry import execute_with_retry

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

Message = Dict[str, str]


class LLMClient:
    """Embeddings and chat completions over OpenAI-compatible REST endpoints.

    Every provider call goes through ``execute_with_retry``; transport and
    5xx/429 failures are retried, JSON parse/validation failures are not.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        embedding_api_key: Optional[str],
        chat_api_key: Optional[str],
        chat_model: str,
        embedding_model: str = "text-embedding-3-small",
        embedding_base_url: str = "https://api.openai.com/v1",
        chat_base_url: str = "https://api.openai.com/v1",
        chat_headers: Optional[Dict[str, str]] = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: float = 60,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 5.0,
    ):
        self.http = http
        self.embedding_api_key = embedding_api_key
        self.chat_api_key = chat_api_key
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.embedding_base_url = embedding_base_url.rstrip("/")
        self.chat_base_url = chat_base_url.rstrip("/")
        self.chat_headers = chat_headers or {}
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._retry = dict(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> "LLMClient":
        if settings.OPENAI_API_KEY:
            chat_key, chat_model, chat_url, headers = (
                settings.OPENAI_API_KEY, settings.OPENAI_MODEL, settings.OPENAI_BASE_URL, {})
        elif settings.OPENROUTER_API_KEY:
            chat_key, chat_model, chat_url = (
                settings.OPENROUTER_API_KEY, settings.OPENROUTER_MODEL, OPENROUTER_BASE_URL)
            headers = {"HTTP-Referer": "http://localhost", "X-Title": settings.APP_NAME}
        else:
            chat_key, chat_model, chat_url, headers = None, settings.OPENAI_MODEL, settings.OPENAI_BASE_URL, {}
        return cls(
            http,
            embedding_api_key=settings.OPENAI_API_KEY,
            chat_api_key=chat_key,
            chat_model=chat_model,
            embedding_model=settings.OPENAI_EMBEDDING_MODEL,
            embedding_base_url=settings.OPENAI_BASE_URL,
            chat_base_url=chat_url,
            chat_headers=headers,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT,
        )

    async def _post(self, url: str, api_key: str, payload: Dict, extra_headers: Optional[Dict] = None) -> Dict:
        headers = {"Authorization": f"Bearer {api_key}", **(extra_headers or {})}
        response = await self.http.post(url, headers=headers, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    # -- embeddings --------------------------------------------------------

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if not self.embedding_api_key:
            raise ProviderNotConfigured("No embedding provider configured (OPENAI_API_KEY missing)")

        async def call() -> List[List[float]]:
            logger.info("Generating embeddings for %d texts (model=%s)", len(texts), self.embedding_model)
            data = await self._post(
                f"{self.embedding_base_url}/embeddings",
                self.embedding_api_key,
                {"model": self.embedding_model, "input": texts, "encoding_format": "float"},
            )
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in items]
            if len(vectors) != len(texts):
                raise MalformedResponse(
                    f"Embedding response has {len(vectors)} vectors for {len(texts)} inputs")
            return vectors

        return await execute_with_retry(call, operation_name="embeddings generation", **self._retry)

    async def embed_one(self, text: str) -> List[float]:
        [vector] = await self.embed_batch([text])
        return vector

    # -- completions -------------------------------------------------------

    async def complete(
        self,
        messages: List[Message],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        structured: bool = False,
    ) -> str:
        if not self.chat_api_key:
            raise ProviderNotConfigured("No LLM provider configured")

        payload = {
            "model": self.chat_model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if structured:
            payload["response_format"] = {"type": "json_object"}

        async def call() -> str:
            logger.info("Generating completion (model=%s, messages=%d)", self.chat_model, len(messages))
            data = await self._post(
                f"{self.chat_base_url}/chat/completions", self.chat_api_key, payload, self.chat_headers)
            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as exc:
                raise MalformedResponse("Completion response has no message content") from exc
            if not content:
                raise MalformedResponse("No content returned from completion")
            usage = data.get("usage") or {}
            logger.info("Completion generated (tokens=%s, length=%d)", usage.get("total_tokens"), len(content))
            return content

        return await execute_with_retry(call, operation_name="completion generation", **self._retry)

    async def complete_structured(self, messages: List[Message], schema: Optional[Type[BaseModel]] = None) -> Dict:
        raw_text = await self.complete(messages, structured=True)
        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            raise MalformedResponse("LLM response was not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise MalformedResponse("LLM response JSON is not an object")
        if schema is None:
            return parsed
        try:
            return schema.model_validate(parsed).model_dump()
        except ValidationError as exc:
            raise MalformedResponse(f"LLM response failed validation: {exc}") from exc

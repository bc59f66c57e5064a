"""
LLM Service

Structured-output language model integration via the OpenAI SDK.
Every call returns an instance of the caller-supplied Pydantic schema
(query rewrite, agent step, shipment extraction).

Design:
    - Async calls via AsyncOpenAI (non-blocking).
    - Temperature 0 for reproducible structured output.
    - Provider errors, refusals and schema violations surface as
      UpstreamError; callers decide whether to degrade.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from docintel.core.config import settings
from docintel.core.errors import UpstreamError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

Message = dict[str, Any]


class StructuredModel(Protocol):
    """
    Anything that can turn chat messages into a schema instance.

    Implementations raise UpstreamError when the model call fails and
    ValueError (pydantic ValidationError included) for unusable output.
    """

    async def invoke(self, messages: list[Message], schema: type[SchemaT]) -> SchemaT: ...


class StructuredLLM:
    """
    Async structured-output client backed by OpenAI chat completions.

    Usage::

        llm = StructuredLLM()
        rewrite = await llm.invoke(
            [{"role": "user", "content": "who shipped SHP-1?"}],
            RewrittenQuery,
        )
        print(rewrite.query)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float = 0.0,
    ) -> None:
        """
        Initialize the LLM service.

        Args:
            api_key: OpenAI API key (default from config).
            model: Chat model name (default from config).
            temperature: Sampling temperature.
        """
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._model = model or settings.OPENAI_CHAT_MODEL
        self._temperature = temperature
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise UpstreamError("OPENAI_API_KEY is not configured.")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def invoke(self, messages: list[Message], schema: type[SchemaT]) -> SchemaT:
        """
        Run one chat completion constrained to ``schema``.

        Args:
            messages: Chat messages (``role`` / ``content`` dicts).
            schema: Pydantic model the response must conform to.

        Returns:
            Parsed schema instance.

        Raises:
            UpstreamError: API failure, refusal, or unparseable output.
        """
        client = self._get_client()
        try:
            completion = await client.chat.completions.parse(
                model=self._model,
                messages=messages,
                response_format=schema,
                temperature=self._temperature,
            )
        except (OpenAIError, ValidationError) as exc:
            raise UpstreamError(
                f"Model call failed ({schema.__name__}): {exc}"
            ) from exc

        message = completion.choices[0].message
        if message.parsed is None:
            raise UpstreamError(
                f"Model returned no {schema.__name__} (refusal: {message.refusal!r})"
            )

        logger.debug("Structured response parsed (model=%s, schema=%s)", self._model, schema.__name__)
        return message.parsed

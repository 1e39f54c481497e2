"""
Embedding Client — Local HTTP embedding service

Talks to an Ollama-style server:
    GET  /api/tags         availability check
    POST /api/embeddings   {"model": ..., "prompt": ...} -> {"embedding": [...]}

The server has no batch endpoint, so embed_texts sends one request per text.
"""

import logging
from typing import List, Optional, Sequence

import httpx
import orjson

from ..errors import Timeout, UpstreamFailure

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "nomic-embed-text"
DEFAULT_TIMEOUT = 30.0


class EmbeddingClient:
    """
    Long-lived async client; construct once and share.

    `transport` lets tests swap in httpx.MockTransport.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, model: str = DEFAULT_MODEL,
                 timeout: float = DEFAULT_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config, transport=None) -> 'EmbeddingClient':
        return cls(config.embedding_url, config.embedding_model,
                   config.embedding_timeout, transport=transport)

    async def is_available(self) -> bool:
        """True when /api/tags answers with a 2xx status."""
        try:
            response = await self._client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as e:
            logger.debug("Embedding service unavailable at %s: %s", self.base_url, e)
            return False
        if not response.is_success:
            logger.debug("Embedding service at %s answered %d", self.base_url, response.status_code)
        return response.is_success

    async def embed_single(self, text: str) -> List[float]:
        try:
            response = await self._client.post(
                f"{self.base_url}/api/embeddings",
                content=orjson.dumps({"model": self.model, "prompt": text}),
                headers={"content-type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise Timeout("embedding request timed out", str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"embedding request failed: {e}") from e

        if not response.is_success:
            body = response.text
            raise UpstreamFailure(
                f"embedding error {response.status_code}: {body[:300]}",
                status=response.status_code,
            )

        try:
            vector = orjson.loads(response.content).get("embedding") or []
        except (orjson.JSONDecodeError, AttributeError) as e:
            raise UpstreamFailure("embedding response was not valid JSON", str(e)) from e
        if not vector:
            raise UpstreamFailure("empty embedding returned")
        return [float(x) for x in vector]

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return [await self.embed_single(text) for text in texts]

    async def aclose(self) -> None:
        await self._client.aclose()

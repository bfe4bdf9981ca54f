"""Embedding provider clients.

Two providers share one async interface:

- ``OpenAIEmbeddingClient`` posts batches to an OpenAI-compatible
  ``/embeddings`` endpoint with httpx.
- ``SentenceTransformerEmbeddingClient`` runs a local sentence-transformers
  model in a worker thread.

Clients make exactly one provider call per ``embed`` invocation; retry and
backoff are applied by the caller through ``mbs_catalog.utils.retry``.
"""

import asyncio
from typing import Optional, Protocol

import httpx
from httpx import HTTPStatusError, TimeoutException

from mbs_catalog.core.config import EmbeddingSettings, settings
from mbs_catalog.core.exceptions import APIClientError, APITimeoutError, ConfigurationError
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


class EmbeddingClient(Protocol):
    model_name: str
    dimensions: int

    async def embed(self, texts: list[str]) -> list[list[float]]:
        ...


def is_transient_error(error: Exception) -> bool:
    """Whether an embedding failure is worth retrying.

    Client errors (4xx) are permanent except for rate limiting (429).
    """
    if isinstance(error, APITimeoutError):
        return True
    if isinstance(error, APIClientError):
        status = error.status_code
        return status is None or status == 429 or status >= 500
    return not isinstance(error, ConfigurationError)


class OpenAIEmbeddingClient:
    """Client for OpenAI-compatible embedding APIs."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-large",
        dimensions: int = 1536,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer token for the provider
            base_url: API base URL, without the ``/embeddings`` suffix
            model: Embedding model name
            dimensions: Requested vector size; must match the catalog column
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        if not api_key:
            raise ConfigurationError("An API key is required for the OpenAI embedding provider")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._transport = transport

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        url = f"{self.base_url}/embeddings"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "input": texts,
            "dimensions": self.dimensions,
            "encoding_format": "float",
        }

        LOGGER.debug(
            f"Requesting {len(texts)} embeddings",
            extra={"model": self.model_name, "url": url},
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
                body = response.json()
        except HTTPStatusError as e:
            status_code = e.response.status_code
            error_body = e.response.text[:500]
            LOGGER.warning(
                f"Embedding API HTTP error {status_code}",
                extra={"url": url, "status_code": status_code, "error_body": error_body},
            )
            raise APIClientError(
                f"Embedding API error {status_code}: {error_body}",
                status_code=status_code,
                original_error=e,
            ) from e
        except TimeoutException as e:
            raise APITimeoutError("Embedding API request timed out", original_error=e) from e
        except httpx.HTTPError as e:
            raise APIClientError(f"Embedding API transport error: {e}", original_error=e) from e

        return self._parse_response(body, expected=len(texts))

    def _parse_response(self, body: dict, expected: int) -> list[list[float]]:
        data = body.get("data")
        if not isinstance(data, list) or len(data) != expected:
            raise APIClientError(
                f"Embedding API returned {len(data) if isinstance(data, list) else 'no'} vectors, expected {expected}"
            )
        ordered = sorted(data, key=lambda entry: entry.get("index", 0))
        vectors = [entry["embedding"] for entry in ordered]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise ConfigurationError(
                    f"Embedding dimension mismatch: provider returned {len(vector)}, "
                    f"catalog expects {self.dimensions}"
                )
        return vectors


class SentenceTransformerEmbeddingClient:
    """Local embedding provider backed by sentence-transformers."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimensions: int = 384):
        self.model_name = model_name
        self.dimensions = dimensions
        self._model = None

    @property
    def model(self):
        """Lazy loader for the SentenceTransformer model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            LOGGER.info(f"Loading embedding model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
            model_dim = self._model.get_sentence_embedding_dimension()
            if model_dim != self.dimensions:
                raise ConfigurationError(
                    f"Model {self.model_name} produces {model_dim}-dim vectors, "
                    f"catalog expects {self.dimensions}"
                )
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = await asyncio.to_thread(
            self.model.encode, texts, show_progress_bar=False
        )
        return vectors.tolist()


def create_embedding_client(config: EmbeddingSettings = None) -> Optional[EmbeddingClient]:
    """Build the configured embedding client.

    Returns None when semantic search is disabled (no provider configured),
    in which case search falls back to lexical-only.
    """
    config = config or settings.embedding
    if config.provider == "openai":
        if not config.api_key:
            LOGGER.warning("OPENAI_API_KEY not set; semantic search and embedding generation are disabled")
            return None
        return OpenAIEmbeddingClient(
            api_key=config.api_key,
            base_url=config.api_url,
            model=config.model,
            dimensions=config.dimensions,
            timeout=config.request_timeout_seconds,
        )
    if config.provider == "local":
        return SentenceTransformerEmbeddingClient(
            model_name=config.local_model,
            dimensions=config.dimensions,
        )
    if config.provider == "none":
        return None
    raise ConfigurationError(f"Unsupported embedding provider: {config.provider}")


_shared_client: Optional[EmbeddingClient] = None
_shared_client_loaded = False


def get_embedding_client() -> Optional[EmbeddingClient]:
    """Process-wide embedding client, created on first use."""
    global _shared_client, _shared_client_loaded
    if not _shared_client_loaded:
        _shared_client = create_embedding_client()
        _shared_client_loaded = True
    return _shared_client

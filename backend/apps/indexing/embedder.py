"""
Embedding generation for document chunks and search queries.

Clients call an external embedding service:
- Ollama /api/embeddings (default, nomic-embed-text, 768 dimensions)
- OpenAI-compatible /embeddings

EmbeddingGenerator embeds every chunk of a document and persists the
vectors through the repository. A failing chunk is logged and skipped;
partial coverage is an accepted outcome.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from django.conf import settings

from apps.docs.errors import ProcessingError, RepositoryError
from .chunker import TextChunk
from .models import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)


class EmbeddingError(ProcessingError):
    """Raised when embedding generation fails."""
    pass


class EmbeddingClient(ABC):
    """Produces a fixed-dimension vector for a piece of text."""

    dimensions: int = EMBEDDING_DIMENSIONS

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Name stored alongside every vector."""

    @abstractmethod
    def _request_embedding(self, text: str) -> List[float]:
        """Call the provider and return the raw vector."""

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for a single text.

        Raises:
            EmbeddingError: If the text is empty or the call fails
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot generate embedding for empty text")

        embedding = self._request_embedding(text)

        if not embedding:
            raise EmbeddingError("No embedding in response")

        if len(embedding) != self.dimensions:
            logger.warning(
                f"Expected {self.dimensions} dimensions, got {len(embedding)}"
            )

        return embedding


class OllamaEmbeddingClient(EmbeddingClient):
    """Embeddings from a local Ollama server."""

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url or getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        self.model = model or getattr(settings, 'EMBEDDING_MODEL', 'nomic-embed-text')
        self.timeout = timeout or getattr(settings, 'OLLAMA_EMBED_TIMEOUT', 120)
        self.dimensions = getattr(settings, 'EMBEDDING_DIMENSIONS', EMBEDDING_DIMENSIONS)

    @property
    def model_name(self) -> str:
        return self.model

    def _request_embedding(self, text: str) -> List[float]:
        try:
            with httpx.Client(timeout=float(self.timeout)) as client:
                response = client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": self.model, "prompt": text},
                )
                response.raise_for_status()
                return response.json().get("embedding") or []
        except (ValueError, KeyError, IndexError, AttributeError) as e:
            raise EmbeddingError(f"Malformed Ollama embedding response: {e}")
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:500] if e.response.text else "No details"
            raise EmbeddingError(f"Ollama API returned {e.response.status_code}: {detail}")
        except httpx.TimeoutException:
            raise EmbeddingError("Ollama API timed out")
        except httpx.RequestError as e:
            raise EmbeddingError(f"Cannot connect to Ollama at {self.base_url}: {e}")


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embeddings from OpenAI or a compatible API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key or getattr(settings, 'OPENAI_API_KEY', '')
        self.base_url = base_url or getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1')
        self.model = model or getattr(settings, 'EMBEDDING_MODEL', 'text-embedding-3-small')
        self.timeout = timeout or getattr(settings, 'OPENAI_TIMEOUT', 120)
        self.dimensions = getattr(settings, 'EMBEDDING_DIMENSIONS', EMBEDDING_DIMENSIONS)

        if not self.api_key:
            raise EmbeddingError("OPENAI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    def _request_embedding(self, text: str) -> List[float]:
        try:
            with httpx.Client(timeout=float(self.timeout)) as client:
                response = client.post(
                    f"{self.base_url}/embeddings",
                    json={"model": self.model, "input": text, "dimensions": self.dimensions},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                data = response.json().get("data") or []
                return data[0].get("embedding") if data else []
        except (ValueError, KeyError, IndexError, AttributeError) as e:
            raise EmbeddingError(f"Malformed OpenAI embedding response: {e}")
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(f"OpenAI embeddings returned {e.response.status_code}")
        except httpx.TimeoutException:
            raise EmbeddingError("OpenAI embeddings timed out")
        except httpx.RequestError as e:
            raise EmbeddingError(f"Cannot connect to OpenAI embeddings API: {e}")


def build_embedding_client(provider: Optional[str] = None) -> EmbeddingClient:
    """Create the embedding client chosen by EMBEDDING_PROVIDER."""
    provider = (provider or getattr(settings, 'EMBEDDING_PROVIDER', 'ollama')).lower()
    if provider == 'openai':
        return OpenAIEmbeddingClient()
    return OllamaEmbeddingClient()


@dataclass
class EmbeddingCoverage:
    """How many of a document's chunks ended up with a stored vector."""
    total: int
    stored: int = 0
    failed_indexes: List[int] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_indexes)

    def to_dict(self) -> dict:
        return {
            'totalChunks': self.total,
            'storedChunks': self.stored,
            'failedChunks': self.failed_indexes,
        }


class EmbeddingGenerator:
    """Embeds a document's chunks and stores the vectors."""

    def __init__(self, client: EmbeddingClient, repository):
        self.client = client
        self.repository = repository

    def generate(self, document_id, chunks: List[TextChunk]) -> EmbeddingCoverage:
        """
        Embed and store each chunk.

        Per-chunk failures (provider or database) are logged and skipped,
        so the result may cover only part of the document.
        """
        coverage = EmbeddingCoverage(total=len(chunks))

        for chunk in chunks:
            try:
                vector = self.client.embed(chunk.text)
                self.repository.store_embedding(
                    document_id=document_id,
                    chunk_index=chunk.index,
                    text_chunk=chunk.text,
                    embedding=vector,
                    embedding_model=self.client.model_name,
                )
                coverage.stored += 1
            except (EmbeddingError, RepositoryError) as e:
                logger.error(f"Failed to embed chunk {chunk.index} of document {document_id}: {e}")
                coverage.failed_indexes.append(chunk.index)
            except Exception:
                logger.exception(f"Unexpected error embedding chunk {chunk.index} of document {document_id}")
                coverage.failed_indexes.append(chunk.index)

        if coverage.is_partial:
            logger.warning(
                f"Partial embedding coverage for {document_id}: "
                f"{coverage.stored}/{coverage.total} chunks stored"
            )
        else:
            logger.info(f"Stored {coverage.stored} embeddings for {document_id}")

        return coverage

"""
Semantic search over a tenant's documents.

Embeds the query with the same model used for chunk embeddings, ranks
documents by their best matching chunk and applies the tenant and
confidentiality rules through the repository.

Search failures never leak to the caller: if the query cannot be
embedded or the similarity query fails, the result is simply empty and
the cause is logged.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from apps.authn.access import AccessContext
from apps.docs.errors import ValidationError
from apps.docs.models import DocumentType
from apps.docs.repository import SearchHit

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 0.7
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
MAX_QUERY_LENGTH = 2000


def normalize_query(query: str) -> str:
    """
    Normalize a search query for embedding.

    - Strip leading/trailing whitespace
    - Collapse multiple whitespace to single space

    Raises:
        ValidationError: If the query is empty or too long
    """
    normalized = re.sub(r'\s+', ' ', (query or '').strip())

    if not normalized:
        raise ValidationError("Query cannot be empty")

    if len(normalized) > MAX_QUERY_LENGTH:
        raise ValidationError(f"Query too long (max {MAX_QUERY_LENGTH} characters)")

    return normalized


@dataclass
class SearchResponse:
    """Result of a semantic search."""
    query: str
    min_similarity: float
    documents: List[SearchHit] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.documents)

    def to_dict(self) -> dict:
        return {
            'documents': [hit.to_dict() for hit in self.documents],
            'total': self.total,
            'query': self.query,
            'minSimilarity': self.min_similarity,
        }


class SemanticSearchEngine:
    """Embeds queries and ranks the caller's visible documents."""

    def __init__(self, client, repository, default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
                 default_limit: int = DEFAULT_LIMIT):
        self.client = client
        self.repository = repository
        self.default_min_similarity = default_min_similarity
        self.default_limit = default_limit

    def _resolve_params(self, min_similarity, limit, document_type):
        if min_similarity is None:
            min_similarity = self.default_min_similarity
        if limit is None:
            limit = self.default_limit

        if isinstance(min_similarity, bool) or not isinstance(min_similarity, (int, float)):
            raise ValidationError("minSimilarity must be a number")
        if not 0 <= min_similarity <= 1:
            raise ValidationError("minSimilarity must be between 0 and 1")
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be an integer between 1 and {MAX_LIMIT}")
        if document_type and document_type not in DocumentType.values:
            raise ValidationError(f"Unknown document type: {document_type}")

        return float(min_similarity), limit

    def search(
        self,
        access: AccessContext,
        query: str,
        document_type: Optional[str] = None,
        min_similarity: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> SearchResponse:
        """
        Find the caller's documents most similar to a query.

        Args:
            access: Caller's access context (tenant + confidentiality grants)
            query: Free-text query
            document_type: Optional document type filter
            min_similarity: Cosine similarity threshold (default 0.7)
            limit: Maximum documents returned (default 10)

        Returns:
            SearchResponse; empty when nothing clears the threshold or
            when the search backend fails

        Raises:
            ValidationError: For an empty query or out-of-range parameters
        """
        query = normalize_query(query)
        min_similarity, limit = self._resolve_params(min_similarity, limit, document_type)
        response = SearchResponse(query=query, min_similarity=min_similarity)

        try:
            query_embedding = self.client.embed(query)
        except Exception as e:
            logger.error(f"Query embedding failed for tenant {access.tenant_id}: {e}")
            return response

        try:
            response.documents = self.repository.semantic_search(
                access,
                query_embedding,
                min_similarity=min_similarity,
                limit=limit,
                document_type=document_type,
            )
        except Exception as e:
            logger.exception(f"Semantic search failed for tenant {access.tenant_id}: {e}")
            return response

        logger.info(
            f"Semantic search for tenant {access.tenant_id}: "
            f"{response.total} documents (min_similarity={min_similarity}, limit={limit})"
        )
        return response

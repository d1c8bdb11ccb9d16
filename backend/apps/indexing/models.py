"""
Document embedding model for storing text chunks with vectors.
"""
import uuid
from django.db import models
from pgvector.django import VectorField

from apps.docs.models import Document

EMBEDDING_DIMENSIONS = 768


class DocumentEmbedding(models.Model):
    """
    A text chunk from a document with its embedding vector.

    Rows are appended per chunk by the embedding generator. Coverage may
    be partial when individual embedding calls failed.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    document = models.ForeignKey(
        Document,
        on_delete=models.CASCADE,
        related_name='embeddings',
        help_text="The source document"
    )

    chunk_index = models.PositiveIntegerField(
        help_text="Index of this chunk within the document (0-based)"
    )
    text_chunk = models.TextField()

    # nomic-embed-text produces 768 dimensions
    embedding = VectorField(dimensions=EMBEDDING_DIMENSIONS)
    embedding_model = models.CharField(max_length=100)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'document_embeddings'
        ordering = ['document', 'chunk_index']
        indexes = [
            models.Index(fields=['document', 'chunk_index'], name='document_em_documen_9b1c4f_idx'),
        ]

    def __str__(self):
        preview = self.text_chunk[:50] + '...' if len(self.text_chunk) > 50 else self.text_chunk
        return f"Chunk {self.chunk_index} of {self.document_id}: {preview}"

"""
Initial migration for document embeddings.

Enables the pgvector extension and, on PostgreSQL, adds an HNSW index on
document_embeddings.embedding for fast cosine similarity search.
Other database vendors (the SQLite test database) skip both steps.
"""
from django.db import migrations, models
import django.db.models.deletion
import pgvector.django
import uuid


def create_hnsw_index(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    schema_editor.execute("""
        CREATE INDEX IF NOT EXISTS document_embeddings_hnsw_idx
        ON document_embeddings
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64);
    """)


def drop_hnsw_index(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    schema_editor.execute("DROP INDEX IF EXISTS document_embeddings_hnsw_idx;")


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('docs', '0001_initial'),
    ]

    operations = [
        pgvector.django.VectorExtension(),
        migrations.CreateModel(
            name='DocumentEmbedding',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('chunk_index', models.PositiveIntegerField(help_text='Index of this chunk within the document (0-based)')),
                ('text_chunk', models.TextField()),
                ('embedding', pgvector.django.VectorField(dimensions=768)),
                ('embedding_model', models.CharField(max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('document', models.ForeignKey(help_text='The source document', on_delete=django.db.models.deletion.CASCADE, related_name='embeddings', to='docs.document')),
            ],
            options={
                'db_table': 'document_embeddings',
                'ordering': ['document', 'chunk_index'],
            },
        ),
        migrations.AddIndex(
            model_name='documentembedding',
            index=models.Index(fields=['document', 'chunk_index'], name='document_em_documen_9b1c4f_idx'),
        ),
        migrations.RunPython(create_hnsw_index, drop_hnsw_index),
    ]

# Generated migration for Document, DocumentTag and AnalysisVersion models

from django.db import migrations, models
import django.db.models.deletion
import uuid


STATUS_CHOICES = [
    ('PENDING', 'Pending'),
    ('PROCESSING', 'Processing'),
    ('COMPLETED', 'Completed'),
    ('ERROR', 'Error'),
]

TYPE_CHOICES = [
    ('CONTRACT', 'Contract'),
    ('AGREEMENT', 'Agreement'),
    ('POLICY', 'Policy'),
    ('REPORT', 'Report'),
    ('PRESENTATION', 'Presentation'),
    ('CORRESPONDENCE', 'Correspondence'),
    ('INVOICE', 'Invoice'),
    ('OTHER', 'Other'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Document',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tenant_id', models.CharField(db_index=True, help_text='Owning tenant, immutable after creation', max_length=255)),
                ('filename', models.CharField(help_text='Sanitized filename used in the storage key', max_length=255)),
                ('original_filename', models.CharField(help_text='Filename as uploaded by the client', max_length=255)),
                ('mime_type', models.CharField(max_length=150)),
                ('file_size', models.PositiveBigIntegerField(help_text='File size in bytes')),
                ('storage_key', models.CharField(help_text='Key in the storage backend', max_length=700, unique=True)),
                ('checksum', models.CharField(help_text='SHA-256 hex digest computed at write time', max_length=64)),
                ('document_type', models.CharField(choices=TYPE_CHOICES, db_index=True, default='OTHER', max_length=20)),
                ('title', models.CharField(max_length=500)),
                ('description', models.TextField(blank=True, default='')),
                ('is_confidential', models.BooleanField(db_index=True, default=False)),
                ('custom_metadata', models.JSONField(blank=True, default=dict)),
                ('uploaded_by', models.CharField(help_text='User ID of the uploader (sub claim)', max_length=255)),
                ('processing_status', models.CharField(choices=STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('processing_error', models.TextField(blank=True, null=True)),
                ('ai_processed', models.BooleanField(default=False)),
                ('ai_metadata', models.JSONField(blank=True, null=True)),
                ('deleted', models.BooleanField(db_index=True, default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'documents',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='DocumentTag',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, max_length=100)),
                ('document', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tags', to='docs.document')),
            ],
            options={
                'db_table': 'document_tags',
            },
        ),
        migrations.CreateModel(
            name='AnalysisVersion',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tenant_id', models.CharField(db_index=True, max_length=255)),
                ('analysis_type', models.CharField(default='document_analysis', max_length=50)),
                ('status', models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ('payload', models.JSONField(blank=True, null=True)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('ai_model', models.CharField(blank=True, default='', max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('document', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='analysis_versions', to='docs.document')),
            ],
            options={
                'db_table': 'analysis_versions',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddIndex(
            model_name='document',
            index=models.Index(fields=['tenant_id', 'created_at'], name='documents_tenant__0c4d2e_idx'),
        ),
        migrations.AddIndex(
            model_name='document',
            index=models.Index(fields=['tenant_id', 'processing_status', 'created_at'], name='documents_tenant__7a91b3_idx'),
        ),
        migrations.AddConstraint(
            model_name='documenttag',
            constraint=models.UniqueConstraint(fields=('document', 'name'), name='unique_document_tag'),
        ),
        migrations.AddIndex(
            model_name='analysisversion',
            index=models.Index(fields=['document', 'created_at'], name='analysis_ve_documen_5e2f8a_idx'),
        ),
    ]

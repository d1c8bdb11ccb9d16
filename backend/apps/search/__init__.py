"""
Semantic search app.

Provides:
- Query normalization and embedding
- Tenant and confidentiality scoped similarity ranking
"""

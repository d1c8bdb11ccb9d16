"""
URL configuration for the document portal backend.
"""
from django.urls import path, include

from apps.docs import views as docs_views
from apps.docs.health import healthz, readyz

urlpatterns = [
    # Health check endpoints (no auth)
    path('healthz', healthz, name='healthz'),
    path('readyz', readyz, name='readyz'),

    # API routes
    path('api/', include('apps.authn.urls')),
    path('api/documents', docs_views.list_documents, name='documents'),
    path('api/documents/', include('apps.docs.urls')),
    path('api/search/', include('apps.search.urls')),
    path('api/storage/info', docs_views.storage_info, name='storage-info'),
]

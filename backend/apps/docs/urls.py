"""
URL configuration for the docs app.
"""
from django.urls import path
from . import views

app_name = 'docs'

urlpatterns = [
    path('upload', views.upload_document, name='upload'),
    path('process-pending', views.process_pending, name='process-pending'),
    path('', views.list_documents, name='list'),
    path('<uuid:document_id>', views.document_detail, name='detail'),
    path('<uuid:document_id>/download', views.download_document, name='download'),
    path('<uuid:document_id>/analysis', views.document_analysis, name='analysis'),
    path('<uuid:document_id>/versions', views.document_versions, name='versions'),
    path('<uuid:document_id>/process', views.reprocess_document, name='process'),
]

"""
URL configuration for the search app.
"""
from django.urls import path
from . import views

app_name = 'search'

urlpatterns = [
    path('semantic', views.semantic_search, name='semantic'),
]

"""
apps.key_registry.urls
"""
from django.urls import path

from .views import ConfigKeyDetailView, ConfigKeyListCreateView

urlpatterns = [
    path("keys/", ConfigKeyListCreateView.as_view(), name="config-key-list-create"),
    path("keys/<str:key>/", ConfigKeyDetailView.as_view(), name="config-key-detail"),
]

"""
apps.config_core.urls
"""
from django.urls import path

from .views import (
    BulkPutView,
    CacheView,
    ConfigChangeLogView,
    ConfigRecordDeactivateView,
    ConfigValueHistoryView,
    ConfigValueRollbackView,
    ConfigValueView,
    ExportView,
    ImportView,
)

urlpatterns = [
    path("values/<str:key>/", ConfigValueView.as_view(), name="config-value"),
    path("values/<str:key>/history/", ConfigValueHistoryView.as_view(), name="config-value-history"),
    path("values/<str:key>/rollback/", ConfigValueRollbackView.as_view(), name="config-value-rollback"),
    path("values/<str:key>/changes/", ConfigChangeLogView.as_view(), name="config-value-changes"),
    path(
        "records/<int:record_id>/deactivate/",
        ConfigRecordDeactivateView.as_view(),
        name="config-record-deactivate",
    ),
    path("bulk/", BulkPutView.as_view(), name="config-bulk"),
    path("export/", ExportView.as_view(), name="config-export"),
    path("import/", ImportView.as_view(), name="config-import"),
    path("cache/", CacheView.as_view(), name="config-cache"),
]

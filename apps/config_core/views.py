"""
apps.config_core.views
~~~~~~~~~~~~~~~~~~~~~~~
Thin DRF API views over :class:`~apps.config_core.services.engine.ConfigEngine`.
All business logic is delegated to the engine; errors are
:class:`~common.exceptions.AppError` subclasses rendered by the global
exception handler.

Endpoints
---------
GET    /values/{key}/                – Resolve (``?persona=&agent_id=&workflow_id=&as_of=``)
POST   /values/{key}/                – Write a new version
GET    /values/{key}/history/        – Versions of one scope, newest first
POST   /values/{key}/rollback/       – Re-publish an older version
GET    /values/{key}/changes/        – Change log of the key
POST   /records/{id}/deactivate/     – Retire one version
POST   /bulk/                        – Atomic multi-value write
GET    /export/                      – Export document
POST   /import/                      – Import an export document
GET    /cache/                       – Cache statistics
DELETE /cache/                       – Flush the value cache
"""
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from .scope import Scope
from .serializers import (
    BatchResultSerializer,
    BulkPutSerializer,
    CacheStatsSerializer,
    ChangeQuerySerializer,
    ConfigChangeLogSerializer,
    ConfigValueRecordSerializer,
    DeactivateSerializer,
    ErrorResponseSerializer,
    ExportQuerySerializer,
    HistoryQuerySerializer,
    ImportSerializer,
    PutValueSerializer,
    ResolutionSerializer,
    RollbackSerializer,
    ValueQuerySerializer,
)
from .services.engine import get_engine

SCOPE_PARAMETERS = [
    OpenApiParameter("persona", str, required=False),
    OpenApiParameter("agent_id", str, required=False),
    OpenApiParameter("workflow_id", str, required=False),
]


def _actor(request: Request, explicit: str = "") -> str:
    """Audit attribution: the explicit value, else the authenticated user."""
    if explicit:
        return explicit
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.get_username()
    return "system"


def _batch_response(records) -> Response:
    return Response(
        {
            "applied": len(records),
            "records": ConfigValueRecordSerializer(records, many=True).data,
        },
        status=status.HTTP_201_CREATED,
    )


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

class ConfigValueView(APIView):
    """GET / POST /api/v1/values/{key}/"""

    @extend_schema(
        summary="Get Value",
        description=(
            "Resolves the key for the request context: workflow, then agent, "
            "then persona, then global, then the registry default.  A key with "
            "none of these resolves to found=false, value=null."
        ),
        parameters=SCOPE_PARAMETERS + [OpenApiParameter("as_of", str, required=False)],
        responses={200: ResolutionSerializer, 404: ErrorResponseSerializer},
        tags=["Values"],
    )
    def get(self, request: Request, key: str) -> Response:
        query = ValueQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        context = Scope.from_mapping(request.query_params)
        resolution = get_engine().get_value(key, context, as_of=query.validated_data.get("as_of"))
        return Response({**ResolutionSerializer(resolution).data, "context": context.to_dict()})

    @extend_schema(
        summary="Put Value",
        request=PutValueSerializer,
        responses={
            201: ConfigValueRecordSerializer,
            404: ErrorResponseSerializer,
            409: OpenApiResponse(description="Version race lost after retries."),
            422: ErrorResponseSerializer,
        },
        tags=["Values"],
    )
    def post(self, request: Request, key: str) -> Response:
        serializer = PutValueSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vd = serializer.validated_data
        record = get_engine().put_value(
            key,
            Scope.from_mapping(vd["scope"], strict=True),
            vd["value"],
            effective_from=vd["effective_from"],
            created_by=_actor(request, vd["created_by"]),
            reason=vd["reason"],
        )
        return Response(ConfigValueRecordSerializer(record).data, status=status.HTTP_201_CREATED)


class ConfigValueHistoryView(APIView):
    """GET /api/v1/values/{key}/history/"""

    @extend_schema(
        summary="Get History",
        parameters=SCOPE_PARAMETERS + [OpenApiParameter("limit", int, required=False)],
        responses={200: ConfigValueRecordSerializer(many=True), 404: ErrorResponseSerializer},
        tags=["Values"],
    )
    def get(self, request: Request, key: str) -> Response:
        query = HistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        records = get_engine().get_history(
            key,
            Scope.from_mapping(request.query_params),
            limit=query.validated_data.get("limit"),
        )
        return Response(ConfigValueRecordSerializer(records, many=True).data)


class ConfigValueRollbackView(APIView):
    """POST /api/v1/values/{key}/rollback/"""

    @extend_schema(
        summary="Rollback",
        description="Publishes the value of an earlier version as a new version, effective now.",
        request=RollbackSerializer,
        responses={201: ConfigValueRecordSerializer, 404: ErrorResponseSerializer},
        tags=["Values"],
    )
    def post(self, request: Request, key: str) -> Response:
        serializer = RollbackSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vd = serializer.validated_data
        record = get_engine().rollback(
            key,
            Scope.from_mapping(vd["scope"], strict=True),
            vd["version"],
            performed_by=_actor(request, vd["performed_by"]),
            reason=vd["reason"],
        )
        return Response(ConfigValueRecordSerializer(record).data, status=status.HTTP_201_CREATED)


class ConfigChangeLogView(APIView):
    """GET /api/v1/values/{key}/changes/"""

    @extend_schema(
        summary="Change Log",
        parameters=[
            OpenApiParameter("since", str, required=False),
            OpenApiParameter("until", str, required=False),
            OpenApiParameter("limit", int, required=False),
        ],
        responses={200: ConfigChangeLogSerializer(many=True), 404: ErrorResponseSerializer},
        tags=["Values"],
    )
    def get(self, request: Request, key: str) -> Response:
        query = ChangeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        changes = get_engine().get_change_history(key, **query.validated_data)
        return Response(ConfigChangeLogSerializer(changes, many=True).data)


class ConfigRecordDeactivateView(APIView):
    """POST /api/v1/records/{id}/deactivate/"""

    @extend_schema(
        summary="Deactivate Value",
        request=DeactivateSerializer,
        responses={200: ConfigValueRecordSerializer, 404: ErrorResponseSerializer},
        tags=["Values"],
    )
    def post(self, request: Request, record_id: int) -> Response:
        serializer = DeactivateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vd = serializer.validated_data
        record = get_engine().deactivate_value(
            record_id,
            performed_by=_actor(request, vd["performed_by"]),
            reason=vd["reason"],
        )
        return Response(ConfigValueRecordSerializer(record).data)


# ---------------------------------------------------------------------------
# Bulk / export / import
# ---------------------------------------------------------------------------

class BulkPutView(APIView):
    """POST /api/v1/bulk/"""

    @extend_schema(
        summary="Bulk Put",
        description="Applies every item in one transaction, or none of them.",
        request=BulkPutSerializer,
        responses={201: BatchResultSerializer, 422: ErrorResponseSerializer},
        tags=["Bulk"],
    )
    def post(self, request: Request) -> Response:
        serializer = BulkPutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vd = serializer.validated_data
        engine = get_engine()
        records = engine.bulk_put(
            engine.bulk_items(vd["items"]),
            created_by=_actor(request, vd["created_by"]),
            reason=vd["reason"],
        )
        return _batch_response(records)


class ExportView(APIView):
    """GET /api/v1/export/"""

    @extend_schema(
        summary="Export",
        parameters=[OpenApiParameter("category", str, required=False)] + SCOPE_PARAMETERS,
        responses={200: OpenApiResponse(description="Export document (format_version 1).")},
        tags=["Bulk"],
    )
    def get(self, request: Request) -> Response:
        query = ExportQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        scope = Scope.from_mapping(request.query_params)
        document = get_engine().export(
            category=query.validated_data.get("category"),
            scope=None if scope.is_global else scope,
        )
        return Response(document)


class ImportView(APIView):
    """POST /api/v1/import/"""

    @extend_schema(
        summary="Import",
        request=ImportSerializer,
        responses={201: BatchResultSerializer, 422: ErrorResponseSerializer},
        tags=["Bulk"],
    )
    def post(self, request: Request) -> Response:
        serializer = ImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vd = serializer.validated_data
        records = get_engine().import_document(
            vd["document"], created_by=_actor(request, vd["created_by"]), reason=vd["reason"],
        )
        return _batch_response(records)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class CacheView(APIView):
    """GET / DELETE /api/v1/cache/"""

    @extend_schema(summary="Cache Stats", responses={200: CacheStatsSerializer}, tags=["Cache"])
    def get(self, request: Request) -> Response:
        return Response(CacheStatsSerializer(get_engine().cache_stats()).data)

    @extend_schema(summary="Clear Cache", responses={204: None}, tags=["Cache"])
    def delete(self, request: Request) -> Response:
        get_engine().clear_cache()
        return Response(status=status.HTTP_204_NO_CONTENT)

"""
apps.key_registry.views
~~~~~~~~~~~~~~~~~~~~~~~~
DRF views for the key registry – thin layer; all logic delegated to the
config engine, which also drops cached resolutions when a definition changes.

Endpoints
---------
GET    /keys/         – ListKeys (``?category=`` / ``?scope_dimension=``)
POST   /keys/         – define a key
GET    /keys/{key}/   – fetch one definition
PATCH  /keys/{key}/   – edit a definition
DELETE /keys/{key}/   – remove an unused definition
"""
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.config_core.services.engine import get_engine
from .serializers import (
    ConfigKeyCreateSerializer,
    ConfigKeyDefinitionSerializer,
    ConfigKeyUpdateSerializer,
)


class ConfigKeyListCreateView(APIView):
    """GET /api/v1/keys/  –  POST /api/v1/keys/"""

    @extend_schema(
        summary="List Keys",
        parameters=[
            OpenApiParameter("category", str, required=False),
            OpenApiParameter("scope_dimension", str, required=False),
        ],
        responses={200: ConfigKeyDefinitionSerializer(many=True)},
        tags=["Key Registry"],
    )
    def get(self, request: Request) -> Response:
        definitions = get_engine().list_keys(
            category=request.query_params.get("category"),
            scope_dimension=request.query_params.get("scope_dimension"),
        )
        return Response(ConfigKeyDefinitionSerializer(definitions, many=True).data)

    @extend_schema(
        summary="Define Key",
        request=ConfigKeyCreateSerializer,
        responses={
            201: ConfigKeyDefinitionSerializer,
            409: OpenApiResponse(description="The key is already registered."),
            422: OpenApiResponse(description="Unknown type, bad key syntax or default."),
        },
        tags=["Key Registry"],
    )
    def post(self, request: Request) -> Response:
        serializer = ConfigKeyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        definition = get_engine().define_key(**serializer.validated_data)
        return Response(
            ConfigKeyDefinitionSerializer(definition).data,
            status=status.HTTP_201_CREATED,
        )


class ConfigKeyDetailView(APIView):
    """GET / PATCH / DELETE /api/v1/keys/<key>/"""

    @extend_schema(responses={200: ConfigKeyDefinitionSerializer}, tags=["Key Registry"])
    def get(self, request: Request, key: str) -> Response:
        return Response(ConfigKeyDefinitionSerializer(get_engine().get_key(key)).data)

    @extend_schema(
        request=ConfigKeyUpdateSerializer,
        responses={
            200: ConfigKeyDefinitionSerializer,
            409: OpenApiResponse(description="Type change refused: history exists."),
        },
        tags=["Key Registry"],
    )
    def patch(self, request: Request, key: str) -> Response:
        serializer = ConfigKeyUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        definition = get_engine().update_key(key, data=serializer.validated_data)
        return Response(ConfigKeyDefinitionSerializer(definition).data)

    @extend_schema(
        responses={
            204: None,
            409: OpenApiResponse(description="The key is referenced by value history."),
        },
        tags=["Key Registry"],
    )
    def delete(self, request: Request, key: str) -> Response:
        get_engine().remove_key(key)
        return Response(status=status.HTTP_204_NO_CONTENT)

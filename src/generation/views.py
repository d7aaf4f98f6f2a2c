import math

from drf_spectacular.utils import extend_schema
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import permissions, status
from django.conf import settings

from astroluna.exceptions import ServiceError
from astroluna.pagination import limit_offset, max_page_size
from ratelimit.policies import rate_limit
from . import services
from .gemini import GeminiClient, GenerationError
from .models import ContentLibrary, GenerationLog
from .serializers import (
    AstroScopeSerializer,
    ContentLibrarySerializer,
    ContentUpdateSerializer,
    GenerationLogSerializer,
    TarotPathSerializer,
    ZodiacTomeSerializer,
)


class ContentNotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Content not found"
    default_code = "content_not_found"


class GenerateView(APIView):
    """Base for the paid generation endpoints.

    Malformed requests are rejected before they count against the `ai` and
    `user` rate limits.
    """
    service_type = None
    serializer_class = None

    def post(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.generate(request, serializer.validated_data)

    @rate_limit("ai")
    @rate_limit("user")
    def generate(self, request, data):
        return Response(services.run_generation(request.user, self.service_type, data))


@extend_schema(tags=['AI'], request=AstroScopeSerializer)
class AstroScopeGenerateView(GenerateView):
    service_type = GenerationLog.SERVICE_ASTROSCOPE
    serializer_class = AstroScopeSerializer


@extend_schema(tags=['AI'], request=TarotPathSerializer)
class TarotPathGenerateView(GenerateView):
    service_type = GenerationLog.SERVICE_TAROTPATH
    serializer_class = TarotPathSerializer


@extend_schema(tags=['AI'], request=ZodiacTomeSerializer)
class ZodiacTomeGenerateView(GenerateView):
    service_type = GenerationLog.SERVICE_ZODIAC_TOME
    serializer_class = ZodiacTomeSerializer


@extend_schema(tags=['AI'], responses=ContentLibrarySerializer(many=True))
class ContentListView(APIView):

    def get(self, request):
        limit, offset = limit_offset(request)
        items = services.filter_library(request.user, request.query_params)
        return Response({
            "success": True,
            "content": ContentLibrarySerializer(items[offset:offset + limit], many=True).data,
            "pagination": {"limit": limit, "offset": offset, "total": len(items)},
        })


def _owned_content(request, pk) -> ContentLibrary:
    item = ContentLibrary.objects.filter(user=request.user, pk=pk).first()
    if item is None:
        raise ContentNotFound()
    return item


@extend_schema(tags=['AI'], responses=ContentLibrarySerializer)
class ContentDetailView(APIView):

    def get(self, request, pk):
        return Response({"success": True, "content": ContentLibrarySerializer(_owned_content(request, pk)).data})

    @extend_schema(request=ContentUpdateSerializer)
    def patch(self, request, pk):
        item = _owned_content(request, pk)
        serializer = ContentUpdateSerializer(item, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response({"success": True, "content": ContentLibrarySerializer(item).data})

    def delete(self, request, pk):
        _owned_content(request, pk).delete()
        return Response({"success": True, "message": "Content deleted"})


@extend_schema(tags=['AI'], request=None)
class ContentFavoriteView(APIView):

    def post(self, request, pk):
        item = _owned_content(request, pk)
        item.is_favorite = not item.is_favorite
        item.save(update_fields=["is_favorite", "updated_at"])
        return Response({"success": True, "is_favorite": item.is_favorite})


@extend_schema(tags=['AI'])
class LibraryStatsView(APIView):

    def get(self, request):
        return Response({"success": True, "stats": services.library_stats(request.user)})


@extend_schema(tags=['AI'])
class PricingView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response({"success": True, **services.pricing()})


@extend_schema(tags=['AI'], responses=GenerationLogSerializer(many=True))
class GenerationHistoryView(APIView):

    def get(self, request):
        try:
            page = max(1, int(request.query_params.get("page", 1)))
        except (TypeError, ValueError):
            page = 1
        try:
            limit = int(request.query_params.get("limit", 10))
        except (TypeError, ValueError):
            limit = 10
        limit = min(max(1, limit), max_page_size())

        qs = GenerationLog.objects.filter(user=request.user)
        service = request.query_params.get("service")
        if service in services.SERVICES:
            qs = qs.filter(service_type=service)
        total = qs.count()
        offset = (page - 1) * limit
        return Response({
            "success": True,
            "generations": GenerationLogSerializer(qs[offset:offset + limit], many=True).data,
            "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        })


@extend_schema(tags=['AI'])
class GenerationStatsView(APIView):

    def get(self, request):
        return Response({"success": True, **services.usage_stats(request.user)})


@extend_schema(tags=['AI'])
class TestConnectionView(APIView):

    def get(self, request):
        if settings.APP_ENV == "production":
            return Response({"error": "Test endpoint not available in production"}, status=status.HTTP_403_FORBIDDEN)

        config = {"api_key": "configured" if settings.GEMINI_API_KEY else "missing", "model": settings.GEMINI_MODEL}
        client = GeminiClient()
        try:
            text = client.generate_content("Generate a short welcome message for AstroLuna users.", maxOutputTokens=100)
        except GenerationError as e:
            return Response({"success": False, "error": str(e.detail), "config": config})

        return Response({
            "success": True,
            "message": "Gemini API connection successful",
            "demo_mode": client.demo_mode,
            "test_response": text,
            "config": config,
        })

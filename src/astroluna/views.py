"""Unauthenticated service endpoints used by load balancers and deploy tooling."""
from importlib.metadata import PackageNotFoundError, version as dist_version

from drf_spectacular.utils import extend_schema, inline_serializer
from rest_framework import permissions, serializers
from rest_framework.response import Response
from rest_framework.views import APIView

import astroluna

DISTRIBUTION = 'astroluna'


def installed_version() -> str:
    """Version of the installed distribution, or the package's own `__version__` in a source checkout."""
    try:
        return dist_version(DISTRIBUTION)
    except PackageNotFoundError:
        return getattr(astroluna, '__version__', 'dev')


class ServiceInfoView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []


@extend_schema(
    tags=['Service'],
    responses=inline_serializer('Health', {'status': serializers.CharField()}),
)
class HealthCheckView(ServiceInfoView):
    """Liveness check; answers without touching the database or cache."""

    def get(self, request):
        return Response({"status": "ok"})


@extend_schema(
    tags=['Service'],
    responses=inline_serializer('Version', {'version': serializers.CharField()}),
)
class VersionView(ServiceInfoView):
    """Report which AstroLuna release this worker is running."""

    def get(self, request):
        return Response({"version": installed_version()})

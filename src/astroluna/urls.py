"""
URL configuration for astroluna project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.contrib import admin
from django.urls import path, include
from .views import HealthCheckView, VersionView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/health', HealthCheckView.as_view(), name='health-check'),
    path('api/version', VersionView.as_view(), name='version'),
    path("api/auth/", include("account.urls")),
    path("api/credits/", include("credits.urls")),
    path("api/currency/", include("currency.urls")),
    path("api/payments/", include("payments.urls")),
    path("api/ai/", include("generation.urls")),
    path("api/logs/", include("logviewer.urls")),
]

from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView, SpectacularRedocView

urlpatterns += [
    path('api/schema', SpectacularAPIView.as_view(), name='schema'), # OpenAPI 3 schema YAML
    path('swagger', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('redoc', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]

from django.conf import settings
if settings.DEBUG:
    # Serve static files from app 'static/' directories during development
    from django.contrib.staticfiles.urls import staticfiles_urlpatterns

    urlpatterns += staticfiles_urlpatterns()

from drf_spectacular.utils import extend_schema
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import permissions, status
from django.conf import settings
import httpx
import logging

from astroluna.exceptions import ServiceError
from astroluna.pagination import limit_offset
from ratelimit.policies import client_ip
from . import services
from .models import Transaction
from .serializers import (
    CheckoutInitSerializer,
    DemoWebhookSerializer,
    TransactionHistorySerializer,
    TransactionSerializer,
)
from .spc import SPCClient, credentials_summary

logger = logging.getLogger('payments')


class DemoModeOnly(permissions.BasePermission):
    message = "Demo payments are disabled"

    def has_permission(self, request, view):
        return services.demo_mode()


@extend_schema(tags=['Payments'], request=CheckoutInitSerializer)
class CheckoutInitView(APIView):

    def post(self, request):
        serializer = CheckoutInitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.init_checkout(request.user, serializer.validated_data))


@extend_schema(
    tags=['Payments'],
    request=None,
    responses={
        200: {
            'type': 'object',
            'properties': {
                'status': {'type': 'string'},
                'message': {'type': 'string'},
                'already_processed': {'type': 'boolean'},
            }
        }
    }
)
class WebhookView(APIView):
    """Payment notifications from SPC, authenticated by their HMAC signature."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        signature = request.headers.get("X-SPC-Signature") or request.headers.get("X-Signature") or ""
        body = services.process_webhook(request.body, signature, remote_addr=client_ip(request))
        return Response(body)


@extend_schema(tags=['Payments'], responses=TransactionSerializer)
class TransactionStatusView(APIView):

    def get(self, request, tx_id):
        tx = Transaction.objects.filter(user=request.user, tx_id=tx_id).first()
        if tx is None:
            raise services.TransactionNotFound()

        body = {"success": True, "transaction": TransactionSerializer(tx).data}
        if request.query_params.get("refresh") and tx.gateway_transaction_id and not tx.demo_mode:
            body["gateway_status"] = SPCClient().get_payment_status(tx.gateway_transaction_id)
        return Response(body)


@extend_schema(tags=['Payments'], responses=TransactionHistorySerializer(many=True))
class TransactionHistoryView(APIView):

    def get(self, request):
        limit, offset = limit_offset(request)
        qs = Transaction.objects.filter(user=request.user)
        total = qs.count()
        return Response({
            "success": True,
            "transactions": TransactionHistorySerializer(qs[offset:offset + limit], many=True).data,
            "pagination": {"limit": limit, "offset": offset, "total": total},
        })


@extend_schema(tags=['Payments'])
class TestConnectionView(APIView):

    def get(self, request):
        if settings.APP_ENV == "production":
            return Response({"error": "Test endpoint not available in production"}, status=status.HTTP_403_FORBIDDEN)

        try:
            resp = SPCClient().check_health()
        except httpx.HTTPError as e:
            logger.warning("SPC connection test failed: %s", e)
            return Response({"success": False, "error": str(e), "config": credentials_summary()})

        return Response({
            "success": True,
            "spc_status": resp.status_code,
            "spc_ok": resp.is_success,
            "demo_mode": services.demo_mode(),
            "config": credentials_summary(),
        })


@extend_schema(tags=['Payments'], request=DemoWebhookSerializer)
class DemoWebhookView(APIView):
    """Complete a pending demo transaction, standing in for the gateway callback."""
    permission_classes = [DemoModeOnly]
    authentication_classes = []

    def post(self, request):
        tx_id = request.data.get("tx_id")
        if not tx_id:
            raise ServiceError("Missing transaction ID")
        return Response(services.complete_demo_payment(str(tx_id)))


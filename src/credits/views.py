from drf_spectacular.utils import extend_schema
from rest_framework.views import APIView
from rest_framework.response import Response

from astroluna.pagination import limit_offset
from .models import CreditTransaction
from .serializers import CreditTransactionSerializer
from .services import get_balance


@extend_schema(
    tags=['Credits'],
    responses={
        200: {
            'type': 'object',
            'properties': {
                'success': {'type': 'boolean'},
                'balance': {'type': 'integer'},
            }
        }
    }
)
class BalanceView(APIView):

    def get(self, request):
        return Response({"success": True, "balance": get_balance(request.user)})


@extend_schema(tags=['Credits'], responses=CreditTransactionSerializer(many=True))
class CreditTransactionListView(APIView):
    """Credit movements of the current user, newest first."""

    def get(self, request):
        limit, offset = limit_offset(request)
        qs = CreditTransaction.objects.filter(user=request.user)
        total = qs.count()
        rows = qs[offset:offset + limit]
        return Response({
            "success": True,
            "transactions": CreditTransactionSerializer(rows, many=True).data,
            "pagination": {"limit": limit, "offset": offset, "total": total},
        })

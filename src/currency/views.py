from drf_spectacular.utils import extend_schema
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import permissions, status
from django.conf import settings

from . import services
from .serializers import CheckoutQuoteSerializer, ConvertSerializer, QuoteRequestSerializer


def _missing(data, fields):
    return [f for f in fields if data.get(f) in (None, "")]


@extend_schema(
    tags=['Currency'],
    responses={
        200: {
            'type': 'object',
            'properties': {
                'success': {'type': 'boolean'},
                'rates': {'type': 'object'},
                'timestamp': {'type': 'string'},
                'fallback': {'type': 'boolean'},
            }
        }
    }
)
class RatesView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        rates = services.get_exchange_rates()
        body = {"success": True, "rates": rates, "timestamp": rates.get("timestamp")}
        if rates.get("fallback"):
            body["fallback"] = True
        return Response(body)


@extend_schema(tags=['Currency'])
class PricingView(APIView):
    """Credit packages priced in every supported currency."""
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        rates = services.get_exchange_rates()
        return Response({
            "success": True,
            "pricing": services.package_pricing(rates),
            "rates": rates,
            "service_costs": settings.SERVICE_COSTS,
        })


@extend_schema(tags=['Currency'], request=ConvertSerializer)
class ConvertView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        if _missing(request.data, ("amount", "from_currency", "to_currency")):
            return Response(
                {"error": "Missing required parameters: amount, from_currency, to_currency"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = ConvertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        rates = services.get_exchange_rates()
        eur_amount = services.convert_to_eur(data["amount"], data["from_currency"], rates)
        converted = services.convert_from_eur(eur_amount, data["to_currency"], rates)
        return Response({
            "success": True,
            "original_amount": data["amount"],
            "from_currency": data["from_currency"],
            "to_currency": data["to_currency"],
            "converted_amount": round(converted, 2),
            "exchange_rate": services.exchange_rate(data["from_currency"], data["to_currency"], rates),
            "formatted": services.format_currency(converted, data["to_currency"]),
        })


@extend_schema(tags=['Currency'])
class SupportedCurrenciesView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response({"success": True, "currencies": services.CURRENCIES})


@extend_schema(tags=['Currency'], request=QuoteRequestSerializer, responses={200: CheckoutQuoteSerializer})
class CheckoutQuoteView(APIView):
    """Lock a conversion rate for a checkout for a limited time."""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        if _missing(request.data, ("amount_eur", "target_currency")):
            return Response(
                {"error": "Missing required parameters: amount_eur, target_currency"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        quote = services.create_checkout_quote(
            serializer.validated_data["amount_eur"],
            serializer.validated_data["target_currency"],
            user=request.user,
        )
        body = {"success": True, **CheckoutQuoteSerializer(quote).data}
        body["formatted_amount"] = services.format_currency(float(quote.converted_amount), quote.target_currency)
        return Response(body)

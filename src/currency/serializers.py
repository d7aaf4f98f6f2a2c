from rest_framework import serializers
from .models import CheckoutQuote


class ConvertSerializer(serializers.Serializer):
    amount = serializers.FloatField(min_value=0)
    from_currency = serializers.CharField(max_length=3)
    to_currency = serializers.CharField(max_length=3)

    def validate_from_currency(self, value):
        return value.upper()

    def validate_to_currency(self, value):
        return value.upper()


class QuoteRequestSerializer(serializers.Serializer):
    amount_eur = serializers.FloatField(min_value=0.01)
    target_currency = serializers.CharField(max_length=3)

    def validate_target_currency(self, value):
        return value.upper()


class CheckoutQuoteSerializer(serializers.ModelSerializer):
    amount_eur = serializers.FloatField()
    converted_amount = serializers.FloatField()

    class Meta:
        model = CheckoutQuote
        fields = ['quote_id', 'amount_eur', 'target_currency', 'converted_amount', 'rate_used', 'expires_at']
        read_only_fields = fields

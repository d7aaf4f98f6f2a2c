from rest_framework import serializers
from .models import Transaction

CURRENCY_CHOICES = ["EUR", "USD", "GBP"]


class CheckoutInitSerializer(serializers.Serializer):
    credits_amount = serializers.IntegerField(min_value=10, error_messages={"min_value": "Minimum purchase is 10 credits"})
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES)
    email = serializers.EmailField()
    full_name = serializers.CharField(min_length=2)
    phone = serializers.CharField(min_length=8)
    country = serializers.CharField(min_length=2)
    state = serializers.CharField(min_length=2)
    city = serializers.CharField(min_length=2)
    address = serializers.CharField(min_length=5)
    zip_code = serializers.CharField(min_length=3)
    privacy_accepted = serializers.BooleanField()

    def validate_privacy_accepted(self, value):
        if value is not True:
            raise serializers.ValidationError("Privacy policy must be accepted")
        return value


class DemoWebhookSerializer(serializers.Serializer):
    tx_id = serializers.CharField()


class TransactionSerializer(serializers.ModelSerializer):
    id = serializers.CharField(source='tx_id')
    amount_eur = serializers.FloatField()
    amount_currency = serializers.FloatField()

    class Meta:
        model = Transaction
        fields = ['id', 'status', 'amount_eur', 'amount_currency', 'currency', 'created_at', 'updated_at']
        read_only_fields = fields


class TransactionHistorySerializer(TransactionSerializer):
    class Meta(TransactionSerializer.Meta):
        fields = TransactionSerializer.Meta.fields + ['rate_used', 'credits_added', 'demo_mode']
        read_only_fields = fields

from rest_framework import serializers
from .models import CreditTransaction


class CreditTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditTransaction
        fields = ['id', 'amount', 'type', 'description', 'reference', 'balance_after', 'created_at']
        read_only_fields = fields

from django.contrib import admin
from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('tx_id', 'user', 'status', 'amount_eur', 'amount_currency', 'currency', 'credits_added', 'created_at')
    list_filter = ('status', 'currency', 'demo_mode')
    search_fields = ('tx_id', 'gateway_transaction_id', 'user__email')
    readonly_fields = ('gateway_response',)

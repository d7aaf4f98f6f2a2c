from django.contrib import admin
from .models import ExchangeRateSnapshot, CheckoutQuote


@admin.register(ExchangeRateSnapshot)
class ExchangeRateSnapshotAdmin(admin.ModelAdmin):
    list_display = ('fetched_at', 'source', 'rates')
    list_filter = ('source',)


@admin.register(CheckoutQuote)
class CheckoutQuoteAdmin(admin.ModelAdmin):
    list_display = ('quote_id', 'user', 'amount_eur', 'target_currency', 'converted_amount', 'expires_at')
    search_fields = ('quote_id', 'user__email')

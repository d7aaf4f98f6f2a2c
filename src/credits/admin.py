from django.contrib import admin
from .models import Credits, CreditTransaction


@admin.register(Credits)
class CreditsAdmin(admin.ModelAdmin):
    list_display = ('user', 'balance', 'updated_at')
    search_fields = ('user__email',)


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):
    list_display = ('user', 'amount', 'type', 'balance_after', 'reference', 'created_at')
    list_filter = ('type',)
    search_fields = ('user__email', 'reference')

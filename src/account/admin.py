from django.contrib import admin
from .models import User, PasswordResetToken


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'full_name', 'language', 'currency', 'is_verified', 'is_active', 'deleted_at')
    list_filter = ('is_verified', 'is_active', 'language', 'currency')
    search_fields = ('email', 'full_name', 'phone')
    exclude = ('password',)


@admin.register(PasswordResetToken)
class PasswordResetTokenAdmin(admin.ModelAdmin):
    list_display = ('user', 'expires_at', 'used_at', 'created_at')
    search_fields = ('user__email',)

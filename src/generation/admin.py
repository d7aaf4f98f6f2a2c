from django.contrib import admin
from .models import ContentLibrary, GenerationLog


@admin.register(GenerationLog)
class GenerationLogAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'service_type', 'status', 'total_cost', 'processing_time_ms', 'created_at')
    list_filter = ('service_type', 'status')
    search_fields = ('user__email', 'result_id')
    readonly_fields = ('created_at',)


@admin.register(ContentLibrary)
class ContentLibraryAdmin(admin.ModelAdmin):
    list_display = ('title', 'user', 'content_type', 'is_favorite', 'created_at')
    list_filter = ('content_type', 'is_favorite')
    search_fields = ('title', 'user__email')

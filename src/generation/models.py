import json

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

PREVIEW_LENGTH = 200


class GenerationLog(models.Model):
    """One paid generation request and its outcome."""
    SERVICE_ASTROSCOPE = "astroscope"
    SERVICE_TAROTPATH = "tarotpath"
    SERVICE_ZODIAC_TOME = "zodiac_tome"
    SERVICE_CHOICES = [
        (SERVICE_ASTROSCOPE, "AstroScope"),
        (SERVICE_TAROTPATH, "TarotPath"),
        (SERVICE_ZODIAC_TOME, "ZodiacTome"),
    ]

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="generation_logs")
    service_type = models.CharField(max_length=32, choices=SERVICE_CHOICES, db_index=True)
    params = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    base_cost = models.PositiveIntegerField()
    total_cost = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    # ContentLibrary id once completed
    result_id = models.CharField(max_length=64, blank=True)
    error = models.TextField(blank=True)
    processing_time_ms = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = "Generation Log"
        verbose_name_plural = "Generation Logs"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.service_type} #{self.pk} ({self.status})"


class ContentLibrary(models.Model):
    """Generated content saved to the user's library."""
    TYPE_HOROSCOPE = "horoscope"
    TYPE_TAROT_READING = "tarot_reading"
    TYPE_ZODIAC_INFO = "zodiac_info"
    TYPE_CHOICES = [
        (TYPE_HOROSCOPE, "Horoscope"),
        (TYPE_TAROT_READING, "Tarot reading"),
        (TYPE_ZODIAC_INFO, "Zodiac info"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="library_items")
    generation = models.ForeignKey(
        GenerationLog, on_delete=models.SET_NULL, null=True, blank=True, related_name="content_items"
    )
    content_type = models.CharField(max_length=32, choices=TYPE_CHOICES, db_index=True)
    title = models.CharField(max_length=255)
    content = models.JSONField(encoder=DjangoJSONEncoder)
    meta = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    is_favorite = models.BooleanField(default=False)
    tags = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Library Item"
        verbose_name_plural = "Content Library"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.title

    @property
    def preview(self) -> str:
        text = self.content if isinstance(self.content, str) else json.dumps(self.content, ensure_ascii=False)
        return text[:PREVIEW_LENGTH] + "..."

from django.conf import settings
from rest_framework import serializers

from .models import ContentLibrary, GenerationLog
from .prompts import ZODIAC_SIGNS


def normalize_sign(value: str) -> str:
    sign = value.strip().capitalize()
    if sign not in ZODIAC_SIGNS:
        raise serializers.ValidationError(f"Unknown zodiac sign: {value}")
    return sign


class GenerateRequestSerializer(serializers.Serializer):
    language = serializers.ChoiceField(choices=settings.SUPPORTED_LANGUAGES, default="en")


class AstroScopeSerializer(GenerateRequestSerializer):
    type = serializers.ChoiceField(choices=["quick", "personalized"])
    zodiac_sign = serializers.CharField(required=False)
    birth_date = serializers.DateField(required=False)
    birth_time = serializers.CharField(required=False, allow_blank=True, max_length=16)
    birth_place = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_zodiac_sign(self, value):
        return normalize_sign(value)

    def validate(self, attrs):
        if attrs["type"] == "quick" and not attrs.get("zodiac_sign"):
            raise serializers.ValidationError({"zodiac_sign": "Zodiac sign is required for quick horoscope"})
        if attrs["type"] == "personalized" and not attrs.get("birth_date"):
            raise serializers.ValidationError({"birth_date": "Birth date is required for personalized horoscope"})
        return attrs


class TarotPathSerializer(GenerateRequestSerializer):
    question = serializers.CharField(max_length=500)
    reading_type = serializers.CharField(max_length=50)
    spread_type = serializers.CharField(max_length=50)
    selected_cards = serializers.ListField(
        child=serializers.IntegerField(min_value=0),
        min_length=5,
        max_length=5,
        error_messages={"min_length": "Must select 5 cards", "max_length": "Must select exactly 5 cards"},
    )


class ZodiacTomeSerializer(GenerateRequestSerializer):
    zodiac_sign = serializers.CharField()
    analysis_type = serializers.ChoiceField(choices=["compatibility", "insights"])
    target_sign = serializers.CharField(required=False)

    def validate_zodiac_sign(self, value):
        return normalize_sign(value)

    def validate_target_sign(self, value):
        return normalize_sign(value)

    def validate(self, attrs):
        if attrs["analysis_type"] == "compatibility" and not attrs.get("target_sign"):
            raise serializers.ValidationError({"target_sign": "Target sign is required for compatibility analysis"})
        return attrs


class ContentLibrarySerializer(serializers.ModelSerializer):
    preview = serializers.CharField(read_only=True)

    class Meta:
        model = ContentLibrary
        fields = [
            'id', 'generation', 'content_type', 'title', 'content', 'meta',
            'is_favorite', 'tags', 'preview', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class ContentUpdateSerializer(serializers.ModelSerializer):
    title = serializers.CharField(max_length=255, required=False)
    tags = serializers.ListField(child=serializers.CharField(max_length=50), required=False, max_length=20)
    is_favorite = serializers.BooleanField(required=False)

    class Meta:
        model = ContentLibrary
        fields = ['title', 'tags', 'is_favorite']


class GenerationLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = GenerationLog
        fields = [
            'id', 'service_type', 'params', 'base_cost', 'total_cost', 'status',
            'result_id', 'error', 'processing_time_ms', 'created_at',
        ]
        read_only_fields = fields

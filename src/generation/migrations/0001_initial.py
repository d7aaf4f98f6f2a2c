import django.core.serializers.json
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GenerationLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("service_type", models.CharField(choices=[("astroscope", "AstroScope"), ("tarotpath", "TarotPath"), ("zodiac_tome", "ZodiacTome")], db_index=True, max_length=32)),
                ("params", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("base_cost", models.PositiveIntegerField()),
                ("total_cost", models.PositiveIntegerField()),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed")], db_index=True, default="pending", max_length=16)),
                ("result_id", models.CharField(blank=True, max_length=64)),
                ("error", models.TextField(blank=True)),
                ("processing_time_ms", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="generation_logs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Generation Log",
                "verbose_name_plural": "Generation Logs",
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="ContentLibrary",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("content_type", models.CharField(choices=[("horoscope", "Horoscope"), ("tarot_reading", "Tarot reading"), ("zodiac_info", "Zodiac info")], db_index=True, max_length=32)),
                ("title", models.CharField(max_length=255)),
                ("content", models.JSONField(encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("meta", models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("is_favorite", models.BooleanField(default=False)),
                ("tags", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("generation", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="content_items", to="generation.generationlog")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="library_items", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Library Item",
                "verbose_name_plural": "Content Library",
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]

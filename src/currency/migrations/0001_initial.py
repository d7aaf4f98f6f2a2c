import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ExchangeRateSnapshot",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("rates", models.JSONField()),
                ("source", models.CharField(choices=[("nbu", "National Bank of Ukraine"), ("fallback", "Fallback")], default="nbu", max_length=16)),
                ("fetched_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                "verbose_name": "Exchange Rate Snapshot",
                "verbose_name_plural": "Exchange Rate Snapshots",
                "ordering": ["-fetched_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="CheckoutQuote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quote_id", models.CharField(max_length=64, unique=True)),
                ("amount_eur", models.DecimalField(decimal_places=2, max_digits=12)),
                ("target_currency", models.CharField(max_length=3)),
                ("converted_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("rate_used", models.FloatField()),
                ("rates_snapshot", models.JSONField()),
                ("expires_at", models.DateTimeField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="checkout_quotes", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Checkout Quote",
                "verbose_name_plural": "Checkout Quotes",
                "ordering": ["-created_at"],
            },
        ),
    ]

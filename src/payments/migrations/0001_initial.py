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
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tx_id", models.CharField(max_length=64, unique=True)),
                ("amount_eur", models.DecimalField(decimal_places=2, max_digits=12)),
                ("amount_currency", models.DecimalField(decimal_places=2, max_digits=14)),
                ("currency", models.CharField(max_length=3)),
                ("rate_used", models.FloatField()),
                ("rates_timestamp", models.CharField(blank=True, max_length=64)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("cancelled", "Cancelled")], db_index=True, default="pending", max_length=16)),
                ("gateway_transaction_id", models.CharField(blank=True, db_index=True, max_length=128)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("credits_added", models.IntegerField(default=0)),
                ("demo_mode", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payment_transactions", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]

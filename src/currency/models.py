from django.conf import settings
from django.db import models
from django.utils import timezone


class ExchangeRateSnapshot(models.Model):
    """EUR-based rates as fetched (or substituted) at `fetched_at`."""
    SOURCE_NBU = "nbu"
    SOURCE_FALLBACK = "fallback"
    SOURCE_CHOICES = [
        (SOURCE_NBU, "National Bank of Ukraine"),
        (SOURCE_FALLBACK, "Fallback"),
    ]

    rates = models.JSONField()
    source = models.CharField(max_length=16, choices=SOURCE_CHOICES, default=SOURCE_NBU)
    fetched_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = "Exchange Rate Snapshot"
        verbose_name_plural = "Exchange Rate Snapshots"
        ordering = ["-fetched_at", "-id"]

    def __str__(self):
        return f"{self.source} rates @ {self.fetched_at:%Y-%m-%d %H:%M}"

    @property
    def is_fallback(self) -> bool:
        return self.source == self.SOURCE_FALLBACK


class CheckoutQuote(models.Model):
    """A conversion locked in for a checkout until `expires_at`."""
    quote_id = models.CharField(max_length=64, unique=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="checkout_quotes"
    )
    amount_eur = models.DecimalField(max_digits=12, decimal_places=2)
    target_currency = models.CharField(max_length=3)
    converted_amount = models.DecimalField(max_digits=14, decimal_places=2)
    rate_used = models.FloatField()
    rates_snapshot = models.JSONField()
    expires_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Checkout Quote"
        verbose_name_plural = "Checkout Quotes"
        ordering = ["-created_at"]

    def __str__(self):
        return self.quote_id

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at

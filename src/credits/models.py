from django.conf import settings
from django.db import models


class Credits(models.Model):
    """Per-user credit balance. The check constraint keeps it non-negative."""
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="credits")
    balance = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Credits"
        verbose_name_plural = "Credits"
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name="credits_balance_non_negative"),
        ]

    def __str__(self):
        return f"{self.user_id}: {self.balance}"


class CreditTransaction(models.Model):
    """Audit row for every balance movement (signed amount)."""
    TYPE_PURCHASE = "purchase"
    TYPE_USAGE = "usage"
    TYPE_BONUS = "bonus"
    TYPE_REFUND = "refund"

    TYPE_CHOICES = [
        (TYPE_PURCHASE, "Purchase"),
        (TYPE_USAGE, "Usage"),
        (TYPE_BONUS, "Bonus"),
        (TYPE_REFUND, "Refund"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="credit_transactions")
    amount = models.IntegerField()
    type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    description = models.CharField(max_length=255, blank=True)
    # e.g. a payment tx_id or generation log id
    reference = models.CharField(max_length=128, blank=True)
    balance_after = models.IntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name = "Credit Transaction"
        verbose_name_plural = "Credit Transactions"

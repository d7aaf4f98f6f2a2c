"""Credit balance operations.

Deduction is a single conditional UPDATE (``balance >= amount``); whether it
succeeded is read from the affected-row count, so concurrent requests can
never drive a balance negative.
"""
from django.db import transaction
from django.db.models import F

from astroluna.exceptions import ServiceError
from .models import Credits, CreditTransaction
import logging
logger = logging.getLogger('credits')


class InsufficientCredits(ServiceError):
    status_code = 402
    default_detail = "Insufficient credits"
    default_code = "insufficient_credits"

    def __init__(self, required: int, current: int):
        super().__init__(required=required, current=current)
        self.required = required
        self.current = current


def get_balance(user) -> int:
    balance = Credits.objects.filter(user=user).values_list("balance", flat=True).first()
    return balance or 0


def require_credits(user, amount: int) -> int:
    """Return the current balance, raising `InsufficientCredits` when it is below `amount`."""
    balance = get_balance(user)
    if balance < amount:
        raise InsufficientCredits(required=amount, current=balance)
    return balance


def deduct_credits(user, amount: int, description: str = "", reference: str = "") -> bool:
    if amount <= 0:
        raise ValueError("amount must be positive")

    with transaction.atomic():
        updated = Credits.objects.filter(user=user, balance__gte=amount).update(balance=F("balance") - amount)
        if updated != 1:
            logger.info("deduct_credits: refused %s credits for user id=%s", amount, user.pk)
            return False
        balance_after = get_balance(user)
        CreditTransaction.objects.create(
            user=user,
            amount=-amount,
            type=CreditTransaction.TYPE_USAGE,
            description=description,
            reference=reference,
            balance_after=balance_after,
        )
    logger.info("deduct_credits: user id=%s -%s (balance %s)", user.pk, amount, balance_after)
    return True


def add_credits(user, amount: int, type: str = CreditTransaction.TYPE_PURCHASE,
                description: str = "", reference: str = "") -> int:
    """Credit `amount` to the user and return the new balance."""
    if amount <= 0:
        raise ValueError("amount must be positive")

    with transaction.atomic():
        Credits.objects.get_or_create(user=user)
        Credits.objects.filter(user=user).update(balance=F("balance") + amount)
        balance_after = get_balance(user)
        CreditTransaction.objects.create(
            user=user,
            amount=amount,
            type=type,
            description=description,
            reference=reference,
            balance_after=balance_after,
        )
    logger.info("add_credits: user id=%s +%s (%s, balance %s)", user.pk, amount, type, balance_after)
    return balance_after

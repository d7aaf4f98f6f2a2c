"""Checkout and webhook processing.

A webhook is applied under a row lock on its transaction. Only a ``pending``
transaction changes state; a completed, failed or cancelled one is left as is
and the notification is acknowledged as already processed, so retries from
the gateway can never credit a purchase twice.
"""
import secrets
import time
from decimal import Decimal, ROUND_HALF_UP
from urllib.parse import urlencode

from django.conf import settings
from django.db import transaction
from rest_framework import status
import logging

from astroluna.exceptions import ServiceError
from credits.models import CreditTransaction
from credits.services import add_credits
from currency.services import convert_from_eur, get_exchange_rates
from .models import Transaction
from .spc import (
    PaymentGatewayError,
    SPCClient,
    calculate_credits,
    has_valid_credentials,
    parse_webhook_payload,
    verify_webhook_signature,
)

logger = logging.getLogger('payments')
security_logger = logging.getLogger('security')

SUCCESS_STATUSES = ("completed", "success", "succeeded")
FAILURE_STATUSES = ("failed", "declined", "error")
CANCEL_STATUSES = ("cancelled", "canceled")

CENTS = Decimal("0.01")


class InvalidSignature(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid signature"
    default_code = "invalid_signature"


class InvalidPayload(ServiceError):
    default_detail = "Invalid payload"
    default_code = "invalid_payload"


class TransactionNotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Transaction not found"
    default_code = "transaction_not_found"


def new_tx_id() -> str:
    return f"astroluna_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def demo_mode() -> bool:
    return not has_valid_credentials()


def init_checkout(user, data: dict) -> dict:
    """Create a pending transaction for `data["credits_amount"]` and register it with the gateway."""
    rates = get_exchange_rates()
    currency = data["currency"]
    eur_amount = (Decimal(data["credits_amount"]) / settings.CREDITS_PER_EUR).quantize(CENTS, ROUND_HALF_UP)
    credits = calculate_credits(eur_amount)
    converted = convert_from_eur(float(eur_amount), currency, rates)
    amount_currency = Decimal(str(converted)).quantize(CENTS, ROUND_HALF_UP)
    is_demo = demo_mode()

    tx = Transaction.objects.create(
        user=user,
        tx_id=new_tx_id(),
        amount_eur=eur_amount,
        amount_currency=amount_currency,
        currency=currency,
        rate_used=float(rates[currency]),
        rates_timestamp=str(rates.get("timestamp", "")),
        demo_mode=is_demo,
    )

    if is_demo:
        logger.info("checkout %s: demo mode (SPC credentials not configured)", tx.tx_id)
        query = urlencode({"tx": tx.tx_id, "amount": str(amount_currency), "currency": currency})
        gateway = {
            "transaction_id": f"demo_{int(time.time() * 1000)}",
            "payment_url": f"/api/payments/checkout/demo-payment?{query}",
            "widget_config": {"demo": True, "message": "Demo mode - no real payment will be processed"},
        }
    else:
        try:
            gateway = SPCClient().create_payment_widget(
                order_id=tx.tx_id,
                amount=amount_currency,
                currency=currency,
                customer=data,
                description=f"AstroLuna Credits Purchase - {eur_amount} EUR",
            )
        except PaymentGatewayError as e:
            tx.status = Transaction.STATUS_FAILED
            tx.gateway_response = {"error": e.extra.get("details") or str(e.detail)}
            tx.save(update_fields=["status", "gateway_response", "updated_at"])
            raise

    tx.gateway_transaction_id = gateway["transaction_id"] or ""
    tx.gateway_response = {
        "gateway_transaction_id": gateway["transaction_id"],
        "payment_url": gateway["payment_url"],
        "demo_mode": is_demo,
    }
    tx.save(update_fields=["gateway_transaction_id", "gateway_response", "updated_at"])
    logger.info("checkout %s: user id=%s %s EUR -> %s %s", tx.tx_id, user.pk, eur_amount, amount_currency, currency)

    return {
        "success": True,
        "transaction_id": tx.tx_id,
        "payment_url": gateway["payment_url"],
        "widget_config": gateway["widget_config"],
        "order_summary": {
            "credits_purchased": credits["credits"],
            "bonus_credits": credits["bonus"],
            "total_credits": credits["total"],
            "amount_eur": float(eur_amount),
            "amount_currency": float(amount_currency),
            "currency": currency,
            "exchange_rate": float(rates[currency]),
        },
    }


def complete_transaction(tx: Transaction, details: dict) -> int:
    """Credit the purchase. The caller holds the row lock and has checked `tx` is pending."""
    credits = calculate_credits(tx.amount_eur)
    add_credits(
        tx.user,
        credits["total"],
        type=CreditTransaction.TYPE_PURCHASE,
        description=f"Credits purchase: {credits['credits']} + {credits['bonus']} bonus",
        reference=tx.tx_id,
    )
    tx.status = Transaction.STATUS_COMPLETED
    tx.credits_added = credits["total"]
    tx.gateway_response = {**(tx.gateway_response or {}), **details, "credits_added": credits["total"]}
    tx.save(update_fields=["status", "credits_added", "gateway_response", "updated_at"])
    logger.info("transaction %s completed: +%s credits for user id=%s", tx.tx_id, credits["total"], tx.user_id)
    return credits["total"]


def _locked_transaction(event: dict):
    qs = Transaction.objects.select_for_update().select_related("user")
    if event.get("order_id"):
        tx = qs.filter(tx_id=event["order_id"]).first()
        if tx is not None:
            return tx
    if event.get("transaction_id"):
        return qs.filter(gateway_transaction_id=event["transaction_id"]).first()
    return None


def apply_webhook_event(event: dict) -> dict:
    with transaction.atomic():
        tx = _locked_transaction(event)
        if tx is None:
            logger.warning("webhook: transaction not found (order_id=%s)", event.get("order_id"))
            raise TransactionNotFound()

        body = {"status": "ok", "message": "Webhook processed successfully"}
        new_status = str(event["status"]).lower()
        known = new_status in SUCCESS_STATUSES + FAILURE_STATUSES + CANCEL_STATUSES
        if known and tx.is_terminal:
            logger.info("webhook: transaction %s already %s, ignoring '%s'", tx.tx_id, tx.status, new_status)
            body["already_processed"] = True
            return body

        if new_status in SUCCESS_STATUSES:
            complete_transaction(tx, {"webhook_data": event})
        elif new_status in FAILURE_STATUSES:
            tx.status = Transaction.STATUS_FAILED
            tx.gateway_response = {
                **(tx.gateway_response or {}),
                "webhook_data": event,
                "error_code": event.get("error_code"),
                "error_message": event.get("error_message"),
            }
            tx.save(update_fields=["status", "gateway_response", "updated_at"])
            logger.info("payment failed for transaction %s: %s", tx.tx_id, event.get("error_message"))
        elif new_status in CANCEL_STATUSES:
            tx.status = Transaction.STATUS_CANCELLED
            tx.gateway_response = {**(tx.gateway_response or {}), "webhook_data": event}
            tx.save(update_fields=["status", "gateway_response", "updated_at"])
            logger.info("payment cancelled for transaction %s", tx.tx_id)
        else:
            logger.info("unknown payment status '%s' for transaction %s", event["status"], tx.tx_id)
        return body


def process_webhook(raw_body: bytes, signature: str, remote_addr: str = "") -> dict:
    if not verify_webhook_signature(raw_body, signature, settings.SPC_SEC_KEY):
        security_logger.warning("invalid webhook signature", extra={"ip": remote_addr})
        raise InvalidSignature()

    event = parse_webhook_payload(raw_body)
    if event is None:
        raise InvalidPayload()

    logger.info("processing webhook %s for order %s: %s", event["event"], event.get("order_id"), event["status"])
    return apply_webhook_event(event)


def complete_demo_payment(tx_id: str) -> dict:
    with transaction.atomic():
        tx = Transaction.objects.select_for_update().select_related("user").filter(tx_id=tx_id).first()
        if tx is None:
            raise TransactionNotFound()
        if tx.status != Transaction.STATUS_PENDING:
            return {"success": True, "demo": True, "already_processed": True}
        credits_added = complete_transaction(tx, {"demo": True})
    return {"success": True, "demo": True, "credits_added": credits_added}

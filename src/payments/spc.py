"""SecurePayCard (SPC) gateway client.

Outgoing requests are signed with HMAC-SHA256 over the sorted ``key=value``
pairs of the payload; incoming webhooks are signed over the raw body.
"""
import hashlib
import hmac
import json
import math
import time
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings
from django.utils import timezone
import logging

from astroluna.exceptions import ServiceError

logger = logging.getLogger('payments')

PLACEHOLDER_MARKERS = ("placeholder",)
PLACEHOLDER_SECRET_MARKER = "SEC-AA"


class PaymentGatewayError(ServiceError):
    default_detail = "Payment initialization failed"
    default_code = "payment_gateway_error"


def _signature_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def generate_signature(data: dict, secret: str) -> str:
    message = "&".join(
        f"{key}={_signature_value(data[key])}"
        for key in sorted(data)
        if data[key] is not None
    )
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body, signature: Optional[str], secret: Optional[str]) -> bool:
    if not signature or not secret:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode()
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def parse_webhook_payload(raw) -> Optional[dict]:
    """Normalise an SPC webhook body, or return None when it is not a JSON object."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("webhook payload is not valid JSON")
        return None
    if not isinstance(data, dict):
        return None

    error = data.get("error") if isinstance(data.get("error"), dict) else {}
    return {
        "event": data.get("event") or "payment.updated",
        "transaction_id": data.get("transaction_id") or data.get("id"),
        "order_id": data.get("order_id") or data.get("merchant_order_id"),
        "status": data.get("status") or "unknown",
        "amount": data.get("amount") or 0,
        "currency": data.get("currency") or "EUR",
        "timestamp": data.get("timestamp") or timezone.now().isoformat(),
        "payment_method": data.get("payment_method"),
        "error_code": error.get("code"),
        "error_message": error.get("message"),
    }


def _bonus_percent(eur_amount: Decimal) -> int:
    if eur_amount >= 2000:
        return 60
    if eur_amount >= 500:
        return 40
    if eur_amount >= 100:
        return 20
    if eur_amount >= 20:
        return 10
    return 0


def calculate_credits(amount_eur) -> dict:
    """Credits bought for `amount_eur`: package credits plus package bonus, else 10/EUR with tiered bonus."""
    eur = Decimal(str(amount_eur))
    for pkg in settings.CREDIT_PACKAGES:
        if Decimal(str(pkg["eur_amount"])) == eur:
            bonus = pkg["credits"] * pkg["bonus_percent"] // 100
            return {"credits": pkg["credits"], "bonus": bonus, "total": pkg["credits"] + bonus}

    credits = math.floor(eur * settings.CREDITS_PER_EUR)
    bonus = credits * _bonus_percent(eur) // 100
    return {"credits": credits, "bonus": bonus, "total": credits + bonus}


def has_valid_credentials() -> bool:
    """False when any SPC credential is missing or still a placeholder (demo mode)."""
    terminal_id = settings.SPC_TERMINAL_ID
    pub_key = settings.SPC_PUB_KEY
    sec_key = settings.SPC_SEC_KEY
    if not (terminal_id and pub_key and sec_key):
        return False
    if any(marker in value for marker in PLACEHOLDER_MARKERS for value in (terminal_id, pub_key, sec_key)):
        return False
    return PLACEHOLDER_SECRET_MARKER not in sec_key


def credentials_summary() -> dict:
    return {
        "terminal_id": "configured" if settings.SPC_TERMINAL_ID else "missing",
        "pub_key": "configured" if settings.SPC_PUB_KEY else "missing",
        "sec_key": "configured" if settings.SPC_SEC_KEY else "missing",
    }


class SPCClient:

    def __init__(self, base_url=None, terminal_id=None, pub_key=None, sec_key=None, timeout=None):
        self.base_url = (base_url or settings.SPC_API_BASE).rstrip("/")
        self.terminal_id = terminal_id or settings.SPC_TERMINAL_ID
        self.pub_key = pub_key or settings.SPC_PUB_KEY
        self.sec_key = sec_key or settings.SPC_SEC_KEY
        self.timeout = timeout or settings.SPC_HTTP_TIMEOUT

    def _headers(self, signature: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.pub_key}",
            "X-Terminal-ID": self.terminal_id,
        }
        if signature:
            headers["X-Signature"] = signature
        return headers

    def create_payment_widget(self, order_id: str, amount, currency: str, customer: dict, description: str = "") -> dict:
        """Register the payment with SPC and return its widget details.

        `amount` is in major units of `currency`; SPC expects cents.
        """
        base_url = settings.BASE_URL
        payload = {
            "terminal_id": self.terminal_id,
            "amount": int((Decimal(str(amount)) * 100).to_integral_value()),
            "currency": currency,
            "order_id": order_id,
            "description": description,
            "customer": {
                "email": customer.get("email"),
                "name": customer.get("full_name"),
                "phone": customer.get("phone"),
                "billing_address": {
                    "country": customer.get("country"),
                    "state": customer.get("state"),
                    "city": customer.get("city"),
                    "address": customer.get("address"),
                    "zip": customer.get("zip_code"),
                },
            },
            "callback_url": f"{base_url}/api/payments/webhook",
            "return_url": f"{base_url}/checkout/success",
            "cancel_url": f"{base_url}/checkout/cancel",
            "timestamp": int(time.time()),
        }
        signature = generate_signature(payload, self.sec_key)

        try:
            resp = httpx.post(
                f"{self.base_url}/transactions/widget",
                json=payload,
                headers=self._headers(signature),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error("SPC widget request failed for %s: %s", order_id, e)
            raise PaymentGatewayError(details=f"SPC request failed: {e}") from e

        if not resp.is_success:
            try:
                message = resp.json().get("message")
            except ValueError:
                message = None
            logger.warning("SPC widget request for %s returned %s", order_id, resp.status_code)
            raise PaymentGatewayError(
                details=f"SPC API Error: {resp.status_code} - {message or 'Payment creation failed'}"
            )

        result = resp.json()
        return {
            "transaction_id": result.get("transaction_id") or order_id,
            "payment_url": result.get("payment_url") or result.get("widget_url"),
            "widget_config": result.get("widget_config"),
        }

    def get_payment_status(self, gateway_id: str) -> dict:
        try:
            resp = httpx.get(f"{self.base_url}/transactions/{gateway_id}", headers=self._headers(), timeout=self.timeout)
        except httpx.HTTPError as e:
            raise PaymentGatewayError("Payment status check failed", details=str(e)) from e
        if not resp.is_success:
            raise PaymentGatewayError("Payment status check failed", details=f"SPC API Error: {resp.status_code}")

        result = resp.json()
        return {
            "status": result.get("status") or "unknown",
            "amount": result.get("amount"),
            "currency": result.get("currency"),
            "payment_method": result.get("payment_method"),
        }

    def check_health(self) -> httpx.Response:
        return httpx.get(f"{self.base_url}/health", headers=self._headers(), timeout=self.timeout)

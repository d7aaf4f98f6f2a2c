"""
Tests for SPC signing, credit calculation, checkout and webhook processing.
"""
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
from rest_framework import status
from rest_framework.test import APIClient

from astroluna.testing import AuthenticatedTestCase, BaseTestCase
from credits.models import CreditTransaction
from credits.services import get_balance
from .models import Transaction
from .spc import (
    calculate_credits,
    generate_signature,
    has_valid_credentials,
    parse_webhook_payload,
    verify_webhook_signature,
)

STATIC_RATES = {"EUR": 1.0, "USD": 1.1, "GBP": 0.8, "timestamp": "2026-10-01T00:00:00+00:00"}
WEBHOOK_SECRET = "sk_test_webhook"
LIVE_CREDENTIALS = {"SPC_TERMINAL_ID": "term-001", "SPC_PUB_KEY": "pk_live_123", "SPC_SEC_KEY": "sk_live_456"}


def checkout_payload(**overrides):
    data = {
        "credits_amount": 200,
        "currency": "USD",
        "email": "buyer@example.com",
        "full_name": "Buyer Name",
        "phone": "+34600111222",
        "country": "ES",
        "state": "Madrid",
        "city": "Madrid",
        "address": "Calle Mayor 1",
        "zip_code": "28013",
        "privacy_accepted": True,
    }
    data.update(overrides)
    return data


def sign(body: str, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


class TestSignatures(BaseTestCase):

    def test_generate_signature_sorts_and_skips_nulls(self):
        data = {"b": {"x": 1, "y": [1, 2]}, "a": 5, "c": None, "d": True}
        expected = hmac.new(
            b"secret", b'a=5&b={"x":1,"y":[1,2]}&d=true', hashlib.sha256
        ).hexdigest()
        self.assertEqual(generate_signature(data, "secret"), expected)

    def test_verify_webhook_signature(self):
        body = '{"status":"completed"}'
        self.assertTrue(verify_webhook_signature(body.encode(), sign(body), WEBHOOK_SECRET))
        self.assertTrue(verify_webhook_signature(body, sign(body).upper(), WEBHOOK_SECRET))
        self.assertFalse(verify_webhook_signature(body, sign(body, "other"), WEBHOOK_SECRET))
        self.assertFalse(verify_webhook_signature(body, "", WEBHOOK_SECRET))
        self.assertFalse(verify_webhook_signature(body, sign(body), ""))

    def test_parse_webhook_payload_defaults(self):
        event = parse_webhook_payload('{"id": "gw_1", "merchant_order_id": "astroluna_1"}')
        self.assertEqual(event["event"], "payment.updated")
        self.assertEqual(event["transaction_id"], "gw_1")
        self.assertEqual(event["order_id"], "astroluna_1")
        self.assertEqual(event["status"], "unknown")
        self.assertEqual(event["amount"], 0)
        self.assertEqual(event["currency"], "EUR")
        self.assertIsNotNone(event["timestamp"])
        self.assertIsNone(event["payment_method"])

    def test_parse_webhook_payload_error_fields(self):
        event = parse_webhook_payload(json.dumps({
            "order_id": "astroluna_1", "status": "declined",
            "error": {"code": "card_declined", "message": "Card was declined"},
        }))
        self.assertEqual(event["error_code"], "card_declined")
        self.assertEqual(event["error_message"], "Card was declined")

    def test_parse_invalid_payload(self):
        self.assertIsNone(parse_webhook_payload("not json"))
        self.assertIsNone(parse_webhook_payload("[1, 2]"))


class TestCalculateCredits(BaseTestCase):

    def test_package_amounts(self):
        self.assertEqual(calculate_credits(5), {"credits": 50, "bonus": 0, "total": 50})
        self.assertEqual(calculate_credits(20), {"credits": 220, "bonus": 22, "total": 242})
        self.assertEqual(calculate_credits(Decimal("100.00")), {"credits": 1200, "bonus": 240, "total": 1440})
        self.assertEqual(calculate_credits(2000), {"credits": 32000, "bonus": 19200, "total": 51200})

    def test_other_amounts_use_tiers(self):
        self.assertEqual(calculate_credits(7.5), {"credits": 75, "bonus": 0, "total": 75})
        self.assertEqual(calculate_credits(30), {"credits": 300, "bonus": 30, "total": 330})
        self.assertEqual(calculate_credits(150), {"credits": 1500, "bonus": 300, "total": 1800})
        self.assertEqual(calculate_credits(600), {"credits": 6000, "bonus": 2400, "total": 8400})
        self.assertEqual(calculate_credits(2500), {"credits": 25000, "bonus": 15000, "total": 40000})

    def test_credentials_detection(self):
        with self.settings(SPC_TERMINAL_ID="", SPC_PUB_KEY="", SPC_SEC_KEY=""):
            self.assertFalse(has_valid_credentials())
        with self.settings(SPC_TERMINAL_ID="placeholder", SPC_PUB_KEY="pk", SPC_SEC_KEY="sk"):
            self.assertFalse(has_valid_credentials())
        with self.settings(SPC_TERMINAL_ID="t", SPC_PUB_KEY="pk", SPC_SEC_KEY="SEC-AA-demo"):
            self.assertFalse(has_valid_credentials())
        with self.settings(**LIVE_CREDENTIALS):
            self.assertTrue(has_valid_credentials())


@patch("payments.services.get_exchange_rates", return_value=STATIC_RATES)
class TestCheckout(AuthenticatedTestCase):

    def test_demo_checkout(self, _rates):
        with self.settings(SPC_TERMINAL_ID="", SPC_PUB_KEY="", SPC_SEC_KEY=""):
            resp = self.client.post("/api/payments/checkout/init", checkout_payload(), format="json")

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data["payment_url"].startswith("/api/payments/checkout/demo-payment?tx=astroluna_"))
        self.assertTrue(resp.data["widget_config"]["demo"])
        self.assertEqual(resp.data["order_summary"], {
            "credits_purchased": 220,
            "bonus_credits": 22,
            "total_credits": 242,
            "amount_eur": 20.0,
            "amount_currency": 22.0,
            "currency": "USD",
            "exchange_rate": 1.1,
        })

        tx = Transaction.objects.get(tx_id=resp.data["transaction_id"])
        self.assertEqual(tx.user, self.user)
        self.assertEqual(tx.status, Transaction.STATUS_PENDING)
        self.assertTrue(tx.demo_mode)
        self.assertEqual(tx.amount_eur, Decimal("20.00"))
        self.assertTrue(tx.gateway_transaction_id.startswith("demo_"))

    def test_validation(self, _rates):
        resp = self.client.post(
            "/api/payments/checkout/init",
            checkout_payload(credits_amount=5, currency="JPY", privacy_accepted=False),
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        for field in ("credits_amount", "currency", "privacy_accepted"):
            self.assertIn(field, resp.data["details"])
        self.assertFalse(Transaction.objects.exists())

    @patch("payments.spc.httpx.post")
    def test_live_checkout_calls_spc(self, mock_post, _rates):
        mock_post.return_value = MagicMock(
            is_success=True,
            status_code=200,
            json=MagicMock(return_value={"transaction_id": "spc_789", "payment_url": "https://pay.example/789"}),
        )
        with self.settings(**LIVE_CREDENTIALS):
            resp = self.client.post("/api/payments/checkout/init", checkout_payload(), format="json")

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["payment_url"], "https://pay.example/789")

        args, kwargs = mock_post.call_args
        self.assertTrue(args[0].endswith("/transactions/widget"))
        payload = kwargs["json"]
        self.assertEqual(payload["amount"], 2200)
        self.assertEqual(payload["order_id"], resp.data["transaction_id"])
        self.assertEqual(payload["customer"]["billing_address"]["zip"], "28013")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer pk_live_123")
        self.assertEqual(kwargs["headers"]["X-Signature"], generate_signature(payload, "sk_live_456"))

        tx = Transaction.objects.get(tx_id=resp.data["transaction_id"])
        self.assertEqual(tx.gateway_transaction_id, "spc_789")
        self.assertFalse(tx.demo_mode)

    @patch("payments.spc.httpx.post")
    def test_gateway_failure_marks_transaction_failed(self, mock_post, _rates):
        mock_post.return_value = MagicMock(
            is_success=False, status_code=502, json=MagicMock(return_value={"message": "Bad gateway"})
        )
        with self.settings(**LIVE_CREDENTIALS):
            resp = self.client.post("/api/payments/checkout/init", checkout_payload(), format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Payment initialization failed")
        self.assertIn("502", resp.data["details"])
        self.assertEqual(Transaction.objects.get().status, Transaction.STATUS_FAILED)

    @patch("payments.spc.httpx.post", side_effect=httpx.ConnectError("refused"))
    def test_gateway_unreachable(self, _post, _rates):
        with self.settings(**LIVE_CREDENTIALS):
            resp = self.client.post("/api/payments/checkout/init", checkout_payload(), format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Transaction.objects.get().status, Transaction.STATUS_FAILED)


class PaymentsTestMixin:

    def create_transaction(self, user, tx_id="astroluna_1_abc", amount_eur="20.00", **extra):
        extra.setdefault("gateway_transaction_id", "spc_1")
        return Transaction.objects.create(
            user=user,
            tx_id=tx_id,
            amount_eur=Decimal(amount_eur),
            amount_currency=Decimal(amount_eur),
            currency="EUR",
            rate_used=1.0,
            **extra,
        )

    def post_webhook(self, payload, secret=WEBHOOK_SECRET, header="HTTP_X_SPC_SIGNATURE"):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return APIClient().post(
            "/api/payments/webhook", data=body, content_type="application/json", **{header: sign(body, secret)}
        )


class TestWebhook(AuthenticatedTestCase, PaymentsTestMixin):

    def setUp(self):
        super().setUp()
        self.tx = self.create_transaction(self.user)

    def test_completed_payment_adds_credits_once(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook({"order_id": self.tx.tx_id, "status": "completed"})
            self.assertEqual(resp.status_code, status.HTTP_200_OK)
            self.assertEqual(resp.data, {"status": "ok", "message": "Webhook processed successfully"})

            self.tx.refresh_from_db()
            self.assertEqual(self.tx.status, Transaction.STATUS_COMPLETED)
            self.assertEqual(self.tx.credits_added, 242)
            self.assertEqual(get_balance(self.user), 242)

            again = self.post_webhook({"order_id": self.tx.tx_id, "status": "succeeded"}, header="HTTP_X_SIGNATURE")
            self.assertEqual(again.status_code, status.HTTP_200_OK)
            self.assertTrue(again.data["already_processed"])

        self.assertEqual(get_balance(self.user), 242)
        purchase = CreditTransaction.objects.get(user=self.user, type=CreditTransaction.TYPE_PURCHASE)
        self.assertEqual(purchase.reference, self.tx.tx_id)

    def test_lookup_by_gateway_transaction_id(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook({"transaction_id": "spc_1", "status": "success"})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.status, Transaction.STATUS_COMPLETED)

    def test_failed_payment(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook({
                "order_id": self.tx.tx_id, "status": "declined",
                "error": {"code": "card_declined", "message": "Card was declined"},
            })
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.status, Transaction.STATUS_FAILED)
        self.assertEqual(self.tx.gateway_response["error_code"], "card_declined")
        self.assertEqual(get_balance(self.user), 0)

    def test_terminal_state_is_not_overwritten(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            self.post_webhook({"order_id": self.tx.tx_id, "status": "cancelled"})
            resp = self.post_webhook({"order_id": self.tx.tx_id, "status": "completed"})
        self.assertTrue(resp.data["already_processed"])
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.status, Transaction.STATUS_CANCELLED)
        self.assertEqual(get_balance(self.user), 0)

    def test_unknown_status_is_ignored(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook({"order_id": self.tx.tx_id, "status": "processing"})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.status, Transaction.STATUS_PENDING)

    def test_invalid_signature(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            with self.assertLogs("security", level="WARNING"):
                resp = self.post_webhook({"order_id": self.tx.tx_id, "status": "completed"}, secret="wrong")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(resp.data["error"], "Invalid signature")
        self.assertEqual(get_balance(self.user), 0)

    def test_invalid_payload(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook("not-json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Invalid payload")

    def test_unknown_transaction(self):
        with self.settings(SPC_SEC_KEY=WEBHOOK_SECRET):
            resp = self.post_webhook({"order_id": "astroluna_missing", "status": "completed"})
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["error"], "Transaction not found")


class TestTransactionViews(AuthenticatedTestCase, PaymentsTestMixin):

    def test_status_is_owner_only(self):
        tx = self.create_transaction(self.user)
        resp = self.client.get(f"/api/payments/status/{tx.tx_id}")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["transaction"]["id"], tx.tx_id)
        self.assertEqual(resp.data["transaction"]["status"], "pending")
        self.assertEqual(resp.data["transaction"]["amount_eur"], 20.0)

        other = self.create_user("other@example.com")
        self.client.force_authenticate(user=other)
        resp = self.client.get(f"/api/payments/status/{tx.tx_id}")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    @patch("payments.spc.httpx.get")
    def test_status_refresh_queries_gateway(self, mock_get):
        mock_get.return_value = MagicMock(
            is_success=True, json=MagicMock(return_value={"status": "processing", "amount": 2000})
        )
        tx = self.create_transaction(self.user)
        resp = self.client.get(f"/api/payments/status/{tx.tx_id}", {"refresh": "1"})
        self.assertEqual(resp.data["gateway_status"]["status"], "processing")
        self.assertTrue(mock_get.call_args.args[0].endswith("/transactions/spc_1"))

    def test_history(self):
        for i in range(3):
            self.create_transaction(self.user, tx_id=f"astroluna_{i}")
        self.create_transaction(self.create_user("other@example.com"), tx_id="astroluna_other")

        resp = self.client.get("/api/payments/history", {"limit": 2})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["pagination"]["total"], 3)
        self.assertEqual([t["id"] for t in resp.data["transactions"]], ["astroluna_2", "astroluna_1"])

    def test_test_connection_hidden_in_production(self):
        with self.settings(APP_ENV="production"):
            resp = self.client.get("/api/payments/test-connection")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    @patch("payments.spc.httpx.get")
    def test_test_connection(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200, is_success=True)
        with self.settings(APP_ENV="development", SPC_TERMINAL_ID="term", SPC_PUB_KEY="", SPC_SEC_KEY=""):
            resp = self.client.get("/api/payments/test-connection")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["spc_status"], 200)
        self.assertEqual(resp.data["config"], {"terminal_id": "configured", "pub_key": "missing", "sec_key": "missing"})


class TestDemoPayments(AuthenticatedTestCase, PaymentsTestMixin):

    def setUp(self):
        super().setUp()
        self.tx = self.create_transaction(self.user, demo_mode=True)
        self.anonymous = APIClient()

    def test_demo_webhook_completes_once(self):
        with self.settings(SPC_TERMINAL_ID="", SPC_PUB_KEY="", SPC_SEC_KEY=""):
            resp = self.anonymous.post("/api/payments/checkout/demo-webhook", {"tx_id": self.tx.tx_id}, format="json")
            self.assertEqual(resp.status_code, status.HTTP_200_OK)
            self.assertEqual(resp.data["credits_added"], 242)

            again = self.anonymous.post("/api/payments/checkout/demo-webhook", {"tx_id": self.tx.tx_id}, format="json")
            self.assertTrue(again.data["already_processed"])
        self.assertEqual(get_balance(self.user), 242)

    def test_demo_webhook_requires_tx_id(self):
        with self.settings(SPC_TERMINAL_ID="", SPC_PUB_KEY="", SPC_SEC_KEY=""):
            resp = self.anonymous.post("/api/payments/checkout/demo-webhook", {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Missing transaction ID")

    def test_demo_webhook_disabled_with_live_credentials(self):
        with self.settings(**LIVE_CREDENTIALS):
            resp = self.anonymous.post("/api/payments/checkout/demo-webhook", {"tx_id": self.tx.tx_id}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(get_balance(self.user), 0)

    def test_demo_payment_page(self):
        resp = self.anonymous.get(
            "/api/payments/checkout/demo-payment", {"tx": self.tx.tx_id, "amount": "22.00", "currency": "USD"}
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertContains(resp, "Demo Payment Simulation")
        self.assertContains(resp, self.tx.tx_id)
        self.assertContains(resp, "22.00 USD")

    def test_demo_payment_page_missing_parameters(self):
        resp = self.anonymous.get("/api/payments/checkout/demo-payment", {"tx": self.tx.tx_id})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

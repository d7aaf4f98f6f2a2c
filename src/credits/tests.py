from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from rest_framework import status

from astroluna.testing import AuthenticatedTestCase
from .models import Credits, CreditTransaction
from .services import InsufficientCredits, add_credits, deduct_credits, get_balance, require_credits

User = get_user_model()


class CreditServicesTest(AuthenticatedTestCase):

    def test_new_user_starts_with_zero_balance(self):
        self.assertTrue(Credits.objects.filter(user=self.user).exists())
        self.assertEqual(get_balance(self.user), 0)

    def test_add_credits_writes_audit_row(self):
        balance = add_credits(self.user, 50, description="Starter package", reference="tx-1")
        self.assertEqual(balance, 50)

        row = CreditTransaction.objects.get(user=self.user)
        self.assertEqual(row.amount, 50)
        self.assertEqual(row.type, CreditTransaction.TYPE_PURCHASE)
        self.assertEqual(row.balance_after, 50)
        self.assertEqual(row.reference, "tx-1")

    def test_deduct_within_balance(self):
        add_credits(self.user, 30)
        self.assertTrue(deduct_credits(self.user, 20, description="Tarot reading"))
        self.assertEqual(get_balance(self.user), 10)

        usage = CreditTransaction.objects.filter(user=self.user, type=CreditTransaction.TYPE_USAGE).get()
        self.assertEqual(usage.amount, -20)
        self.assertEqual(usage.balance_after, 10)

    def test_deduct_beyond_balance_changes_nothing(self):
        add_credits(self.user, 10)
        self.assertFalse(deduct_credits(self.user, 15))
        self.assertEqual(get_balance(self.user), 10)
        self.assertFalse(CreditTransaction.objects.filter(type=CreditTransaction.TYPE_USAGE).exists())

    def test_deduct_exact_balance(self):
        add_credits(self.user, 15)
        self.assertTrue(deduct_credits(self.user, 15))
        self.assertEqual(get_balance(self.user), 0)
        self.assertFalse(deduct_credits(self.user, 1))

    def test_non_positive_amounts_are_rejected(self):
        with self.assertRaises(ValueError):
            deduct_credits(self.user, 0)
        with self.assertRaises(ValueError):
            add_credits(self.user, -5)

    def test_add_creates_missing_row(self):
        Credits.objects.filter(user=self.user).delete()
        self.assertEqual(get_balance(self.user), 0)
        self.assertEqual(add_credits(self.user, 5, type=CreditTransaction.TYPE_BONUS), 5)

    def test_require_credits(self):
        add_credits(self.user, 10)
        self.assertEqual(require_credits(self.user, 10), 10)
        with self.assertRaises(InsufficientCredits) as ctx:
            require_credits(self.user, 20)
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertEqual(ctx.exception.extra, {"required": 20, "current": 10})

    def test_balance_cannot_go_negative_in_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Credits.objects.filter(user=self.user).update(balance=-1)


class CreditEndpointsTest(AuthenticatedTestCase):

    def test_balance_endpoint(self):
        add_credits(self.user, 42)
        resp = self.client.get("/api/credits/balance")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data, {"success": True, "balance": 42})

    def test_transactions_are_scoped_and_paged(self):
        other = self.create_user("other@example.com")
        add_credits(other, 99)
        for amount in (10, 20, 30):
            add_credits(self.user, amount)

        resp = self.client.get("/api/credits/transactions", {"limit": 2})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["pagination"], {"limit": 2, "offset": 0, "total": 3})
        self.assertEqual([t["amount"] for t in resp.data["transactions"]], [30, 20])

        resp = self.client.get("/api/credits/transactions", {"limit": 2, "offset": 2})
        self.assertEqual([t["amount"] for t in resp.data["transactions"]], [10])

    def test_anonymous_access_rejected(self):
        self.client.force_authenticate(user=None)
        resp = self.client.get("/api/credits/balance")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

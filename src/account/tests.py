import os
from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from astroluna.testing import BaseTestCase, AuthenticatedTestCase
from credits.models import Credits
from .apps import create_root_user
from .models import PasswordResetToken

User = get_user_model()


def signup_payload(**overrides):
    data = {
        "full_name": "Luna Star",
        "email": "Luna@Example.com",
        "phone": "+34600111222",
        "password": "secret123",
        "confirm_password": "secret123",
        "privacy_accepted": True,
    }
    data.update(overrides)
    return data


class SignupAPITest(BaseTestCase):

    def test_signup_creates_user_credits_and_tokens(self):
        resp = self.client.post("/api/auth/signup", signup_payload(), format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertTrue(resp.data["success"])
        self.assertEqual(resp.data["message"], "Account created successfully")
        self.assertEqual(resp.data["user"]["email"], "luna@example.com")
        self.assertEqual(resp.data["credits"], 0)
        self.assertIn("access", resp.data)
        self.assertIn("refresh", resp.data)

        user = User.objects.get(email="luna@example.com")
        self.assertTrue(Credits.objects.filter(user=user, balance=0).exists())
        self.assertIsNotNone(user.email_verification_token)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(user.email_verification_token, mail.outbox[0].body)

    def test_duplicate_email_returns_409(self):
        first = self.client.post("/api/auth/signup", signup_payload(), format="json")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        second = self.client.post("/api/auth/signup", signup_payload(email="luna@example.com"), format="json")
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data["error"], "User with this email already exists")
        self.assertEqual(User.objects.filter(email="luna@example.com").count(), 1)

    def test_email_claimed_by_concurrent_signup_returns_409(self):
        # another request registers the address after the duplicate check has passed
        User.objects.create_user(email="luna@example.com", password="other123")
        with patch("account.views.email_registered", return_value=False):
            resp = self.client.post("/api/auth/signup", signup_payload(), format="json")

        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["error"], "User with this email already exists")
        self.assertEqual(User.objects.filter(email="luna@example.com").count(), 1)
        self.assertEqual(len(mail.outbox), 0)

    def test_validation_errors_are_reported_per_field(self):
        resp = self.client.post(
            "/api/auth/signup",
            signup_payload(confirm_password="other123", privacy_accepted=False, phone="123"),
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Validation failed")
        self.assertIn("phone", resp.data["details"])
        self.assertIn("privacy_accepted", resp.data["details"])

    def test_register_policy_limits_signups_per_ip(self):
        for i in range(3):
            resp = self.client.post(
                "/api/auth/signup", signup_payload(email=f"user{i}@example.com"),
                format="json", REMOTE_ADDR="10.0.0.5",
            )
            self.assertEqual(resp.status_code, status.HTTP_201_CREATED)

        resp = self.client.post(
            "/api/auth/signup", signup_payload(email="user9@example.com"),
            format="json", REMOTE_ADDR="10.0.0.5",
        )
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertFalse(resp.data["success"])
        self.assertIn("Retry-After", resp)


class LoginAPITest(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.password = "secret123"
        self.user = User.objects.create_user(email="login@example.com", password=self.password, full_name="Login User")

    def test_successful_login(self):
        resp = self.client.post(
            "/api/auth/login", {"email": "LOGIN@example.com", "password": self.password}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["message"], "Login successful")
        self.assertIn("access", resp.data)
        self.assertIn("refresh", resp.data)

    def test_invalid_credentials(self):
        resp = self.client.post("/api/auth/login", {"email": "login@example.com", "password": "wrong"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(resp.data["error"], "Invalid email or password")

    def test_missing_credentials(self):
        resp = self.client.post("/api/auth/login", {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_access_token_authenticates_requests(self):
        resp = self.client.post("/api/auth/login", {"email": "login@example.com", "password": self.password}, format="json")
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {resp.data['access']}")
        me = client.get("/api/auth/me")
        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["user"]["email"], "login@example.com")

    def test_failed_attempts_are_limited(self):
        for _ in range(5):
            resp = self.client.post(
                "/api/auth/login", {"email": "login@example.com", "password": "wrong"},
                format="json", REMOTE_ADDR="10.0.0.7",
            )
            self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

        resp = self.client.post(
            "/api/auth/login", {"email": "login@example.com", "password": self.password},
            format="json", REMOTE_ADDR="10.0.0.7",
        )
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)

    def test_successful_logins_are_not_counted(self):
        for _ in range(7):
            resp = self.client.post(
                "/api/auth/login", {"email": "login@example.com", "password": self.password},
                format="json", REMOTE_ADDR="10.0.0.8",
            )
            self.assertEqual(resp.status_code, status.HTTP_200_OK)


class TokenLifecycleAPITest(BaseTestCase):

    def setUp(self):
        super().setUp()
        User.objects.create_user(email="tokens@example.com", password="secret123")
        resp = self.client.post("/api/auth/login", {"email": "tokens@example.com", "password": "secret123"}, format="json")
        self.access = resp.data["access"]
        self.refresh = resp.data["refresh"]

    def test_refresh_rotates_token(self):
        resp = self.client.post("/api/auth/refresh-token", {"refresh": self.refresh}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertIn("access", resp.data)
        self.assertNotEqual(resp.data["refresh"], self.refresh)

        # the rotated token is blacklisted
        again = self.client.post("/api/auth/refresh-token", {"refresh": self.refresh}, format="json")
        self.assertEqual(again.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_blacklists_refresh_token(self):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {self.access}")
        resp = self.client.post("/api/auth/logout", {"refresh": self.refresh}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

        self.client.credentials()
        again = self.client.post("/api/auth/refresh-token", {"refresh": self.refresh}, format="json")
        self.assertEqual(again.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_all_revokes_every_session(self):
        other = self.client.post(
            "/api/auth/login", {"email": "tokens@example.com", "password": "secret123"}, format="json"
        ).data["refresh"]

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {self.access}")
        resp = self.client.post("/api/auth/logout-all", {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["message"], "Logged out from all devices successfully")

        self.client.credentials()
        for token in (self.refresh, other):
            again = self.client.post("/api/auth/refresh-token", {"refresh": token}, format="json")
            self.assertEqual(again.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_all_requires_authentication(self):
        resp = self.client.post("/api/auth/logout-all", {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_refresh_with_garbage_token(self):
        resp = self.client.post("/api/auth/refresh-token", {"refresh": "not-a-token"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)


class PasswordResetAPITest(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(email="reset@example.com", password="oldpass1")

    def test_unknown_email_gets_same_answer(self):
        resp = self.client.post("/api/auth/reset-password", {"email": "nobody@example.com"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["message"], "If this email exists, you will receive a password reset link")
        self.assertNotIn("reset_token", resp.data)
        self.assertEqual(len(mail.outbox), 0)

    def test_full_reset_flow(self):
        with self.settings(APP_ENV="development"):
            resp = self.client.post("/api/auth/reset-password", {"email": "reset@example.com"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        token = resp.data["reset_token"]
        self.assertEqual(len(mail.outbox), 1)

        confirm = self.client.post(
            "/api/auth/reset-password/confirm",
            {"token": token, "new_password": "newpass1", "confirm_password": "newpass1"},
            format="json",
        )
        self.assertEqual(confirm.status_code, status.HTTP_200_OK)
        self.assertEqual(confirm.data["message"], "Password updated successfully")
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("newpass1"))

        # single use
        reuse = self.client.post(
            "/api/auth/reset-password/confirm",
            {"token": token, "new_password": "other123", "confirm_password": "other123"},
            format="json",
        )
        self.assertEqual(reuse.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(reuse.data["error"], "Invalid or expired reset token")

    def test_token_hidden_in_production(self):
        with self.settings(APP_ENV="production"):
            resp = self.client.post("/api/auth/reset-password", {"email": "reset@example.com"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertNotIn("reset_token", resp.data)

    def test_expired_token(self):
        reset = PasswordResetToken.issue(self.user)
        PasswordResetToken.objects.filter(pk=reset.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
        resp = self.client.post(
            "/api/auth/reset-password/confirm",
            {"token": reset.token, "new_password": "newpass1", "confirm_password": "newpass1"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Reset token has expired")

    def test_reset_requests_are_limited_per_email(self):
        for _ in range(3):
            resp = self.client.post(
                "/api/auth/reset-password", {"email": "reset@example.com"}, format="json", REMOTE_ADDR="10.0.0.9"
            )
            self.assertEqual(resp.status_code, status.HTTP_200_OK)
        resp = self.client.post(
            "/api/auth/reset-password", {"email": "reset@example.com"}, format="json", REMOTE_ADDR="10.0.0.10"
        )
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)


class ProfileAPITest(AuthenticatedTestCase):

    def test_get_profile_includes_balance(self):
        resp = self.client.get("/api/auth/me")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["user"]["email"], self.user.email)
        self.assertEqual(resp.data["credits"], 0)

    def test_patch_only_changes_profile_fields(self):
        resp = self.client.patch(
            "/api/auth/me", {"language": "de", "currency": "GBP", "email": "hijack@example.com"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.language, "de")
        self.assertEqual(self.user.currency, "GBP")
        self.assertEqual(self.user.email, "testuser@example.com")

    def test_put_rejects_unknown_language(self):
        resp = self.client.put("/api/auth/me", {"full_name": "New Name", "language": "fr"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_profile_requires_authentication(self):
        resp = APIClient().get("/api/auth/me")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_change_password(self):
        wrong = self.client.post(
            "/api/auth/change-password",
            {"current_password": "nope", "new_password": "newpass1", "confirm_password": "newpass1"},
            format="json",
        )
        self.assertEqual(wrong.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.post(
            "/api/auth/change-password",
            {"current_password": self.password, "new_password": "newpass1", "confirm_password": "newpass1"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("newpass1"))


class EmailVerificationAPITest(AuthenticatedTestCase):

    def test_verify_email(self):
        token = self.user.issue_verification_token()
        resp = self.client.post("/api/auth/verify-email", {"token": token}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.is_verified)
        self.assertIsNone(self.user.email_verification_token)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, "Welcome to AstroLuna")
        self.assertEqual(mail.outbox[0].to, [self.user.email])

    def test_unknown_token(self):
        resp = self.client.post("/api/auth/verify-email", {"token": "missing"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_resend_verification(self):
        resp = self.client.post("/api/auth/resend-verification", {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertIsNotNone(self.user.email_verification_token)
        self.assertEqual(len(mail.outbox), 1)

        self.user.mark_verified()
        again = self.client.post("/api/auth/resend-verification", {}, format="json")
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)


class DeleteAccountAPITest(AuthenticatedTestCase):

    def test_wrong_password_keeps_account(self):
        resp = self.client.delete("/api/auth/delete-account", {"password": "wrong"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.user.refresh_from_db()
        self.assertIsNone(self.user.deleted_at)

    def test_soft_delete_frees_email(self):
        resp = self.client.delete("/api/auth/delete-account", {"password": self.password}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

        self.user.refresh_from_db()
        self.assertIsNotNone(self.user.deleted_at)
        self.assertFalse(self.user.is_active)
        self.assertNotEqual(self.user.email, "testuser@example.com")

        login = APIClient().post(
            "/api/auth/login", {"email": "testuser@example.com", "password": self.password}, format="json"
        )
        self.assertEqual(login.status_code, status.HTTP_401_UNAUTHORIZED)

        signup = APIClient().post("/api/auth/signup", signup_payload(email="testuser@example.com"), format="json")
        self.assertEqual(signup.status_code, status.HTTP_201_CREATED)


class SensitiveActionLimitTest(AuthenticatedTestCase):
    """change-password, resend-verification and delete-account share the password reset policy."""

    def test_change_password_attempts_are_limited_per_account(self):
        wrong = {"current_password": "nope", "new_password": "newpass1", "confirm_password": "newpass1"}
        for _ in range(3):
            resp = self.client.post("/api/auth/change-password", wrong, format="json", REMOTE_ADDR="10.0.1.1")
            self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        # a new address does not reset the account's budget
        resp = self.client.post(
            "/api/auth/change-password",
            {"current_password": self.password, "new_password": "newpass1", "confirm_password": "newpass1"},
            format="json", REMOTE_ADDR="10.0.1.2",
        )
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(resp.data["error"], "Too many password reset attempts, please try again later.")
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password(self.password))

    def test_resend_verification_is_limited(self):
        for _ in range(3):
            resp = self.client.post("/api/auth/resend-verification", {}, format="json", REMOTE_ADDR="10.0.1.3")
            self.assertEqual(resp.status_code, status.HTTP_200_OK)

        resp = self.client.post("/api/auth/resend-verification", {}, format="json", REMOTE_ADDR="10.0.1.3")
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertIn("Retry-After", resp)
        self.assertEqual(len(mail.outbox), 3)

    def test_delete_account_attempts_are_limited(self):
        for _ in range(3):
            resp = self.client.delete(
                "/api/auth/delete-account", {"password": "wrong"}, format="json", REMOTE_ADDR="10.0.1.4"
            )
            self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.delete(
            "/api/auth/delete-account", {"password": self.password}, format="json", REMOTE_ADDR="10.0.1.4"
        )
        self.assertEqual(resp.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.user.refresh_from_db()
        self.assertIsNone(self.user.deleted_at)


class RootUserBootstrapTest(BaseTestCase):

    @patch.dict(os.environ, {"ROOT_EMAIL": "Root@Example.com", "ROOT_PASSWORD": "rootpass"})
    def test_creates_superuser_from_environment(self):
        create_root_user(sender=None)
        create_root_user(sender=None)

        root = User.objects.get(email="root@example.com")
        self.assertTrue(root.is_superuser)
        self.assertTrue(root.check_password("rootpass"))

    @patch.dict(os.environ, {"ROOT_EMAIL": "", "ROOT_PASSWORD": ""})
    def test_skipped_without_credentials(self):
        create_root_user(sender=None)
        self.assertFalse(User.objects.filter(is_superuser=True).exists())

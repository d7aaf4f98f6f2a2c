"""
Base test utilities shared by the app test suites.
"""
from django.test import TestCase
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

User = get_user_model()


class BaseTestCase(TestCase):
    """Base test case with cache cleanup."""

    client_class = APIClient

    def setUp(self):
        """Clear cache before each test."""
        super().setUp()
        cache.clear()

    def tearDown(self):
        """Clear cache after each test."""
        cache.clear()
        super().tearDown()


class AuthenticatedTestCase(BaseTestCase):
    """Base test case with authenticated API client."""

    password = "testpass123"

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.user = self.create_user("testuser@example.com")
        self.client.force_authenticate(user=self.user)

    def create_user(self, email, **extra):
        extra.setdefault("full_name", "Test User")
        extra.setdefault("phone", "+34600000000")
        return User.objects.create_user(email=email, password=self.password, **extra)

"""
Tests for the cache-backed limiters, the view decorator and the API middleware.
"""
from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from astroluna.testing import BaseTestCase
from .limiters import FixedWindowLimiter, SlidingWindowLimiter, TokenBucketLimiter
from .policies import client_ip, rate_limit

User = get_user_model()

TEST_POLICIES = {
    "burst": {"algorithm": "fixed", "limit": 2, "window": 60, "message": "Slow down"},
    "lenient": {"algorithm": "fixed", "limit": 2, "window": 60, "skip_successful": True},
    "log": {"algorithm": "sliding", "limit": 2, "window": 60},
    "user": {"algorithm": "token_bucket", "capacity": 1, "refill_rate": 1, "refill_interval": 60, "message": "Bucket empty"},
}


class BurstView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("burst")
    def get(self, request):
        return Response({"ok": True})


class LenientView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("lenient")
    def get(self, request):
        if request.query_params.get("fail"):
            return Response({"ok": False}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"ok": True})


class SlidingView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("log")
    def get(self, request):
        return Response({"ok": True})


class BucketView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("user")
    def get(self, request):
        return Response({"ok": True})


class TestFixedWindowLimiter(BaseTestCase):

    def test_counts_until_limit(self):
        limiter = FixedWindowLimiter(limit=3, window=60)
        results = [limiter.hit("k", now=1000.0) for _ in range(4)]

        self.assertEqual([r.allowed for r in results], [True, True, True, False])
        self.assertEqual([r.remaining for r in results], [2, 1, 0, 0])
        self.assertEqual(results[0].reset, 1060)
        self.assertEqual(results[-1].retry_after, 60)

    def test_keys_are_independent(self):
        limiter = FixedWindowLimiter(limit=1, window=60)
        self.assertTrue(limiter.hit("a").allowed)
        self.assertTrue(limiter.hit("b").allowed)
        self.assertFalse(limiter.hit("a").allowed)

    def test_refund_returns_one_request(self):
        limiter = FixedWindowLimiter(limit=1, window=60)
        self.assertTrue(limiter.hit("k").allowed)
        limiter.refund("k")
        self.assertTrue(limiter.hit("k").allowed)

    def test_refund_of_unknown_key_is_noop(self):
        FixedWindowLimiter(limit=1, window=60).refund("never-seen")


class TestSlidingWindowLimiter(BaseTestCase):

    def test_old_entries_leave_the_window(self):
        limiter = SlidingWindowLimiter(limit=2, window=10)
        self.assertTrue(limiter.hit("k", now=100.0).allowed)
        self.assertTrue(limiter.hit("k", now=104.0).allowed)

        denied = limiter.hit("k", now=105.0)
        self.assertFalse(denied.allowed)
        self.assertEqual(denied.retry_after, 5)

        # the entry from t=100 has expired at t=110.5
        allowed = limiter.hit("k", now=110.5)
        self.assertTrue(allowed.allowed)
        self.assertEqual(allowed.remaining, 0)

    def test_denied_requests_are_not_logged(self):
        limiter = SlidingWindowLimiter(limit=1, window=10)
        limiter.hit("k", now=100.0)
        for t in (101.0, 102.0, 103.0):
            self.assertFalse(limiter.hit("k", now=t).allowed)
        self.assertTrue(limiter.hit("k", now=110.1).allowed)


class TestTokenBucketLimiter(BaseTestCase):

    def test_drains_and_refills_by_whole_intervals(self):
        bucket = TokenBucketLimiter(capacity=2, refill_rate=1, refill_interval=60)
        self.assertTrue(bucket.consume("k", now=1000.0).allowed)
        self.assertTrue(bucket.consume("k", now=1000.0).allowed)

        empty = bucket.consume("k", now=1030.0)
        self.assertFalse(empty.allowed)
        self.assertEqual(empty.remaining, 0)
        self.assertEqual(empty.retry_after, 30)

        refilled = bucket.consume("k", now=1060.0)
        self.assertTrue(refilled.allowed)
        self.assertEqual(refilled.remaining, 0)

    def test_refill_is_capped_at_capacity(self):
        bucket = TokenBucketLimiter(capacity=3, refill_rate=2, refill_interval=10)
        bucket.consume("k", now=0.0)
        result = bucket.consume("k", now=1000.0)
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 2)
        self.assertEqual(result.limit, 3)

    def test_multi_token_requests(self):
        bucket = TokenBucketLimiter(capacity=5, refill_rate=1, refill_interval=60)
        self.assertTrue(bucket.consume("k", tokens=4, now=0.0).allowed)
        self.assertFalse(bucket.consume("k", tokens=2, now=1.0).allowed)
        self.assertTrue(bucket.consume("k", tokens=1, now=2.0).allowed)

    @patch("ratelimit.limiters.redis_cache_enabled", return_value=True)
    def test_redis_backend_runs_lua_script(self, _enabled):
        bucket = TokenBucketLimiter(capacity=10, refill_rate=1, refill_interval=60)
        with patch("django_redis.get_redis_connection") as get_conn:
            conn = get_conn.return_value
            conn.eval.return_value = [1, 9, b"1000"]
            result = bucket.consume("user:7", now=1000.0)

        get_conn.assert_called_once_with("default")
        script, numkeys, key, *argv = conn.eval.call_args.args
        self.assertIn("HMGET", script)
        self.assertEqual(numkeys, 1)
        self.assertEqual(key, "astroluna:rl:bucket:user:7")
        self.assertEqual(argv, [10, 1, 60.0, 1000.0, 1, bucket.ttl])
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 9)
        self.assertEqual(result.reset, 1060)
        # nothing is written through the Django cache API
        self.assertIsNone(cache.get("rl:bucket:user:7"))

    @patch("ratelimit.limiters.redis_cache_enabled", return_value=True)
    def test_redis_backend_rejection(self, _enabled):
        bucket = TokenBucketLimiter(capacity=2, refill_rate=1, refill_interval=60)
        with patch("django_redis.get_redis_connection") as get_conn:
            get_conn.return_value.eval.return_value = [0, 0, "1000"]
            result = bucket.consume("user:7", now=1030.0)

        self.assertFalse(result.allowed)
        self.assertEqual(result.remaining, 0)
        self.assertEqual(result.retry_after, 30)


class TestRateLimitDecorator(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def _get(self, view, ip="10.1.1.1", user=None, **extra):
        request = self.factory.get("/limited", REMOTE_ADDR=ip, **extra)
        if user is not None:
            force_authenticate(request, user=user)
        return view.as_view()(request)

    def test_headers_and_rejection(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            first = self._get(BurstView)
            self.assertEqual(first.status_code, 200)
            self.assertEqual(first["X-RateLimit-Limit"], "2")
            self.assertEqual(first["X-RateLimit-Remaining"], "1")
            self.assertEqual(first["X-RateLimit-Window"], "60")
            self.assertIn("X-RateLimit-Reset", first)

            self._get(BurstView)
            with self.assertLogs("security", level="WARNING"):
                rejected = self._get(BurstView)

        self.assertEqual(rejected.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(rejected.data["error"], "Slow down")
        self.assertFalse(rejected.data["success"])
        self.assertGreaterEqual(rejected.data["retryAfter"], 1)
        self.assertEqual(rejected["Retry-After"], str(rejected.data["retryAfter"]))

    def test_whitelisted_ip_is_never_limited(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            for _ in range(5):
                response = self._get(BurstView, ip="127.0.0.1")
                self.assertEqual(response.status_code, 200)
                self.assertNotIn("X-RateLimit-Limit", response)

    def test_configured_whitelist(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES, RATE_LIMIT_WHITELIST=["10.9.9.9"]):
            for _ in range(5):
                self.assertEqual(self._get(BurstView, ip="10.9.9.9").status_code, 200)

    def test_disabled_limits(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES, RATE_LIMIT_ENABLED=False):
            for _ in range(5):
                self.assertEqual(self._get(BurstView).status_code, 200)

    def test_forwarded_for_first_hop_is_the_client(self):
        request = self.factory.get("/", REMOTE_ADDR="10.0.0.1", HTTP_X_FORWARDED_FOR="203.0.113.7, 10.0.0.2")
        self.assertEqual(client_ip(request), "203.0.113.7")

        with self.settings(RATE_LIMITS=TEST_POLICIES):
            self._get(BurstView, HTTP_X_FORWARDED_FOR="203.0.113.7")
            self._get(BurstView, HTTP_X_FORWARDED_FOR="203.0.113.7")
            self.assertEqual(self._get(BurstView, HTTP_X_FORWARDED_FOR="203.0.113.7").status_code, 429)
            self.assertEqual(self._get(BurstView, HTTP_X_FORWARDED_FOR="203.0.113.8").status_code, 200)

    def test_successful_responses_are_refunded(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            for _ in range(4):
                self.assertEqual(self._get(LenientView).status_code, 200)

            request = self.factory.get("/limited", {"fail": "1"}, REMOTE_ADDR="10.1.1.1")
            self.assertEqual(LenientView.as_view()(request).status_code, 400)
            request = self.factory.get("/limited", {"fail": "1"}, REMOTE_ADDR="10.1.1.1")
            self.assertEqual(LenientView.as_view()(request).status_code, 400)
            self.assertEqual(self._get(LenientView).status_code, 429)

    def test_sliding_policy(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            self.assertEqual(self._get(SlidingView).status_code, 200)
            self.assertEqual(self._get(SlidingView).status_code, 200)
            self.assertEqual(self._get(SlidingView).status_code, 429)

    def test_token_bucket_is_per_user(self):
        alice = User.objects.create_user(email="alice@example.com", password="pw123456")
        bob = User.objects.create_user(email="bob@example.com", password="pw123456")
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            first = self._get(BucketView, user=alice)
            self.assertEqual(first.status_code, 200)
            self.assertEqual(first["X-RateLimit-User-Capacity"], "1")
            self.assertEqual(first["X-RateLimit-User-Remaining"], "0")

            rejected = self._get(BucketView, user=alice)
            self.assertEqual(rejected.status_code, 429)
            self.assertEqual(rejected.data["error"], "Bucket empty")
            self.assertEqual(rejected.data["capacity"], 1)
            self.assertEqual(rejected.data["availableTokens"], 0)

            self.assertEqual(self._get(BucketView, user=bob).status_code, 200)

    def test_token_bucket_skips_anonymous_callers(self):
        with self.settings(RATE_LIMITS=TEST_POLICIES):
            for _ in range(3):
                response = self._get(BucketView)
                self.assertEqual(response.status_code, 200)
                self.assertNotIn("X-RateLimit-User-Capacity", response)


class TestApiRateLimitMiddleware(BaseTestCase):

    def _policies(self, limit):
        return {**settings.RATE_LIMITS, "api": {"algorithm": "fixed", "limit": limit, "window": 900, "message": "API limit"}}

    def test_api_paths_are_limited(self):
        with self.settings(RATE_LIMITS=self._policies(2)):
            first = self.client.get("/api/version", REMOTE_ADDR="10.2.2.2")
            self.assertEqual(first.status_code, 200)
            self.assertEqual(first["X-RateLimit-Limit"], "2")

            self.client.get("/api/version", REMOTE_ADDR="10.2.2.2")
            rejected = self.client.get("/api/version", REMOTE_ADDR="10.2.2.2")

        self.assertEqual(rejected.status_code, 429)
        self.assertEqual(rejected.json()["error"], "API limit")
        self.assertIn("Retry-After", rejected)

    def test_health_is_exempt(self):
        with self.settings(RATE_LIMITS=self._policies(1)):
            for _ in range(3):
                response = self.client.get("/api/health", REMOTE_ADDR="10.2.2.3")
                self.assertEqual(response.status_code, 200)
                self.assertNotIn("X-RateLimit-Limit", response)

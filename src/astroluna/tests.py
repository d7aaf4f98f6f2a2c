import asyncio
from importlib.metadata import PackageNotFoundError
from unittest.mock import patch

from django.core.cache import cache
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, ValidationError

import astroluna
from astroluna import asgi
from astroluna.exceptions import ServiceError, api_exception_handler
from astroluna.testing import AuthenticatedTestCase, BaseTestCase


class HealthAndVersionTests(BaseTestCase):

    def test_health(self):
        resp = self.client.get('/api/health')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_version(self):
        resp = self.client.get('/api/version')
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()['version'])

    def test_version_falls_back_to_package_attribute(self):
        with patch("astroluna.views.dist_version", side_effect=PackageNotFoundError("astroluna")):
            resp = self.client.get("/api/version")
        self.assertEqual(resp.json(), {"version": astroluna.__version__})

    def test_schema_is_served(self):
        resp = self.client.get('/api/schema')
        self.assertEqual(resp.status_code, 200)


class ExceptionHandlerTests(BaseTestCase):

    def test_validation_error_shape(self):
        resp = api_exception_handler(ValidationError({"email": ["This field is required."]}), {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"], "Validation failed")
        self.assertEqual(resp.data["details"]["email"], ["This field is required."])

    def test_service_error_carries_extra_fields(self):
        class Payment(ServiceError):
            status_code = status.HTTP_402_PAYMENT_REQUIRED

        resp = api_exception_handler(Payment("Insufficient credits", required=15, current=3), {})
        self.assertEqual(resp.status_code, 402)
        self.assertEqual(resp.data, {"error": "Insufficient credits", "required": 15, "current": 3})

    def test_other_api_errors_untouched(self):
        resp = api_exception_handler(NotAuthenticated(), {})
        self.assertEqual(resp.status_code, 401)
        self.assertIn("detail", resp.data)

    def test_unknown_exception_becomes_json_500(self):
        with self.assertLogs("django.request", level="ERROR"):
            resp = api_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data, {"error": "Internal server error"})


class UnhandledViewErrorTests(AuthenticatedTestCase):

    def test_crashing_view_answers_with_json(self):
        with patch("credits.views.get_balance", side_effect=RuntimeError("database went away")), \
                self.assertLogs("django.request", level="ERROR") as logs:
            resp = self.client.get("/api/credits/balance")

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp["Content-Type"], "application/json")
        self.assertEqual(resp.json(), {"error": "Internal server error"})
        self.assertTrue(any("BalanceView" in line and "database went away" in line for line in logs.output))


class LifespanLeaderLockTests(BaseTestCase):
    """The ASGI lifespan starts the rates refresher in exactly one worker."""

    def _run_lifespan(self, while_running=lambda: None):
        async def scenario():
            inbox, outbox = asyncio.Queue(), asyncio.Queue()
            server = asyncio.create_task(asgi.application({"type": "lifespan"}, inbox.get, outbox.put))
            await inbox.put({"type": "lifespan.startup"})
            started = await outbox.get()
            while_running()
            await inbox.put({"type": "lifespan.shutdown"})
            stopped = await outbox.get()
            await server
            return started["type"], stopped["type"]

        return asyncio.run(scenario())

    @patch("currency.scheduler.RatesRefresher")
    def test_leader_runs_refresher_and_releases_lock(self, refresher_cls):
        seen = {}

        def while_running():
            seen["holder"] = cache.get(asgi.LEADER_KEY)
            seen["second_worker"] = asgi._acquire_leader_lock("other-host:4242")

        events = self._run_lifespan(while_running)

        self.assertEqual(events, ("lifespan.startup.complete", "lifespan.shutdown.complete"))
        self.assertEqual(seen["holder"], asgi._owner_id())
        self.assertFalse(seen["second_worker"])
        refresher_cls.return_value.start.assert_called_once_with()
        refresher_cls.return_value.shutdown.assert_called_once_with()
        self.assertIsNone(cache.get(asgi.LEADER_KEY))

    @patch("currency.scheduler.RatesRefresher")
    def test_follower_does_not_start_refresher(self, refresher_cls):
        cache.set(asgi.LEADER_KEY, "other-host:4242", asgi.LEADER_LOCK_TIMEOUT)

        events = self._run_lifespan()

        self.assertEqual(events, ("lifespan.startup.complete", "lifespan.shutdown.complete"))
        refresher_cls.assert_not_called()
        # shutdown leaves another worker's lock alone
        self.assertEqual(cache.get(asgi.LEADER_KEY), "other-host:4242")

    @patch("currency.scheduler.RatesRefresher")
    def test_failed_start_gives_up_the_lock(self, refresher_cls):
        refresher_cls.return_value.start.side_effect = RuntimeError("scheduler broken")
        seen = {}

        events = self._run_lifespan(lambda: seen.setdefault("holder", cache.get(asgi.LEADER_KEY)))

        self.assertEqual(events[0], "lifespan.startup.complete")
        self.assertIsNone(seen["holder"])
        refresher_cls.return_value.shutdown.assert_not_called()

    def test_renew_and_release_only_for_owner(self):
        self.assertTrue(asgi._acquire_leader_lock("host-a:1"))
        self.assertTrue(asgi._renew_leader_lock("host-a:1"))
        self.assertFalse(asgi._renew_leader_lock("host-b:2"))

        asgi._release_leader_lock("host-b:2")
        self.assertEqual(cache.get(asgi.LEADER_KEY), "host-a:1")
        asgi._release_leader_lock("host-a:1")
        self.assertIsNone(cache.get(asgi.LEADER_KEY))

"""
Tests for NBU rate processing, caching, conversion and the currency endpoints.
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
from django.core.cache import cache
from django.utils import timezone
from rest_framework import status

from astroluna.testing import BaseTestCase
from .models import CheckoutQuote, ExchangeRateSnapshot
from .scheduler import RatesRefresher
from . import services

NBU_PAYLOAD = [
    {"r030": 840, "txt": "Долар США", "rate": 40.0, "cc": "USD", "exchangedate": "01.10.2026"},
    {"r030": 978, "txt": "Євро", "rate": 44.0, "cc": "EUR", "exchangedate": "01.10.2026"},
    {"r030": 826, "txt": "Фунт стерлінгів", "rate": 55.0, "cc": "GBP", "exchangedate": "01.10.2026"},
    {"r030": 985, "txt": "Злотий", "rate": 10.2, "cc": "PLN", "exchangedate": "01.10.2026"},
]

STATIC_RATES = {"EUR": 1.0, "USD": 1.1, "GBP": 0.8, "timestamp": "2026-10-01T00:00:00+00:00"}


def nbu_response(payload=NBU_PAYLOAD, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = payload
    return response


class TestRateProcessing(BaseTestCase):

    def test_rates_are_rebased_on_eur(self):
        rates = services.process_nbu_rates(NBU_PAYLOAD)
        self.assertEqual(rates["EUR"], 1.0)
        self.assertAlmostEqual(rates["USD"], 1.1)
        self.assertAlmostEqual(rates["GBP"], 0.8)
        self.assertIn("timestamp", rates)

    def test_missing_currency_raises(self):
        with self.assertRaises(services.RatesUnavailable):
            services.process_nbu_rates([item for item in NBU_PAYLOAD if item["cc"] != "GBP"])

    @patch("currency.services.httpx.get")
    def test_non_2xx_raises(self, mock_get):
        mock_get.return_value = nbu_response(status_code=503)
        with self.assertRaises(services.RatesUnavailable):
            services.fetch_nbu_rates()

    @patch("currency.services.httpx.get")
    def test_network_error_raises(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("boom")
        with self.assertRaises(services.RatesUnavailable):
            services.fetch_nbu_rates()

    def test_freshness(self):
        now = timezone.now()
        live = {"timestamp": (now - timedelta(hours=23)).isoformat()}
        stale = {"timestamp": (now - timedelta(hours=25)).isoformat()}
        fallback = {"timestamp": (now - timedelta(hours=2)).isoformat(), "fallback": True}
        self.assertTrue(services.rates_are_fresh(live, now=now))
        self.assertFalse(services.rates_are_fresh(stale, now=now))
        self.assertFalse(services.rates_are_fresh(fallback, now=now))
        self.assertFalse(services.rates_are_fresh(None))


class TestGetExchangeRates(BaseTestCase):

    @patch("currency.services.httpx.get")
    def test_fetches_once_then_serves_cache(self, mock_get):
        mock_get.return_value = nbu_response()
        first = services.get_exchange_rates()
        second = services.get_exchange_rates()

        self.assertEqual(mock_get.call_count, 1)
        self.assertEqual(first, second)
        self.assertEqual(ExchangeRateSnapshot.objects.count(), 1)
        self.assertEqual(ExchangeRateSnapshot.objects.get().source, ExchangeRateSnapshot.SOURCE_NBU)

    @patch("currency.services.httpx.get")
    def test_snapshot_is_used_when_cache_is_empty(self, mock_get):
        mock_get.return_value = nbu_response()
        services.get_exchange_rates()
        cache.clear()

        services.get_exchange_rates()
        self.assertEqual(mock_get.call_count, 1)

    @patch("currency.services.httpx.get")
    def test_stale_snapshot_is_refetched(self, mock_get):
        mock_get.return_value = nbu_response()
        old = {**STATIC_RATES, "timestamp": (timezone.now() - timedelta(days=2)).isoformat()}
        ExchangeRateSnapshot.objects.create(rates=old)

        rates = services.get_exchange_rates()
        self.assertEqual(mock_get.call_count, 1)
        self.assertAlmostEqual(rates["USD"], 1.1)

    @patch("currency.services.httpx.get")
    def test_falls_back_when_nbu_fails(self, mock_get):
        mock_get.side_effect = httpx.ConnectTimeout("timeout")
        with self.assertLogs("currency", level="WARNING"):
            rates = services.get_exchange_rates()

        self.assertTrue(rates["fallback"])
        self.assertEqual(rates["USD"], 1.10)
        self.assertEqual(rates["GBP"], 0.85)
        snapshot = ExchangeRateSnapshot.objects.get()
        self.assertTrue(snapshot.is_fallback)


class TestConversion(BaseTestCase):

    def test_eur_is_identity(self):
        self.assertEqual(services.convert_to_eur(12.5, "EUR", STATIC_RATES), 12.5)
        self.assertEqual(services.convert_from_eur(12.5, "EUR", STATIC_RATES), 12.5)

    def test_round_trip_through_eur(self):
        self.assertAlmostEqual(services.convert_from_eur(10, "USD", STATIC_RATES), 11.0)
        self.assertAlmostEqual(services.convert_to_eur(8, "GBP", STATIC_RATES), 10.0)

    def test_unsupported_currency(self):
        with self.assertRaises(services.UnsupportedCurrency):
            services.convert_from_eur(10, "JPY", STATIC_RATES)

    def test_format_currency(self):
        self.assertEqual(services.format_currency(1234.5, "EUR"), "€1,234.50")
        self.assertEqual(services.format_currency(0.1, "USD"), "$0.10")
        self.assertEqual(services.format_currency(-5, "GBP"), "-£5.00")

    def test_package_pricing(self):
        pricing = services.package_pricing(STATIC_RATES)
        self.assertEqual(len(pricing), 5)
        first = pricing[0]
        self.assertEqual(first["credits"], 50)
        self.assertAlmostEqual(first["prices"]["USD"], 5.5)
        self.assertEqual(first["prices"]["formatted"]["EUR"], "€5.00")
        self.assertEqual(first["cost_per_credit"]["EUR"], 0.1)


@patch("currency.services.get_exchange_rates", return_value=STATIC_RATES)
class TestCurrencyEndpoints(BaseTestCase):

    def test_rates(self, _rates):
        resp = self.client.get("/api/currency/rates")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["rates"]["USD"], 1.1)
        self.assertEqual(resp.data["timestamp"], STATIC_RATES["timestamp"])
        self.assertNotIn("fallback", resp.data)

    def test_rates_flags_fallback(self, mock_rates):
        mock_rates.return_value = services.fallback_rates()
        resp = self.client.get("/api/currency/rates")
        self.assertTrue(resp.data["fallback"])

    def test_pricing(self, _rates):
        resp = self.client.get("/api/currency/pricing")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["service_costs"], {"astroscope": 15, "tarotpath": 20, "zodiac_tome": 10})
        self.assertEqual([p["credits"] for p in resp.data["pricing"]], [50, 220, 1200, 7000, 32000])

    def test_convert(self, _rates):
        resp = self.client.post(
            "/api/currency/convert", {"amount": 11, "from_currency": "usd", "to_currency": "GBP"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["converted_amount"], 8.0)
        self.assertAlmostEqual(resp.data["exchange_rate"], 0.8 / 1.1)
        self.assertEqual(resp.data["formatted"], "£8.00")

    def test_convert_missing_parameters(self, _rates):
        resp = self.client.post("/api/currency/convert", {"amount": 10}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Missing required parameters: amount, from_currency, to_currency")

    def test_convert_unsupported_currency(self, _rates):
        resp = self.client.post(
            "/api/currency/convert", {"amount": 10, "from_currency": "EUR", "to_currency": "JPY"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["error"], "Unsupported currency: JPY")

    def test_supported(self, _rates):
        resp = self.client.get("/api/currency/supported")
        self.assertEqual([c["code"] for c in resp.data["currencies"]], ["EUR", "USD", "GBP"])
        self.assertTrue(resp.data["currencies"][0]["is_base"])

    def test_checkout_quote(self, _rates):
        resp = self.client.post(
            "/api/currency/checkout/quote", {"amount_eur": 20, "target_currency": "USD"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data["quote_id"].startswith("quote_"))
        self.assertEqual(resp.data["converted_amount"], 22.0)
        self.assertEqual(resp.data["rate_used"], 1.1)
        self.assertEqual(resp.data["formatted_amount"], "$22.00")

        quote = CheckoutQuote.objects.get(quote_id=resp.data["quote_id"])
        self.assertEqual(quote.rates_snapshot["USD"], 1.1)
        self.assertFalse(quote.is_expired)
        self.assertAlmostEqual(
            (quote.expires_at - quote.created_at).total_seconds(), 30 * 60, delta=5
        )

    def test_checkout_quote_missing_parameters(self, _rates):
        resp = self.client.post("/api/currency/checkout/quote", {"amount_eur": 20}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)


class TestRatesRefresher(BaseTestCase):

    @patch("currency.scheduler.BackgroundScheduler")
    def test_start_and_shutdown(self, mock_scheduler_cls):
        refresher = RatesRefresher(interval_hours=6)
        refresher.start()
        refresher.start()

        mock_scheduler_cls.assert_called_once()
        sched = mock_scheduler_cls.return_value
        sched.add_job.assert_called_once()
        self.assertEqual(sched.add_job.call_args.kwargs["hours"], 6)
        sched.start.assert_called_once()
        self.assertTrue(refresher.running)

        refresher.shutdown()
        sched.shutdown.assert_called_once_with(wait=False)
        self.assertFalse(refresher.running)

    @patch("currency.scheduler.refresh_rates", side_effect=RuntimeError("db down"))
    def test_job_errors_are_logged(self, _refresh):
        with self.assertLogs("currency", level="ERROR"):
            RatesRefresher().refresh()

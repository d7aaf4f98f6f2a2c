"""Exchange rates from the National Bank of Ukraine (NBU), re-based on EUR.

NBU publishes every rate as UAH per unit of foreign currency. Our prices are in
EUR, so rates are stored as "units of currency per 1 EUR" with EUR fixed at 1.0.

Rates are served from the cache while fresh, then from the latest database
snapshot, and only fetched when both are stale. When NBU cannot be reached a
static fallback is served for a shorter period so the live source is retried
sooner.
"""
import secrets
import time
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from django.utils.dateparse import parse_datetime
import logging

from astroluna.exceptions import ServiceError
from .models import CheckoutQuote, ExchangeRateSnapshot

logger = logging.getLogger('currency')

RATES_CACHE_KEY = "currency:rates"
BASE_CURRENCY = "EUR"

CURRENCIES = [
    {"code": "EUR", "name": "Euro", "symbol": "€", "is_base": True},
    {"code": "USD", "name": "US Dollar", "symbol": "$", "is_base": False},
    {"code": "GBP", "name": "British Pound", "symbol": "£", "is_base": False},
]
CURRENCY_SYMBOLS = {c["code"]: c["symbol"] for c in CURRENCIES}

FALLBACK_RATES = {"EUR": 1.0, "USD": 1.10, "GBP": 0.85}


class RatesUnavailable(Exception):
    """NBU could not be reached or did not return the rates we need."""


class UnsupportedCurrency(ServiceError):
    default_detail = "Unsupported currency"
    default_code = "unsupported_currency"

    def __init__(self, currency):
        super().__init__(f"Unsupported currency: {currency}", currency=currency)


def _now_iso() -> str:
    return timezone.now().isoformat()


def fetch_nbu_rates() -> List[dict]:
    try:
        resp = httpx.get(settings.NBU_API_URL, timeout=settings.CURRENCY_HTTP_TIMEOUT)
    except httpx.HTTPError as e:
        raise RatesUnavailable(f"NBU request failed: {e}") from e

    if not resp.is_success:
        raise RatesUnavailable(f"NBU API request failed: {resp.status_code}")
    try:
        data = resp.json()
    except ValueError as e:
        raise RatesUnavailable("NBU API returned invalid JSON") from e
    if not isinstance(data, list):
        raise RatesUnavailable("NBU API returned an unexpected payload")
    return data


def process_nbu_rates(items: List[dict]) -> Dict:
    """Re-base NBU's UAH quotes on EUR."""
    by_code = {}
    for item in items:
        if isinstance(item, dict) and item.get("cc"):
            by_code[str(item["cc"]).upper()] = item.get("rate")

    try:
        eur = float(by_code["EUR"])
        usd = float(by_code["USD"])
        gbp = float(by_code["GBP"])
    except (KeyError, TypeError, ValueError) as e:
        raise RatesUnavailable("Required currency rates not found in NBU response") from e
    if min(eur, usd, gbp) <= 0:
        raise RatesUnavailable("NBU response contains non-positive rates")

    return {
        "EUR": 1.0,
        "USD": eur / usd,
        "GBP": eur / gbp,
        "timestamp": _now_iso(),
    }


def fallback_rates() -> Dict:
    return {**FALLBACK_RATES, "timestamp": _now_iso(), "fallback": True}


def rates_are_fresh(rates: Optional[Dict], now: Optional[datetime] = None) -> bool:
    if not rates or not rates.get("timestamp"):
        return False
    fetched = parse_datetime(str(rates["timestamp"]))
    if fetched is None:
        return False
    if timezone.is_naive(fetched):
        fetched = timezone.make_aware(fetched, dt_timezone.utc)
    max_age = settings.CURRENCY_FALLBACK_MAX_AGE if rates.get("fallback") else settings.CURRENCY_RATES_MAX_AGE
    return (now or timezone.now()) - fetched < max_age


def store_rates(rates: Dict) -> Dict:
    ExchangeRateSnapshot.objects.create(
        rates=rates,
        source=ExchangeRateSnapshot.SOURCE_FALLBACK if rates.get("fallback") else ExchangeRateSnapshot.SOURCE_NBU,
    )
    timeout = settings.CURRENCY_FALLBACK_MAX_AGE if rates.get("fallback") else settings.CURRENCY_RATES_MAX_AGE
    cache.set(RATES_CACHE_KEY, rates, int(timeout.total_seconds()))
    return rates


def refresh_rates() -> Dict:
    """Fetch live rates and store them; store and return the fallback when NBU fails."""
    try:
        rates = process_nbu_rates(fetch_nbu_rates())
    except RatesUnavailable as e:
        logger.warning("NBU rates unavailable, using fallback rates: %s", e)
        rates = fallback_rates()
    else:
        logger.info("refreshed NBU rates: USD=%.4f GBP=%.4f", rates["USD"], rates["GBP"])
    return store_rates(rates)


def get_exchange_rates() -> Dict:
    cached = cache.get(RATES_CACHE_KEY)
    if rates_are_fresh(cached):
        return cached

    snapshot = ExchangeRateSnapshot.objects.first()
    if snapshot is not None and rates_are_fresh(snapshot.rates):
        cache.set(RATES_CACHE_KEY, snapshot.rates)
        return snapshot.rates

    return refresh_rates()


def _rate(currency: str, rates: Dict) -> float:
    rate = rates.get(currency) if currency in CURRENCY_SYMBOLS else None
    if not rate:
        raise UnsupportedCurrency(currency)
    return float(rate)


def convert_to_eur(amount: float, currency: str, rates: Dict) -> float:
    rate = _rate(currency, rates)
    return amount if currency == BASE_CURRENCY else amount / rate


def convert_from_eur(amount: float, currency: str, rates: Dict) -> float:
    rate = _rate(currency, rates)
    return amount if currency == BASE_CURRENCY else amount * rate


def exchange_rate(from_currency: str, to_currency: str, rates: Dict) -> float:
    return _rate(to_currency, rates) / _rate(from_currency, rates)


def format_currency(amount: float, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def calculate_package_pricing(eur_amount: float, rates: Dict) -> Dict:
    prices = {code: convert_from_eur(eur_amount, code, rates) for code in CURRENCY_SYMBOLS}
    prices["formatted"] = {code: format_currency(prices[code], code) for code in CURRENCY_SYMBOLS}
    return prices


def package_pricing(rates: Dict) -> List[Dict]:
    pricing = []
    for pkg in settings.CREDIT_PACKAGES:
        prices = calculate_package_pricing(pkg["eur_amount"], rates)
        pricing.append({
            "eur_amount": pkg["eur_amount"],
            "credits": pkg["credits"],
            "bonus_percent": pkg["bonus_percent"],
            "prices": prices,
            "cost_per_credit": {code: round(prices[code] / pkg["credits"], 4) for code in CURRENCY_SYMBOLS},
        })
    return pricing


def create_checkout_quote(amount_eur: float, target_currency: str, user=None) -> CheckoutQuote:
    rates = get_exchange_rates()
    converted = convert_from_eur(amount_eur, target_currency, rates)
    quote = CheckoutQuote.objects.create(
        quote_id=f"quote_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
        user=user if user is not None and user.is_authenticated else None,
        amount_eur=Decimal(str(round(amount_eur, 2))),
        target_currency=target_currency,
        converted_amount=Decimal(str(round(converted, 2))),
        rate_used=_rate(target_currency, rates),
        rates_snapshot=rates,
        expires_at=timezone.now() + settings.CHECKOUT_QUOTE_TTL,
    )
    logger.info("checkout quote %s: %.2f EUR -> %s", quote.quote_id, amount_eur, target_currency)
    return quote

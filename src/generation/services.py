"""Paid generation flow shared by the three AI services.

Credits are checked before the LLM call but only deducted, together with
saving the content, once generation succeeded. If a concurrent request
spent the credits in between, the content is rolled back and the request
fails with 402 like an ordinary shortfall.
"""
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone
import logging

from credits.services import InsufficientCredits, deduct_credits, get_balance, require_credits
from . import prompts
from .gemini import GeminiClient, GenerationError, parse_horoscope, parse_tarot, parse_zodiac
from .models import ContentLibrary, GenerationLog

logger = logging.getLogger('generation')


@dataclass(frozen=True)
class Service:
    content_type: str
    payload_key: str
    label: str


SERVICES = {
    GenerationLog.SERVICE_ASTROSCOPE: Service(ContentLibrary.TYPE_HOROSCOPE, "horoscope", "horoscope"),
    GenerationLog.SERVICE_TAROTPATH: Service(ContentLibrary.TYPE_TAROT_READING, "tarot_reading", "tarot reading"),
    GenerationLog.SERVICE_ZODIAC_TOME: Service(ContentLibrary.TYPE_ZODIAC_INFO, "zodiac_analysis", "zodiac analysis"),
}

SERVICE_INFO = {
    "astroscope": {
        "name": "AstroScope",
        "description": "Personalized monthly horoscope",
        "features": ["Personalized insights", "Key dates", "Multiple life areas", "PDF download"],
    },
    "tarotpath": {
        "name": "TarotPath",
        "description": "AI-generated Tarot reading",
        "features": ["5-card spread", "Detailed interpretations", "Personal guidance", "PDF download"],
    },
    "zodiac_tome": {
        "name": "ZodiacTome",
        "description": "Zodiac compatibility & insights",
        "features": ["Compatibility analysis", "Deep insights", "Multiple aspects", "Instant results"],
    },
}


def service_cost(service_type: str) -> int:
    return settings.SERVICE_COSTS[service_type]


def pricing() -> dict:
    return {
        "services": {
            key: {**info, "cost": service_cost(key)} for key, info in SERVICE_INFO.items()
        },
        "supported_languages": settings.SUPPORTED_LANGUAGES,
    }


def _generated_at() -> str:
    return timezone.now().isoformat()


def generate_horoscope(client: GeminiClient, data: dict):
    text = client.generate_content(prompts.horoscope_prompt(data), service=GenerationLog.SERVICE_ASTROSCOPE)
    meta = {
        "type": data["type"],
        "zodiac_sign": data.get("zodiac_sign"),
        "birth_date": data.get("birth_date"),
        "birth_time": data.get("birth_time"),
        "birth_place": data.get("birth_place"),
        "language": data.get("language", "en"),
    }
    return prompts.horoscope_title(data), parse_horoscope(text), meta


def generate_tarot_reading(client: GeminiClient, data: dict):
    spread = data["spread_type"] if data["spread_type"] in prompts.SPREADS else prompts.DEFAULT_SPREAD
    cards = prompts.draw_cards(data["selected_cards"], spread)
    text = client.generate_content(prompts.tarot_prompt(data, cards), service=GenerationLog.SERVICE_TAROTPATH)
    meta = {
        "question": data["question"],
        "reading_type": data["reading_type"],
        "spread_type": data["spread_type"],
        "selected_cards": data["selected_cards"],
        "cards": [card["name"] for card in cards],
        "language": data.get("language", "en"),
    }
    return prompts.tarot_title(data), parse_tarot(text, cards), meta


def generate_zodiac_analysis(client: GeminiClient, data: dict):
    text = client.generate_content(prompts.zodiac_prompt(data), service=GenerationLog.SERVICE_ZODIAC_TOME)
    meta = {
        "zodiac_sign": data["zodiac_sign"],
        "analysis_type": data["analysis_type"],
        "target_sign": data.get("target_sign"),
        "language": data.get("language", "en"),
    }
    return prompts.zodiac_title(data), parse_zodiac(text), meta


GENERATORS = {
    GenerationLog.SERVICE_ASTROSCOPE: generate_horoscope,
    GenerationLog.SERVICE_TAROTPATH: generate_tarot_reading,
    GenerationLog.SERVICE_ZODIAC_TOME: generate_zodiac_analysis,
}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _mark_failed(log: GenerationLog, error: str, started: float) -> None:
    log.status = GenerationLog.STATUS_FAILED
    log.error = error
    log.processing_time_ms = _elapsed_ms(started)
    log.save(update_fields=["status", "error", "processing_time_ms"])


def run_generation(user, service_type: str, data: dict, client: Optional[GeminiClient] = None) -> dict:
    """Charge `user` for one generation of `service_type` and save the result to their library."""
    service = SERVICES[service_type]
    generate: Callable = GENERATORS[service_type]
    cost = service_cost(service_type)
    require_credits(user, cost)

    log = GenerationLog.objects.create(
        user=user, service_type=service_type, params=data, base_cost=cost, total_cost=cost,
    )
    started = time.monotonic()
    try:
        title, content, meta = generate(client or GeminiClient(), data)
        meta["generated_at"] = _generated_at()
        with transaction.atomic():
            item = ContentLibrary.objects.create(
                user=user,
                generation=log,
                content_type=service.content_type,
                title=title,
                content=content,
                meta=meta,
            )
            charged = deduct_credits(
                user, cost, description=f"AI generation: {service_type}", reference=f"generation:{log.pk}"
            )
            if not charged:
                raise InsufficientCredits(required=cost, current=get_balance(user))
    except InsufficientCredits:
        logger.info("generation %s: credits spent concurrently for user id=%s", log.pk, user.pk)
        _mark_failed(log, "Insufficient credits", started)
        raise
    except Exception as e:
        logger.exception("generation %s (%s) failed", log.pk, service_type)
        _mark_failed(log, str(e), started)
        raise GenerationError(f"Failed to generate {service.label}", details=str(e)) from e

    log.status = GenerationLog.STATUS_COMPLETED
    log.result_id = str(item.pk)
    log.processing_time_ms = _elapsed_ms(started)
    log.save(update_fields=["status", "result_id", "processing_time_ms"])
    logger.info("generation %s (%s) completed for user id=%s in %sms",
                log.pk, service_type, user.pk, log.processing_time_ms)

    return {
        "success": True,
        service.payload_key: {"title": title, **content},
        "content_id": item.pk,
        "credits_used": cost,
        "remaining_credits": get_balance(user),
    }


def filter_library(user, params) -> list:
    """The user's library items matching the `type`, `favorite`, `tag` and `search` query params."""
    qs = ContentLibrary.objects.filter(user=user)
    if params.get("type"):
        qs = qs.filter(content_type=params["type"])
    if params.get("favorite") is not None:
        qs = qs.filter(is_favorite=str(params["favorite"]).lower() in ("1", "true", "yes"))
    if params.get("search"):
        qs = qs.filter(title__icontains=params["search"])
    items = list(qs)
    tag = params.get("tag")
    if tag:
        # JSON containment lookups are unavailable on sqlite
        items = [item for item in items if tag in (item.tags or [])]
    return items


def library_stats(user) -> dict:
    qs = ContentLibrary.objects.filter(user=user)
    by_type = {content_type: 0 for content_type, _ in ContentLibrary.TYPE_CHOICES}
    for row in qs.values("content_type").order_by().annotate(count=Count("id")):
        by_type[row["content_type"]] = row["count"]

    tags = set()
    for item_tags in qs.values_list("tags", flat=True):
        tags.update(item_tags or [])

    return {
        "total_items": sum(by_type.values()),
        "by_type": by_type,
        "favorites_count": qs.filter(is_favorite=True).count(),
        "tags": sorted(tags),
        "recent_count": qs.filter(created_at__gte=timezone.now() - timedelta(days=7)).count(),
    }


def usage_stats(user) -> dict:
    now = timezone.now()
    completed = GenerationLog.objects.filter(user=user, status=GenerationLog.STATUS_COMPLETED)

    overall = completed.aggregate(
        total_generations=Count("id"),
        total_credits_used=Sum("total_cost"),
        avg_processing_time=Avg("processing_time_ms"),
    )
    by_service = completed.values("service_type").order_by("service_type").annotate(
        total_generations=Count("id"),
        total_credits_used=Sum("total_cost"),
        avg_processing_time=Avg("processing_time_ms"),
        last_7_days=Count("id", filter=Q(created_at__gte=now - timedelta(days=7))),
        last_30_days=Count("id", filter=Q(created_at__gte=now - timedelta(days=30))),
    )

    def clean(row: dict) -> dict:
        row["total_credits_used"] = row["total_credits_used"] or 0
        row["avg_processing_time"] = round(row["avg_processing_time"] or 0)
        return row

    return {
        "overall": clean(overall),
        "by_service": [clean(dict(row)) for row in by_service],
        "current_balance": get_balance(user),
    }

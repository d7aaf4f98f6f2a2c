"""Gemini generative-text client and response parsing.

Without an API key (or with ``GEMINI_DEMO_MODE``) the client answers with
canned JSON per service so the whole generation flow can run offline.
"""
import json
import random
import re
from typing import List, Optional

import httpx
from django.conf import settings
from loguru import logger
from rest_framework import status

from astroluna.exceptions import ServiceError

FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


class GenerationError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Content generation failed"
    default_code = "generation_error"


DEMO_RESPONSES = {
    "astroscope": {
        "overview": "This month the stars invite you to slow down and listen to your inner voice.",
        "love": "Honest conversations bring you closer to the people who matter.",
        "career": "A patient approach to an old project pays off mid-month.",
        "health": "Rest and gentle movement restore your energy.",
        "key_dates": [
            {"date": "7th", "description": "A fresh start in communication"},
            {"date": "15th", "description": "Full moon clarity on money matters"},
            {"date": "24th", "description": "A favourable day for new connections"},
        ],
        "mood": "Reflective",
        "lucky_numbers": [3, 12, 27],
        "lucky_colors": ["Indigo", "Gold"],
        "advice": "Trust the timing of your life.",
    },
    "tarotpath": {
        "overall_message": "The cards describe a path from uncertainty towards quiet confidence.",
        "advice": "Take one small, concrete step towards what you want this week.",
    },
    "zodiac_tome": {
        "insight": "Your sign carries a strong blend of intuition and determination.",
        "traits": ["Intuitive", "Determined", "Loyal", "Creative", "Warm"],
        "compatibility": ["Taurus", "Cancer", "Pisces"],
        "advice": "Let your curiosity lead and your patience follow.",
    },
}

DEMO_GREETING = "Welcome to AstroLuna! The stars are aligned for your journey."


def demo_response(service: Optional[str] = None) -> str:
    if service in DEMO_RESPONSES:
        return json.dumps(DEMO_RESPONSES[service])
    return DEMO_GREETING


class GeminiClient:

    def __init__(self, api_key=None, model=None, base_url=None, timeout=None, demo_mode=None):
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GEMINI_TIMEOUT
        if demo_mode is None:
            demo_mode = settings.GEMINI_DEMO_MODE or not self.api_key
        self.demo_mode = demo_mode

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate_content(self, prompt: str, service: Optional[str] = None, **overrides) -> str:
        """Return the generated text for `prompt`.

        `overrides` replace keys of the default generation config, e.g. ``maxOutputTokens=100``.
        """
        if self.demo_mode:
            logger.debug("gemini demo mode: canned response for {}", service or "prompt")
            return demo_response(service)

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {**settings.GEMINI_GENERATION_CONFIG, **overrides},
        }
        try:
            resp = httpx.post(self.endpoint, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error("gemini request failed: {}", e)
            raise GenerationError(f"Gemini API request failed: {e}") from e

        if not resp.is_success:
            try:
                message = resp.json().get("error", {}).get("message")
            except ValueError:
                message = None
            logger.warning("gemini returned {}: {}", resp.status_code, message)
            raise GenerationError(f"Gemini API error: {resp.status_code} - {message or 'request failed'}")

        try:
            candidates = resp.json().get("candidates") or []
        except ValueError as e:
            raise GenerationError("Gemini API returned invalid JSON") from e
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise GenerationError("Gemini API returned no content")
        logger.debug("gemini generated {} characters with {}", len(text), self.model)
        return text


def strip_code_fences(text: str) -> str:
    text = text.strip()
    match = FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def parse_json(text: str) -> Optional[dict]:
    try:
        data = json.loads(strip_code_fences(text))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_horoscope(text: str) -> dict:
    data = parse_json(text)
    if data is None:
        logger.info("horoscope response is not JSON, using fallback structure")
        return {
            "overview": text,
            "love": "",
            "career": "",
            "health": "",
            "key_dates": [],
            "mood": "Mystical",
            "lucky_numbers": sorted(random.sample(range(1, 50), 3)),
            "lucky_colors": ["Purple", "Silver"],
            "advice": "The universe has a plan for you. Stay open to its messages.",
        }
    return {
        "overview": data.get("overview") or text,
        "love": data.get("love") or "",
        "career": data.get("career") or "",
        "health": data.get("health") or "",
        "key_dates": data.get("key_dates") or [],
        "mood": data.get("mood") or "Balanced",
        "lucky_numbers": data.get("lucky_numbers") or [7, 14, 21],
        "lucky_colors": data.get("lucky_colors") or ["Blue", "Gold"],
        "advice": data.get("advice") or "Trust your intuition this month.",
    }


def _default_cards(cards: List[dict], meaning: str, interpretation: str) -> List[dict]:
    return [
        {"name": card["name"], "position": card["position"], "meaning": meaning, "interpretation": interpretation}
        for card in cards
    ]


def parse_tarot(text: str, cards: List[dict]) -> dict:
    data = parse_json(text)
    if data is None:
        logger.info("tarot response is not JSON, using fallback structure")
        excerpt = text[:200] + "..."
        return {
            "cards": _default_cards(cards, "This card carries deep spiritual significance.", excerpt),
            "overall_message": "The cards speak of transformation and new possibilities.",
            "advice": "Listen to your intuition and trust the process of change.",
        }
    return {
        "cards": data.get("cards") or _default_cards(
            cards,
            "A card of transformation and new beginnings.",
            "This card speaks to your current journey and the path ahead.",
        ),
        "overall_message": data.get("overall_message")
        or "The cards reveal a time of significant change and growth in your life.",
        "advice": data.get("advice") or "Trust in your inner wisdom and remain open to new opportunities.",
    }


def parse_zodiac(text: str) -> dict:
    data = parse_json(text)
    if data is None:
        logger.info("zodiac response is not JSON, using fallback structure")
        return {
            "insight": text,
            "traits": ["Intuitive", "Creative", "Passionate"],
            "compatibility": ["Compatible with earth and water signs"],
            "advice": "Embrace your natural cosmic energy and trust your path.",
        }
    result = {
        "insight": data.get("insight") or text,
        "traits": data.get("traits") or ["Intuitive", "Creative", "Passionate", "Loyal", "Ambitious"],
        "compatibility": data.get("compatibility") or ["Taurus", "Cancer", "Virgo"],
        "advice": data.get("advice") or "Trust your natural instincts and embrace your unique qualities.",
    }
    if "compatibility_score" in data:
        result["compatibility_score"] = data["compatibility_score"]
    return result

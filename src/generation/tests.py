"""
Tests for prompts, Gemini parsing, the paid generation flow and the content library.
"""
import json
from unittest.mock import MagicMock, patch

import httpx
from django.conf import settings
from django.test import override_settings
from rest_framework import status

from astroluna.testing import AuthenticatedTestCase, BaseTestCase
from credits.models import CreditTransaction
from credits.services import add_credits, get_balance
from . import prompts
from .gemini import (
    GeminiClient,
    GenerationError,
    parse_horoscope,
    parse_json,
    parse_tarot,
    parse_zodiac,
    strip_code_fences,
)
from .models import ContentLibrary, GenerationLog


def gemini_response(text, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return response


class TestPrompts(BaseTestCase):

    def test_deck(self):
        self.assertEqual(len(prompts.TAROT_DECK), 78)
        self.assertEqual(len(set(prompts.TAROT_DECK)), 78)
        self.assertEqual(prompts.TAROT_DECK[22], "Ace of Cups")
        self.assertEqual(prompts.TAROT_DECK[-1], "King of Pentacles")

    def test_draw_cards_wraps_around_deck(self):
        cards = prompts.draw_cards([0, 78, 100, 21, 155])
        self.assertEqual(
            [c["name"] for c in cards],
            ["The Fool", "The Fool", "Ace of Cups", "The World", "King of Pentacles"],
        )
        self.assertEqual([c["position"] for c in cards], prompts.SPREADS["five-card"])

    def test_spread_layouts(self):
        self.assertEqual(len(prompts.SPREADS["single"]), 1)
        self.assertEqual(len(prompts.SPREADS["three-card"]), 3)
        self.assertEqual(len(prompts.SPREADS["celtic-cross"]), 10)
        cards = prompts.draw_cards([1, 2, 3, 4, 5], "three-card")
        self.assertEqual(cards[3]["position"], "Position 4")

    def test_titles(self):
        self.assertEqual(
            prompts.zodiac_title({"zodiac_sign": "Leo", "analysis_type": "compatibility", "target_sign": "Aries"}),
            "Leo & Aries Compatibility Analysis",
        )
        self.assertEqual(
            prompts.zodiac_title({"zodiac_sign": "Leo", "analysis_type": "insights"}),
            "Leo Deep Insights & Analysis",
        )

    def test_prompt_language(self):
        prompt = prompts.horoscope_prompt({"type": "quick", "zodiac_sign": "Virgo", "language": "de"})
        self.assertIn("Virgo", prompt)
        self.assertIn("Respond in German", prompt)


class TestParsing(BaseTestCase):

    def test_strip_code_fences(self):
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fences('{"a": 1}'), '{"a": 1}')
        self.assertEqual(parse_json('```\n{"mood": "Calm"}\n```'), {"mood": "Calm"})
        self.assertIsNone(parse_json("[1, 2, 3]"))

    def test_horoscope_fallback(self):
        result = parse_horoscope("The stars are quiet this month.")
        self.assertEqual(result["overview"], "The stars are quiet this month.")
        self.assertEqual(result["mood"], "Mystical")
        self.assertEqual(result["lucky_colors"], ["Purple", "Silver"])
        self.assertEqual(len(result["lucky_numbers"]), 3)

    def test_horoscope_fills_missing_keys(self):
        result = parse_horoscope('```json\n{"overview": "Bright", "mood": "Joyful"}\n```')
        self.assertEqual(result["overview"], "Bright")
        self.assertEqual(result["mood"], "Joyful")
        self.assertEqual(result["lucky_numbers"], [7, 14, 21])

    def test_tarot_fallback(self):
        cards = prompts.draw_cards([0, 1, 2, 3, 4])
        result = parse_tarot("x" * 300, cards)
        self.assertEqual(len(result["cards"]), 5)
        self.assertEqual(result["cards"][0]["name"], "The Fool")
        self.assertEqual(result["cards"][0]["interpretation"], "x" * 200 + "...")

    def test_zodiac_fallback(self):
        result = parse_zodiac("Leo shines.")
        self.assertEqual(result["insight"], "Leo shines.")
        self.assertEqual(result["traits"], ["Intuitive", "Creative", "Passionate"])


@override_settings(GEMINI_API_KEY="test-key", GEMINI_DEMO_MODE=False)
class TestGeminiClient(BaseTestCase):

    @patch("generation.gemini.httpx.post")
    def test_generate_content(self, mock_post):
        response = gemini_response("")
        response.json.return_value = {
            "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "stars"}]}}]
        }
        mock_post.return_value = response

        text = GeminiClient().generate_content("hi", maxOutputTokens=100)
        self.assertEqual(text, "Hello stars")

        args, kwargs = mock_post.call_args
        self.assertTrue(args[0].endswith(f"/models/{settings.GEMINI_MODEL}:generateContent"))
        self.assertEqual(kwargs["params"], {"key": "test-key"})
        self.assertEqual(kwargs["json"]["contents"][0]["parts"][0]["text"], "hi")
        config = kwargs["json"]["generationConfig"]
        self.assertEqual(config["maxOutputTokens"], 100)
        self.assertEqual(config["temperature"], 0.8)
        self.assertEqual(config["topK"], 40)

    @patch("generation.gemini.httpx.post")
    def test_api_error(self, mock_post):
        response = gemini_response("", status_code=429)
        response.json.return_value = {"error": {"message": "Quota exceeded"}}
        mock_post.return_value = response
        with self.assertRaises(GenerationError) as ctx:
            GeminiClient().generate_content("hi")
        self.assertIn("Quota exceeded", str(ctx.exception.detail))

    @patch("generation.gemini.httpx.post")
    def test_empty_response(self, mock_post):
        response = gemini_response("")
        response.json.return_value = {"candidates": []}
        mock_post.return_value = response
        with self.assertRaises(GenerationError):
            GeminiClient().generate_content("hi")

    @patch("generation.gemini.httpx.post")
    def test_demo_mode_makes_no_request(self, mock_post):
        with self.settings(GEMINI_API_KEY=""):
            client = GeminiClient()
            self.assertTrue(client.demo_mode)
            text = client.generate_content("hi", service="zodiac_tome")
        self.assertEqual(json.loads(text)["traits"][0], "Intuitive")
        mock_post.assert_not_called()


@override_settings(GEMINI_API_KEY="", GEMINI_DEMO_MODE=False)
class TestGenerateEndpoints(AuthenticatedTestCase):

    def setUp(self):
        super().setUp()
        add_credits(self.user, 100, type=CreditTransaction.TYPE_BONUS)

    def test_astroscope_quick(self):
        resp = self.client.post(
            "/api/ai/astroscope/generate", {"type": "quick", "zodiac_sign": "leo"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data["success"])
        self.assertEqual(resp.data["credits_used"], 15)
        self.assertEqual(resp.data["remaining_credits"], 85)
        self.assertEqual(resp.data["horoscope"]["title"], "Leo Monthly Horoscope")
        self.assertEqual(resp.data["horoscope"]["mood"], "Reflective")

        item = ContentLibrary.objects.get(pk=resp.data["content_id"])
        self.assertEqual(item.content_type, ContentLibrary.TYPE_HOROSCOPE)
        self.assertEqual(item.meta["zodiac_sign"], "Leo")

        log = GenerationLog.objects.get()
        self.assertEqual(log.status, GenerationLog.STATUS_COMPLETED)
        self.assertEqual(log.result_id, str(item.pk))
        self.assertEqual((log.base_cost, log.total_cost), (15, 15))
        self.assertIsNotNone(log.processing_time_ms)

        usage = CreditTransaction.objects.get(user=self.user, type=CreditTransaction.TYPE_USAGE)
        self.assertEqual(usage.amount, -15)
        self.assertEqual(usage.reference, f"generation:{log.pk}")

    def test_astroscope_personalized_requires_birth_date(self):
        resp = self.client.post("/api/ai/astroscope/generate", {"type": "personalized"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("birth_date", resp.data["details"])
        self.assertFalse(GenerationLog.objects.exists())

    def test_astroscope_personalized(self):
        resp = self.client.post(
            "/api/ai/astroscope/generate",
            {"type": "personalized", "birth_date": "1990-05-17", "birth_place": "Kyiv", "language": "es"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        item = ContentLibrary.objects.get(pk=resp.data["content_id"])
        self.assertEqual(item.meta["birth_date"], "1990-05-17")
        self.assertEqual(item.meta["language"], "es")
        self.assertEqual(GenerationLog.objects.get().params["birth_date"], "1990-05-17")

    def test_insufficient_credits(self):
        poor = self.create_user("poor@example.com")
        self.client.force_authenticate(user=poor)
        resp = self.client.post(
            "/api/ai/tarotpath/generate",
            {"question": "Will I travel?", "reading_type": "general", "spread_type": "five-card",
             "selected_cards": [1, 2, 3, 4, 5]},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(resp.data, {"error": "Insufficient credits", "required": 20, "current": 0})
        self.assertFalse(GenerationLog.objects.filter(user=poor).exists())

    def test_tarot_reading(self):
        resp = self.client.post(
            "/api/ai/tarotpath/generate",
            {"question": "What should I focus on?", "reading_type": "general", "spread_type": "five-card",
             "selected_cards": [0, 22, 100, 77, 5]},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        reading = resp.data["tarot_reading"]
        self.assertEqual(reading["title"], "Tarot Reading: What should I focus on?")
        self.assertEqual(
            [c["name"] for c in reading["cards"]],
            ["The Fool", "Ace of Cups", "Ace of Cups", "King of Pentacles", "The Hierophant"],
        )
        self.assertEqual(reading["cards"][0]["position"], "Past Influences")
        self.assertEqual(resp.data["remaining_credits"], 80)

    def test_tarot_requires_five_cards(self):
        resp = self.client.post(
            "/api/ai/tarotpath/generate",
            {"question": "Q", "reading_type": "general", "spread_type": "five-card", "selected_cards": [1, 2, 3, 4]},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["details"]["selected_cards"], ["Must select 5 cards"])

    def test_zodiac_compatibility(self):
        resp = self.client.post(
            "/api/ai/zodiac-tome/generate",
            {"zodiac_sign": "Leo", "analysis_type": "compatibility", "target_sign": "aries"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["zodiac_analysis"]["title"], "Leo & Aries Compatibility Analysis")
        self.assertEqual(resp.data["credits_used"], 10)
        self.assertEqual(ContentLibrary.objects.get().content_type, ContentLibrary.TYPE_ZODIAC_INFO)

    def test_zodiac_validation(self):
        resp = self.client.post(
            "/api/ai/zodiac-tome/generate", {"zodiac_sign": "Leo", "analysis_type": "compatibility"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("target_sign", resp.data["details"])

        resp = self.client.post(
            "/api/ai/zodiac-tome/generate", {"zodiac_sign": "Ophiuchus", "analysis_type": "insights"}, format="json"
        )
        self.assertIn("zodiac_sign", resp.data["details"])

    @patch("generation.gemini.httpx.post", side_effect=httpx.ConnectError("unreachable"))
    def test_llm_failure_marks_log_failed(self, _post):
        with self.settings(GEMINI_API_KEY="test-key"):
            with self.assertLogs("generation", level="ERROR"):
                resp = self.client.post(
                    "/api/ai/astroscope/generate", {"type": "quick", "zodiac_sign": "Leo"}, format="json"
                )

        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(resp.data["error"], "Failed to generate horoscope")
        self.assertIn("unreachable", resp.data["details"])
        log = GenerationLog.objects.get()
        self.assertEqual(log.status, GenerationLog.STATUS_FAILED)
        self.assertIn("unreachable", log.error)
        self.assertEqual(get_balance(self.user), 100)
        self.assertFalse(ContentLibrary.objects.exists())

    @patch("generation.services.deduct_credits", return_value=False)
    def test_concurrent_spend_returns_402(self, _deduct):
        resp = self.client.post(
            "/api/ai/astroscope/generate", {"type": "quick", "zodiac_sign": "Leo"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(GenerationLog.objects.get().status, GenerationLog.STATUS_FAILED)
        self.assertFalse(ContentLibrary.objects.exists())

    def test_ai_rate_limit(self):
        limits = {
            **settings.RATE_LIMITS,
            "ai": {"algorithm": "sliding", "limit": 1, "window": 3600, "message": "AI generation rate limit exceeded."},
        }
        payload = {"type": "quick", "zodiac_sign": "Leo"}
        with self.settings(RATE_LIMITS=limits):
            first = self.client.post("/api/ai/astroscope/generate", payload, format="json", REMOTE_ADDR="10.0.0.9")
            second = self.client.post("/api/ai/astroscope/generate", payload, format="json", REMOTE_ADDR="10.0.0.9")

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first["X-RateLimit-Remaining"], "0")
        self.assertIn("X-RateLimit-User-Remaining", first)
        self.assertEqual(second.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(second.data["error"], "AI generation rate limit exceeded.")
        self.assertEqual(get_balance(self.user), 85)

    def test_invalid_requests_do_not_use_quota(self):
        limits = {
            **settings.RATE_LIMITS,
            "ai": {"algorithm": "sliding", "limit": 1, "window": 3600},
            "user": {"algorithm": "token_bucket", "capacity": 1, "refill_rate": 1, "refill_interval": 3600},
        }
        with self.settings(RATE_LIMITS=limits):
            for _ in range(3):
                bad = self.client.post(
                    "/api/ai/astroscope/generate", {"type": "quick"}, format="json", REMOTE_ADDR="10.0.0.11"
                )
                self.assertEqual(bad.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertNotIn("X-RateLimit-User-Remaining", bad)

            good = self.client.post(
                "/api/ai/astroscope/generate", {"type": "quick", "zodiac_sign": "Leo"},
                format="json", REMOTE_ADDR="10.0.0.11",
            )
        self.assertEqual(good.status_code, status.HTTP_200_OK)
        self.assertEqual(good["X-RateLimit-User-Remaining"], "0")

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        resp = self.client.post("/api/ai/astroscope/generate", {"type": "quick", "zodiac_sign": "Leo"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)


class TestContentLibrary(AuthenticatedTestCase):

    def create_item(self, user=None, title="Leo Monthly Horoscope", content_type=ContentLibrary.TYPE_HOROSCOPE,
                    content=None, **extra):
        return ContentLibrary.objects.create(
            user=user or self.user,
            content_type=content_type,
            title=title,
            content=content or {"overview": "Bright"},
            **extra,
        )

    def test_preview(self):
        item = self.create_item(content={"overview": "x" * 300})
        self.assertEqual(len(item.preview), 203)
        self.assertTrue(item.preview.endswith("..."))

    def test_list_and_filters(self):
        self.create_item(tags=["love"])
        self.create_item(title="Tarot Reading: Career", content_type=ContentLibrary.TYPE_TAROT_READING, is_favorite=True)
        self.create_item(title="Leo & Aries Compatibility Analysis", content_type=ContentLibrary.TYPE_ZODIAC_INFO,
                         tags=["love", "partner"])
        self.create_item(user=self.create_user("other@example.com"))

        resp = self.client.get("/api/ai/content")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["pagination"], {"limit": 20, "offset": 0, "total": 3})

        self.assertEqual(self.client.get("/api/ai/content", {"type": "tarot_reading"}).data["pagination"]["total"], 1)
        self.assertEqual(self.client.get("/api/ai/content", {"favorite": "true"}).data["pagination"]["total"], 1)
        self.assertEqual(self.client.get("/api/ai/content", {"tag": "love"}).data["pagination"]["total"], 2)
        self.assertEqual(self.client.get("/api/ai/content", {"search": "aries"}).data["pagination"]["total"], 1)

        page = self.client.get("/api/ai/content", {"limit": 1, "offset": 1}).data
        self.assertEqual(len(page["content"]), 1)
        self.assertEqual(page["content"][0]["title"], "Tarot Reading: Career")

    def test_detail_is_owner_only(self):
        item = self.create_item()
        resp = self.client.get(f"/api/ai/content/{item.pk}")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["content"]["content"], {"overview": "Bright"})

        other = self.create_user("other@example.com")
        self.client.force_authenticate(user=other)
        resp = self.client.get(f"/api/ai/content/{item.pk}")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["error"], "Content not found")
        self.assertEqual(self.client.delete(f"/api/ai/content/{item.pk}").status_code, status.HTTP_404_NOT_FOUND)

    def test_update(self):
        item = self.create_item()
        resp = self.client.patch(
            f"/api/ai/content/{item.pk}",
            {"title": "My reading", "tags": ["career"], "content_type": "zodiac_info"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        item.refresh_from_db()
        self.assertEqual(item.title, "My reading")
        self.assertEqual(item.tags, ["career"])
        self.assertEqual(item.content_type, ContentLibrary.TYPE_HOROSCOPE)

    def test_delete(self):
        item = self.create_item()
        resp = self.client.delete(f"/api/ai/content/{item.pk}")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertFalse(ContentLibrary.objects.filter(pk=item.pk).exists())

    def test_toggle_favorite(self):
        item = self.create_item()
        url = f"/api/ai/content/{item.pk}/favorite"
        self.assertTrue(self.client.post(url).data["is_favorite"])
        self.assertFalse(self.client.post(url).data["is_favorite"])

    def test_library_stats(self):
        self.create_item(tags=["love"], is_favorite=True)
        self.create_item(content_type=ContentLibrary.TYPE_TAROT_READING, tags=["career", "love"])
        resp = self.client.get("/api/ai/library/stats")
        stats = resp.data["stats"]
        self.assertEqual(stats["total_items"], 2)
        self.assertEqual(stats["by_type"], {"horoscope": 1, "tarot_reading": 1, "zodiac_info": 0})
        self.assertEqual(stats["favorites_count"], 1)
        self.assertEqual(stats["tags"], ["career", "love"])
        self.assertEqual(stats["recent_count"], 2)


class TestUsageEndpoints(AuthenticatedTestCase):

    def create_log(self, service_type="astroscope", cost=15, status_=GenerationLog.STATUS_COMPLETED, ms=100):
        return GenerationLog.objects.create(
            user=self.user, service_type=service_type, base_cost=cost, total_cost=cost,
            status=status_, processing_time_ms=ms,
        )

    def test_pricing_is_public(self):
        self.client.force_authenticate(user=None)
        resp = self.client.get("/api/ai/pricing")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["services"]["tarotpath"]["cost"], 20)
        self.assertEqual(resp.data["services"]["zodiac_tome"]["name"], "ZodiacTome")
        self.assertEqual(resp.data["supported_languages"], ["en", "es", "de"])

    def test_history(self):
        self.create_log()
        self.create_log(service_type="tarotpath", cost=20)
        self.create_log()

        resp = self.client.get("/api/ai/history", {"limit": 2})
        self.assertEqual(resp.data["pagination"], {"page": 1, "limit": 2, "total": 3, "pages": 2})
        self.assertEqual(len(resp.data["generations"]), 2)

        resp = self.client.get("/api/ai/history", {"service": "tarotpath"})
        self.assertEqual(resp.data["pagination"]["total"], 1)
        self.assertEqual(resp.data["generations"][0]["service_type"], "tarotpath")

        resp = self.client.get("/api/ai/history", {"limit": 2, "page": 2})
        self.assertEqual(len(resp.data["generations"]), 1)

    def test_stats(self):
        add_credits(self.user, 40, type=CreditTransaction.TYPE_BONUS)
        self.create_log(ms=100)
        self.create_log(ms=300)
        self.create_log(service_type="tarotpath", cost=20, ms=200)
        self.create_log(status_=GenerationLog.STATUS_FAILED, ms=50)

        resp = self.client.get("/api/ai/stats")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["overall"], {
            "total_generations": 3, "total_credits_used": 50, "avg_processing_time": 200,
        })
        astroscope = next(row for row in resp.data["by_service"] if row["service_type"] == "astroscope")
        self.assertEqual(astroscope["total_generations"], 2)
        self.assertEqual(astroscope["total_credits_used"], 30)
        self.assertEqual(astroscope["last_7_days"], 2)
        self.assertEqual(astroscope["last_30_days"], 2)
        self.assertEqual(resp.data["current_balance"], 40)

    def test_stats_without_generations(self):
        resp = self.client.get("/api/ai/stats")
        self.assertEqual(resp.data["overall"], {
            "total_generations": 0, "total_credits_used": 0, "avg_processing_time": 0,
        })
        self.assertEqual(resp.data["by_service"], [])

    def test_test_connection_hidden_in_production(self):
        with self.settings(APP_ENV="production"):
            resp = self.client.get("/api/ai/test-connection")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_test_connection_demo(self):
        with self.settings(APP_ENV="development", GEMINI_API_KEY="", GEMINI_DEMO_MODE=False):
            resp = self.client.get("/api/ai/test-connection")
        self.assertTrue(resp.data["success"])
        self.assertTrue(resp.data["demo_mode"])
        self.assertEqual(resp.data["config"]["api_key"], "missing")

    @patch("generation.gemini.httpx.post")
    def test_test_connection_reports_errors(self, mock_post):
        mock_post.return_value = gemini_response("", status_code=403)
        with self.settings(APP_ENV="development", GEMINI_API_KEY="bad-key", GEMINI_DEMO_MODE=False):
            resp = self.client.get("/api/ai/test-connection")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertFalse(resp.data["success"])
        self.assertEqual(resp.data["config"]["api_key"], "configured")

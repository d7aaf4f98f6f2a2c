"""Prompt templates, the tarot deck and spread layouts."""
from typing import Dict, List

ZODIAC_SIGNS = [
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces",
]

LANGUAGE_NAMES = {"en": "English", "es": "Spanish", "de": "German"}

MAJOR_ARCANA = [
    "The Fool", "The Magician", "The High Priestess", "The Empress", "The Emperor",
    "The Hierophant", "The Lovers", "The Chariot", "Strength", "The Hermit",
    "Wheel of Fortune", "Justice", "The Hanged Man", "Death", "Temperance",
    "The Devil", "The Tower", "The Star", "The Moon", "The Sun",
    "Judgement", "The World",
]

SUITS = ["Cups", "Wands", "Swords", "Pentacles"]
RANKS = [
    "Ace", "Two", "Three", "Four", "Five", "Six", "Seven",
    "Eight", "Nine", "Ten", "Page", "Knight", "Queen", "King",
]
MINOR_ARCANA = [f"{rank} of {suit}" for suit in SUITS for rank in RANKS]

TAROT_DECK = MAJOR_ARCANA + MINOR_ARCANA

SPREADS: Dict[str, List[str]] = {
    "single": ["Present Situation"],
    "three-card": ["Past", "Present", "Future"],
    "five-card": ["Past Influences", "Present Situation", "Hidden Influences", "Advice", "Outcome"],
    "celtic-cross": [
        "Present Situation", "Challenge/Cross", "Distant Past/Foundation", "Recent Past",
        "Possible Outcome", "Near Future", "Your Approach", "External Influences",
        "Hopes and Fears", "Final Outcome",
    ],
}
DEFAULT_SPREAD = "five-card"


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, LANGUAGE_NAMES["en"])


def draw_cards(selected: List[int], spread: str = DEFAULT_SPREAD) -> List[Dict[str, str]]:
    """Map the user's picks onto the deck (modulo its size) and the spread's positions."""
    positions = SPREADS.get(spread, SPREADS[DEFAULT_SPREAD])
    cards = []
    for index, pick in enumerate(selected):
        position = positions[index] if index < len(positions) else f"Position {index + 1}"
        cards.append({"position": position, "name": TAROT_DECK[int(pick) % len(TAROT_DECK)]})
    return cards


def horoscope_title(data: dict) -> str:
    if data["type"] == "quick":
        return f"{data['zodiac_sign']} Monthly Horoscope"
    return f"Personalized Horoscope ({data['birth_date']})"


def horoscope_prompt(data: dict) -> str:
    if data["type"] == "quick":
        subject = f"the zodiac sign {data['zodiac_sign']}"
    else:
        subject = f"a person born on {data['birth_date']}"
        if data.get("birth_time"):
            subject += f" at {data['birth_time']}"
        if data.get("birth_place"):
            subject += f" in {data['birth_place']}"
        if data.get("zodiac_sign"):
            subject += f" (sun sign {data['zodiac_sign']})"

    return f"""You are an experienced astrologer. Write a monthly horoscope for {subject}.

Cover:
1. A general overview of the month (3-4 sentences)
2. Love and relationships
3. Career and finances
4. Health and wellbeing
5. Three key dates with what they bring
6. The overall mood of the month
7. Three lucky numbers and two lucky colors
8. Practical advice

Respond in {language_name(data.get('language', 'en'))}.
Return only JSON with the keys: overview, love, career, health,
key_dates (array of {{"date", "description"}}), mood, lucky_numbers (array of integers),
lucky_colors (array of strings), advice.
Be positive, specific about planetary influences, and personal."""


def tarot_title(data: dict) -> str:
    question = data["question"].strip()
    if len(question) > 60:
        question = question[:57] + "..."
    return f"Tarot Reading: {question}"


def tarot_prompt(data: dict, cards: List[Dict[str, str]]) -> str:
    layout = "\n".join(f"{card['position']}: {card['name']}" for card in cards)
    return f"""You are a compassionate tarot reader. Interpret this {data['spread_type']} spread
for a {data['reading_type']} reading.

Question: "{data['question']}"

Cards:
{layout}

For each card give its traditional meaning and its interpretation in this position and
for this question. Then give the overall message of the reading and practical advice.

Respond in {language_name(data.get('language', 'en'))}.
Return only JSON with the structure:
{{
  "cards": [{{"name": "card name", "position": "position", "meaning": "traditional meaning", "interpretation": "contextual interpretation"}}],
  "overall_message": "overall reading message",
  "advice": "practical guidance"
}}"""


def zodiac_title(data: dict) -> str:
    if data["analysis_type"] == "compatibility":
        return f"{data['zodiac_sign']} & {data['target_sign']} Compatibility Analysis"
    return f"{data['zodiac_sign']} Deep Insights & Analysis"


def zodiac_prompt(data: dict) -> str:
    language = language_name(data.get("language", "en"))
    if data["analysis_type"] == "compatibility":
        return f"""You are an expert astrologer. Analyse the compatibility between
{data['zodiac_sign']} and {data['target_sign']}.

Cover the overall compatibility with a score from 0 to 100, the emotional connection,
communication, strengths and challenges of the pairing, and advice for the relationship.

Respond in {language}.
Return only JSON with the keys: compatibility_score (integer), insight, traits (array of
shared strengths), compatibility (array of strings on emotional, communication and
challenges), advice."""

    return f"""You are an expert astrologer. Write deep insights about the zodiac sign
{data['zodiac_sign']}.

Cover its personality in 3-4 paragraphs, five key traits, the three most compatible signs
with a short explanation each, and personalised advice.

Respond in {language}.
Return only JSON with the keys: insight, traits (array of strings),
compatibility (array of strings), advice."""

"""
Prompt construction for review replies.

Pure functions only: everything here is derived from the review, the
brand voice and the business info, so it can be tested without a model.
"""
from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal

from autoreply.models import BrandVoicePreset
from autoreply.schemas import BrandVoice, BusinessInfo, ReviewSnapshot

MAX_REPLY_WORDS = 100
MAX_OUTPUT_TOKENS = 200
TEMPERATURE_MIN = 0.2
TEMPERATURE_MAX = 0.8

# Phrases that read as stock, corporate or machine-written
FORBIDDEN_PHRASES: tuple[str, ...] = (
    # enthusiasm
    "thrilled", "delighted", "ecstatic", "stoked", "pumped", "elated", "overjoyed", "blown away",
    # robotic
    "as an AI", "I understand that", "I appreciate", "it is important to note", "please note that",
    # closings
    "rest assured", "please don't hesitate", "we look forward to", "at your earliest convenience",
    "should you have any questions", "please feel free to reach out",
    # connectors
    "that being said", "with that in mind", "moving forward", "going forward", "at the end of the day",
    # generic review replies
    "means the world to us", "made our day", "over the moon", "this review warms our hearts",
    "your kind words mean everything", "we're so grateful for customers like you",
    # corporate
    "commitment to excellence", "exceed your expectations", "valued customer", "top priority",
    # repetitive
    "glad that you", "we're glad you", "so glad", "thank you for your kind words",
    "we appreciate your feedback", "means a lot to us",
)

DEFAULT_BANNED_OPENINGS: tuple[str, ...] = ("we're glad", "so glad", "we appreciate")

PRESET_TONE = {
    BrandVoicePreset.friendly: "Tone: warm, approachable, concise.",
    BrandVoicePreset.professional: "Tone: polished, respectful, concise.",
    BrandVoicePreset.playful: "Tone: light and upbeat. A single tasteful emoji is ok only if it fits naturally.",
    BrandVoicePreset.custom: "Tone: natural and genuine, shaped by the custom brand instructions.",
}

FORMALITY_TEXT = {
    1: "Use very casual phrasing with contractions.",
    2: "Use casual phrasing with contractions.",
    3: "Use neutral, conversational business language.",
    4: "Use formal business language with few contractions.",
    5: "Use very formal business language with no contractions.",
}

WARMTH_TEXT = {
    1: "Keep it factual and restrained.",
    2: "Be polite and measured.",
    3: "Be empathetic but not effusive.",
    4: "Be warm and personable.",
    5: "Be very warm and people-oriented (without sounding gushy).",
}

# brevity tier -> ((min, max) for rating <= 3, (min, max) for rating >= 4)
BASE_WORD_WINDOWS: dict[int, tuple[tuple[int, int], tuple[int, int]]] = {
    1: ((50, 80), (35, 60)),
    2: ((35, 60), (25, 45)),
    3: ((25, 45), (20, 35)),
    4: ((20, 35), (15, 25)),
    5: ((15, 25), (8, 15)),
}

PRESET_BASE_TEMPERATURE = {
    BrandVoicePreset.professional: 0.4,
    BrandVoicePreset.friendly: 0.6,
    BrandVoicePreset.custom: 0.6,
    BrandVoicePreset.playful: 0.7,
}

_DASHES = re.compile(r"[—–]")
_DOUBLE_HYPHEN = re.compile(r"--")
_SPACED_COMMA = re.compile(r"\s+,\s+")
_DOUBLE_COMMA = re.compile(r",\s*,")


def clamp_scale(value: int) -> int:
    return max(1, min(5, int(value)))


def clamp_rating(rating: int) -> int:
    return max(1, min(5, int(rating)))


def is_low_rating(rating: int) -> bool:
    return rating <= 3


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def review_word_count(text: str | None) -> int:
    return len((text or "").split())


def length_multiplier(rating: int, word_count: int) -> float:
    low = is_low_rating(rating)
    if word_count >= 30:
        return 1.4 if low else 1.2
    if word_count >= 10:
        return 1.2 if low else 1.1
    return 1.0


def word_budget(brevity: int, rating: int, word_count: int) -> tuple[int, int]:
    """(min, max) reply length in words for a review of `word_count` words."""
    low_window, high_window = BASE_WORD_WINDOWS[clamp_scale(brevity)]
    base_min, base_max = low_window if is_low_rating(rating) else high_window
    multiplier = length_multiplier(rating, word_count)

    max_words = min(_round_half_up(base_max * multiplier), MAX_REPLY_WORDS)
    min_words = min(_round_half_up(base_min * multiplier), max_words - 5)
    return min_words, max_words


def max_output_tokens(max_words: int) -> int:
    # ~1.6 tokens per English word plus a small buffer
    return min(math.ceil(max_words * 1.6) + 20, MAX_OUTPUT_TOKENS)


def temperature_for(voice: BrandVoice) -> float:
    base = PRESET_BASE_TEMPERATURE[voice.preset]
    value = base - (clamp_scale(voice.formality) - 3) * 0.04 + (clamp_scale(voice.warmth) - 3) * 0.03
    return round(max(TEMPERATURE_MIN, min(TEMPERATURE_MAX, value)), 3)


def clean_dashes(text: str) -> str:
    """Replace em/en dashes and double hyphens with commas."""
    text = _DASHES.sub(", ", text)
    text = _DOUBLE_HYPHEN.sub(", ", text)
    text = _SPACED_COMMA.sub(", ", text)
    text = _DOUBLE_COMMA.sub(",", text)
    return text.strip()


def opener_of(text: str, words: int = 4) -> str:
    """Lower-cased first `words` words, the key used for repetition checks."""
    return " ".join(text.lower().split()[:words])


def build_system_prompt(
    voice: BrandVoice,
    business: BusinessInfo,
    avoid_phrases: list[str] | tuple[str, ...] = (),
) -> str:
    industry = business.industry or "local"
    parts = [
        f"You are a senior customer support representative for {business.name}, a {industry} business.",
        "Write replies to Google reviews that sound natural, specific, and human. Avoid clichés.",
        PRESET_TONE[voice.preset],
        FORMALITY_TEXT[clamp_scale(voice.formality)],
        WARMTH_TEXT[clamp_scale(voice.warmth)],
        "Rules:",
        "1) Reference 1 or 2 specific details from the review to prove you read it.",
        '2) Do not reuse generic openers such as "Thank you for your kind words" or "We appreciate your feedback."',
        "3) If rating is 1 to 3, acknowledge the issue plainly, apologize once if appropriate, and offer a next step.",
    ]
    if business.support_email:
        parts.append(f"Offer a contact path such as {business.support_email}.")
    if business.support_phone:
        parts.append(f"A phone number like {business.support_phone} is fine if relevant.")
    parts += [
        "4) Keep it tight, no long paragraphs.",
        "5) Avoid corporate-speak and filler.",
    ]
    if voice.custom_instruction and voice.custom_instruction.strip():
        parts.append(f"Custom brand instructions (IMPORTANT TO FOLLOW!): {voice.custom_instruction.strip()}")

    parts += [
        "Punctuation: NEVER use em dashes or en dashes. Replace them with periods, commas, or \"and\".",
        "Do not invent facts. Use the reviewer's wording when referencing specifics.",
        "No hashtags. No links unless explicitly provided.",
    ]
    if voice.preset == BrandVoicePreset.playful:
        parts.append("Emoji policy: at most one emoji and only if it feels natural.")
    else:
        parts.append("Do not use emojis.")

    parts.append(
        "NEVER use any of the following robotic phrases: "
        + ", ".join(FORBIDDEN_PHRASES)
        + ". Prefer simple, human phrasing."
    )
    parts.append("Start with a short, natural opener. Vary the structure across replies.")

    avoid = list(DEFAULT_BANNED_OPENINGS)
    for phrase in avoid_phrases:
        if phrase and phrase not in avoid:
            avoid.append(phrase)
    parts.append("Do not use these exact phrases from recent replies: " + ", ".join(avoid) + ".")
    return " ".join(parts)


def build_user_prompt(review: ReviewSnapshot, voice: BrandVoice) -> str:
    rating = clamp_rating(review.rating)
    min_words, max_words = word_budget(voice.brevity, rating, review_word_count(review.review_text))

    if is_low_rating(rating):
        content_rule = (
            "• Acknowledge the issue, apologize once if appropriate, "
            "and offer a next step with a contact path if provided. "
        )
    else:
        content_rule = "• Thank them naturally and call out 1 or 2 specifics they mentioned. "

    return (
        f"Write a reply to this {rating}-star Google review from {review.customer_name}:\n"
        f"\"{review.review_text}\"\n\n"
        f"Word count: {min_words}-{max_words} words. "
        "Mandatory content requirements: "
        "• Mention the reviewer's specific detail(s) in your own words. "
        + content_rule
        + "• Follow the custom brand instructions very carefully. "
        "• Use natural punctuation with no dashes. "
        "• End on a short, human-sounding line. "
        "Write exactly within the word range above."
    )

import pytest

from autoreply.models import BrandVoicePreset
from autoreply.schemas import BrandVoice, BusinessInfo, ReviewSnapshot
from autoreply.services.reply_prompts import (
    DEFAULT_BANNED_OPENINGS,
    build_system_prompt,
    build_user_prompt,
    clean_dashes,
    max_output_tokens,
    opener_of,
    temperature_for,
    word_budget,
)

BUSINESS = BusinessInfo(name="Luigi's Pizzeria", industry="restaurant", support_email="hello@luigis.example")


@pytest.mark.parametrize("brevity", [1, 2, 3, 4, 5])
@pytest.mark.parametrize("rating", [1, 2, 3, 4, 5])
@pytest.mark.parametrize("words", [0, 5, 10, 29, 30, 250])
def test_word_budget_keeps_a_window_of_at_least_five_words(brevity, rating, words):
    min_words, max_words = word_budget(brevity, rating, words)
    assert 0 < min_words <= max_words - 5
    assert max_words <= 100


@pytest.mark.parametrize("brevity", [1, 2, 3, 4, 5])
@pytest.mark.parametrize("words", [0, 9, 10, 29, 30, 59, 120, 399])
def test_low_ratings_never_get_a_narrower_window(brevity, words):
    for low in (1, 2, 3):
        low_min, low_max = word_budget(brevity, low, words)
        for high in (4, 5):
            high_min, high_max = word_budget(brevity, high, words)
            assert low_max - low_min >= high_max - high_min
            assert low_max >= high_max


@pytest.mark.parametrize(
    "brevity,rating,words,expected",
    [
        (3, 5, 5, (20, 35)),
        (3, 2, 40, (35, 63)),
        (1, 1, 40, (70, 100)),
        (5, 5, 12, (9, 17)),
        (4, 3, 10, (24, 42)),
    ],
)
def test_word_budget_values(brevity, rating, words, expected):
    assert word_budget(brevity, rating, words) == expected


def test_out_of_range_brevity_is_clamped():
    assert word_budget(9, 5, 0) == word_budget(5, 5, 0)
    assert word_budget(-3, 5, 0) == word_budget(1, 5, 0)


def test_max_output_tokens():
    assert max_output_tokens(35) == 76
    assert max_output_tokens(100) == 180
    assert max_output_tokens(150) == 200


def test_temperature_defaults_and_scales():
    assert temperature_for(BrandVoice(preset=BrandVoicePreset.friendly)) == pytest.approx(0.63)
    assert temperature_for(
        BrandVoice(preset=BrandVoicePreset.professional, formality=5, warmth=1)
    ) == pytest.approx(0.26)
    assert temperature_for(BrandVoice(preset=BrandVoicePreset.playful, formality=1, warmth=5)) == 0.8


@pytest.mark.parametrize("preset", list(BrandVoicePreset))
@pytest.mark.parametrize("formality", [1, 3, 5])
@pytest.mark.parametrize("warmth", [1, 3, 5])
def test_temperature_is_bounded(preset, formality, warmth):
    value = temperature_for(BrandVoice(preset=preset, formality=formality, warmth=warmth))
    assert 0.2 <= value <= 0.8


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Great pizza — come back soon", "Great pizza, come back soon"),
        ("Great pizza – come back soon", "Great pizza, come back soon"),
        ("Thanks--see you Friday", "Thanks, see you Friday"),
        ("No dashes here.", "No dashes here."),
    ],
)
def test_clean_dashes(raw, expected):
    assert clean_dashes(raw) == expected


def test_opener_of_is_lowercase_first_four_words():
    assert opener_of("Pizza Night was GREAT, thanks Maria") == "pizza night was great,"
    assert opener_of("Thanks!") == "thanks!"


def test_system_prompt_carries_voice_and_avoid_phrases():
    voice = BrandVoice(preset=BrandVoicePreset.friendly, custom_instruction="Sign off as Luigi.")
    prompt = build_system_prompt(voice, BUSINESS, ["pizza night was great"])

    assert "Luigi's Pizzeria, a restaurant business" in prompt
    assert "hello@luigis.example" in prompt
    assert "Sign off as Luigi." in prompt
    assert "Do not use emojis." in prompt
    assert "pizza night was great" in prompt
    for opening in DEFAULT_BANNED_OPENINGS:
        assert opening in prompt


def test_playful_prompt_allows_one_emoji():
    prompt = build_system_prompt(BrandVoice(preset=BrandVoicePreset.playful), BUSINESS)
    assert "at most one emoji" in prompt
    assert "Do not use emojis." not in prompt


def test_user_prompt_for_low_rating():
    review = ReviewSnapshot(id="r1", business_id="b1", customer_name="Tom", rating=2, review_text="Cold pizza.")
    prompt = build_user_prompt(review, BrandVoice())

    assert "2-star Google review from Tom" in prompt
    assert '"Cold pizza."' in prompt
    assert "Word count: 25-45 words." in prompt
    assert "Acknowledge the issue" in prompt


def test_user_prompt_for_high_rating():
    review = ReviewSnapshot(id="r1", business_id="b1", customer_name="Ana", rating=5, review_text="Loved it")
    prompt = build_user_prompt(review, BrandVoice(brevity=5))

    assert "Word count: 8-15 words." in prompt
    assert "Thank them naturally" in prompt

import pytest

from autoreply.models import BrandVoicePreset
from autoreply.schemas import BrandVoice, BusinessInfo, ReviewSnapshot
from autoreply.services.llm_provider import LLMProvider, OpenAIChatProvider
from autoreply.services.reply_generator import ReplyGenerator
from autoreply.services.reply_templates import fallback_reply

from conftest import ScriptedLLM

BUSINESS = BusinessInfo(name="Luigi's Pizzeria", industry="restaurant")
REVIEW = ReviewSnapshot(
    id="r1",
    business_id="b1",
    customer_name="Maria",
    rating=5,
    review_text="Great crust and friendly staff.",
)


class FixedReply(LLMProvider):
    def __init__(self, text):
        self.text = text

    async def complete(self, *, system_prompt, user_prompt, temperature, max_tokens):
        return self.text


async def test_generated_reply_is_cleaned():
    generator = ReplyGenerator(FixedReply('"Great crust — friendly staff, see you soon"'), timeout=5)
    reply = await generator.generate(REVIEW, BrandVoice(), BUSINESS)

    assert reply.ok
    assert not reply.used_fallback
    assert reply.reply_text == "Great crust, friendly staff, see you soon"
    assert reply.tone_label == "friendly"


async def test_model_parameters_follow_voice(llm, generator):
    await generator.generate(REVIEW, BrandVoice(brevity=3), BUSINESS, ["loved hearing about your"])

    call = llm.calls[0]
    assert call["temperature"] == pytest.approx(0.63)
    # 5 words, 5 stars, brevity 3 -> max 35 words
    assert call["max_tokens"] == 76
    assert "loved hearing about your" in call["system_prompt"]
    assert "5-star Google review from Maria" in call["user_prompt"]


async def test_failure_falls_back_to_template():
    generator = ReplyGenerator(ScriptedLLM(error="model exploded"), timeout=5)
    reply = await generator.generate(REVIEW, BrandVoice(preset=BrandVoicePreset.professional), BUSINESS)

    assert not reply.ok
    assert reply.used_fallback
    assert reply.error == "model exploded"
    assert reply.reply_text == fallback_reply(BrandVoicePreset.professional, 5, "Maria")
    assert reply.tone_label == "professional"


async def test_custom_voice_fallback_uses_friendly_tone():
    generator = ReplyGenerator(ScriptedLLM(error="model exploded"), timeout=5)
    reply = await generator.generate(REVIEW, BrandVoice(preset=BrandVoicePreset.custom), BUSINESS)

    assert reply.tone_label == "friendly"


async def test_timeout_is_a_failure():
    generator = ReplyGenerator(ScriptedLLM(delay=1.0), timeout=0.05)
    reply = await generator.generate(REVIEW, BrandVoice(), BUSINESS)

    assert reply.used_fallback
    assert "timed out" in reply.error


async def test_empty_output_is_a_failure():
    generator = ReplyGenerator(FixedReply('  ""  '), timeout=5)
    reply = await generator.generate(REVIEW, BrandVoice(), BUSINESS)

    assert reply.used_fallback
    assert reply.error == "No reply generated"


async def test_missing_api_key_is_reported():
    generator = ReplyGenerator(OpenAIChatProvider(None), timeout=5)
    reply = await generator.generate(REVIEW, BrandVoice(), BUSINESS)

    assert reply.error == "OpenAI API key not configured"

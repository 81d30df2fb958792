"""
Reply generation engine.

generate() never raises: any model failure (error, timeout, empty output)
degrades to the static template for (tone, rating) and the failure is
reported through GeneratedReply.error for the caller to record.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from autoreply.schemas import BrandVoice, BusinessInfo, ReviewSnapshot
from autoreply.services.llm_provider import LLMError, LLMProvider, get_llm_provider
from autoreply.services.reply_prompts import (
    build_system_prompt,
    build_user_prompt,
    clamp_rating,
    clean_dashes,
    max_output_tokens,
    review_word_count,
    temperature_for,
    word_budget,
)
from autoreply.services.reply_templates import fallback_reply, template_tone
from autoreply.services.sanitize import error_text
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class GeneratedReply:
    reply_text: str
    tone_label: str
    used_fallback: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReplyGenerator:
    def __init__(self, provider: LLMProvider | None = None, *, timeout: float | None = None):
        self._provider = provider
        self.timeout = timeout if timeout is not None else get_settings().llm_timeout_sec

    @property
    def provider(self) -> LLMProvider:
        return self._provider or get_llm_provider()

    async def generate(
        self,
        review: ReviewSnapshot,
        voice: BrandVoice,
        business: BusinessInfo,
        avoid_phrases: list[str] | tuple[str, ...] = (),
    ) -> GeneratedReply:
        system_prompt = build_system_prompt(voice, business, avoid_phrases)
        user_prompt = build_user_prompt(review, voice)
        _, max_words = word_budget(voice.brevity, clamp_rating(review.rating), review_word_count(review.review_text))
        temperature = temperature_for(voice)

        logger.debug(f"[reply_generator] review={review.id} system_prompt={system_prompt!r}")
        logger.debug(f"[reply_generator] review={review.id} user_prompt={user_prompt!r}")

        try:
            raw = await asyncio.wait_for(
                self.provider.complete(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    temperature=temperature,
                    max_tokens=max_output_tokens(max_words),
                ),
                timeout=self.timeout,
            )
            text = clean_dashes((raw or "").strip().strip('"'))
            if not text:
                raise LLMError("No reply generated")
            logger.info(
                f"[reply_generator] review={review.id} rating={review.rating} "
                f"words={len(text.split())}/{max_words} temp={temperature}"
            )
            return GeneratedReply(reply_text=text, tone_label=voice.preset.value)
        except asyncio.TimeoutError:
            message = f"Reply generation timed out after {self.timeout}s"
        except Exception as e:
            message = error_text(e)

        logger.warning(f"[reply_generator] review={review.id} falling back to template: {message}")
        return GeneratedReply(
            reply_text=fallback_reply(voice.preset, review.rating, review.customer_name),
            tone_label=template_tone(voice.preset).value,
            used_fallback=True,
            error=message,
        )

"""
Static fallback replies, keyed by tone and star rating.

Used whenever the language model is unavailable. No I/O, cannot fail.
"""
from __future__ import annotations

from autoreply.models import BrandVoicePreset

TEMPLATES: dict[BrandVoicePreset, dict[int, str]] = {
    BrandVoicePreset.friendly: {
        5: "Thank you so much, {name}! We're thrilled you had such a wonderful experience with us. "
           "Your kind words truly make our day! 😊",
        4: "Thank you for the great review, {name}! We're so glad you enjoyed your experience. "
           "We appreciate your feedback and hope to see you again soon!",
        3: "Hi {name}, thank you for taking the time to share your feedback. "
           "We're glad you had a decent experience and would love to make it even better next time!",
        2: "Hi {name}, thank you for your honest feedback. We're sorry we didn't meet your expectations "
           "and would love the opportunity to improve your experience.",
        1: "{name}, we're truly sorry about your experience. This isn't the standard we strive for. "
           "Please contact us directly so we can make this right.",
    },
    BrandVoicePreset.professional: {
        5: "Dear {name}, we sincerely appreciate your excellent review. Your satisfaction is our top priority, "
           "and we look forward to serving you again.",
        4: "Dear {name}, thank you for your positive feedback. We value your business and appreciate you "
           "taking the time to share your experience.",
        3: "Dear {name}, we appreciate your feedback. We strive for excellence and would welcome the "
           "opportunity to exceed your expectations in the future.",
        2: "Dear {name}, thank you for bringing this to our attention. We take all feedback seriously "
           "and are committed to improving our service.",
        1: "Dear {name}, we apologize for not meeting your expectations. Please contact our management team "
           "so we can address your concerns properly.",
    },
    BrandVoicePreset.playful: {
        5: "Wow, {name}! You just made our whole team do a happy dance! 🎉 "
           "Thanks for the amazing review, you're absolutely wonderful!",
        4: "Hey {name}! Thanks for the awesome review! We're doing a little celebration dance over here 💃 "
           "Hope to see you again soon!",
        3: "Hi {name}! Thanks for the feedback, we're pretty good, but we know we can be GREAT! "
           "Can't wait to wow you next time! ⭐",
        2: "Hey {name}, oops! Looks like we missed the mark this time. We promise we're usually more "
           "awesome than this! Let us make it up to you! 😅",
        1: "Oh no, {name}! We really dropped the ball here 😔 This is definitely not our usual style, "
           "please let us make this right!",
    },
}

# custom voices borrow the friendly set
_TONE_FOR_PRESET: dict[BrandVoicePreset, BrandVoicePreset] = {
    BrandVoicePreset.friendly: BrandVoicePreset.friendly,
    BrandVoicePreset.professional: BrandVoicePreset.professional,
    BrandVoicePreset.playful: BrandVoicePreset.playful,
    BrandVoicePreset.custom: BrandVoicePreset.friendly,
}


def _check_complete() -> None:
    missing = [p.value for p in BrandVoicePreset if p not in _TONE_FOR_PRESET]
    for tone, by_rating in TEMPLATES.items():
        missing += [f"{tone.value}:{r}" for r in range(1, 6) if not by_rating.get(r)]
    if missing:
        raise RuntimeError(f"Reply templates incomplete: {missing}")


_check_complete()


def template_tone(preset: BrandVoicePreset | str) -> BrandVoicePreset:
    return _TONE_FOR_PRESET[BrandVoicePreset(preset)]


def fallback_reply(preset: BrandVoicePreset | str, rating: int, customer_name: str | None) -> str:
    rating = max(1, min(5, int(rating)))
    name = (customer_name or "").strip() or "there"
    return TEMPLATES[template_tone(preset)][rating].format(name=name)

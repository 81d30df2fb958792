"""
Anti-repetition support for reply generation.

Two sources of phrases to steer the model away from:
- persisted: openers and stock patterns mined from the business's most recent replies
- in-run: openers produced earlier in the current automation run (not yet persisted)
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable

from autoreply.services.reply_prompts import opener_of
from autoreply.services.store import ReviewStore

logger = logging.getLogger(__name__)

MAX_AVOID_PHRASES = 15
MAX_RUN_OPENERS = 20
MATCHES_PER_PATTERN = 2

COMMON_PATTERNS = (
    re.compile(r"thank you for .{1,20}"),
    re.compile(r"we appreciate .{1,20}"),
    re.compile(r"glad (?:that )?you .{1,20}"),
    re.compile(r"so happy .{1,20}"),
    re.compile(r"it(?:'s| is) wonderful .{1,20}"),
    re.compile(r"we(?:'re| are) grateful .{1,20}"),
)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def phrases_from_replies(replies: list[str], max_phrases: int = MAX_AVOID_PHRASES) -> list[str]:
    """Openers (first 4 and 6 words) and stock patterns, newest reply first."""
    phrases: list[str] = []
    for reply in replies:
        text = reply.lower().strip()
        words = text.split()
        if len(words) >= 4:
            phrases.append(" ".join(words[:4]))
        if len(words) >= 6:
            phrases.append(" ".join(words[:6]))
        for pattern in COMMON_PATTERNS:
            phrases.extend(m.group(0).strip() for m in list(pattern.finditer(text))[:MATCHES_PER_PATTERN])
    return _dedupe(phrases)[:max_phrases]


async def extract_avoid_phrases(store: ReviewStore, business_id: str, limit: int = 10) -> list[str]:
    replies = await store.recent_generated_replies(business_id, limit)
    phrases = phrases_from_replies(replies)
    logger.debug(f"[avoid_phrases] business={business_id} replies={len(replies)} phrases={len(phrases)}")
    return phrases


class RunPhraseTracker:
    """Openers produced within one run, shared by concurrent generation calls."""

    def __init__(self, persisted: list[str] | None = None, cap: int = MAX_RUN_OPENERS):
        self._persisted = list(persisted or [])
        self._cap = cap
        self._openers: list[str] = []
        self._lock = asyncio.Lock()

    async def snapshot(self) -> list[str]:
        async with self._lock:
            return _dedupe(self._persisted + self._openers)

    async def claim(self, reply_text: str) -> bool:
        """Record the reply's opener; False if another reply in this run already used it."""
        opener = opener_of(reply_text)
        if not opener:
            return True
        async with self._lock:
            if opener in self._openers:
                return False
            self._openers.append(opener)
            if len(self._openers) > self._cap:
                del self._openers[: len(self._openers) - self._cap]
            return True

"""Test doubles for the upstream generation backend and the account store."""
import asyncio
from datetime import datetime, timezone

from storygate.core.errors import StoreError
from storygate.core.quota import QuotaPolicy
from storygate.services.accounts import InMemoryAccountStore
from storygate.services.orchestrator import GenerationOrchestrator
from storygate.services.providers import (
    GenerationBackend,
    GenerationProviderAdapter,
    ProviderTimeouts,
    RawAudio,
    RawImage,
)
from storygate.services.validation import ResultValidator

STORY_TEXT = ("Once upon a time, a small fox found a lantern that glowed. " * 2)[:80]
FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
PCM_AUDIO = RawAudio(data=b"\x01\x00" * 2048, mime_type="audio/L16;codec=pcm;rate=24000")


class FakeBackend(GenerationBackend):
    """Records every call; can stall, fail, or return configurable payloads."""

    def __init__(self, text=STORY_TEXT, image=None, audio=PCM_AUDIO, delay=0.0, error=None):
        self.text = text
        self.image = image or RawImage(url="https://images.example.com/cover.png")
        self.audio = audio
        self.delay = delay
        self.error = error
        self.calls = []
        self.cancelled = 0

    async def _wait(self):
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if self.error is not None:
            raise self.error

    async def complete_text(self, messages):
        self.calls.append(("text", messages))
        await self._wait()
        return self.text

    async def create_image(self, prompt):
        self.calls.append(("image", prompt))
        await self._wait()
        return self.image

    async def synthesize_speech(self, text, voice):
        self.calls.append(("audio", text, voice))
        await self._wait()
        return self.audio


class FlakyStore(InMemoryAccountStore):
    """In-memory store whose individual operations can be switched to fail."""

    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)

    async def get_or_create_plan(self, user_key):
        if "plan" in self.fail_on:
            raise StoreError("Account store unavailable")
        return await super().get_or_create_plan(user_key)

    async def increment_usage(self, user_key, day_bucket):
        if "increment" in self.fail_on:
            raise StoreError("Account store unavailable")
        return await super().increment_usage(user_key, day_bucket)


def make_orchestrator(backend=None, store=None, timeouts=None, limits=None):
    backend = backend or FakeBackend()
    store = store or InMemoryAccountStore()
    adapter = GenerationProviderAdapter(backend, timeouts or ProviderTimeouts(text=0.5, image=0.5, audio=0.5))
    return GenerationOrchestrator(
        store=store,
        policy=QuotaPolicy(limits or {"free": 2, "paid": 10}),
        adapter=adapter,
        validator=ResultValidator(min_text_chars=50, min_audio_bytes=512),
        clock=lambda: FIXED_NOW,
    )

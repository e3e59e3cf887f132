"""Generation provider adapter.

Upstream backends answer in different shapes: an image may come back as a direct URL or as
an inline base64 payload, speech may come back as raw PCM or as an encoded file. The adapter
puts every upstream call behind a bounded wait and normalizes each capability to a single
result type, so the orchestrator never sees upstream-specific shapes.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from storygate.core.config import Settings
from storygate.core.errors import GatewayError, UpstreamError, UpstreamTimeout
from storygate.schemas.generation import ChatMessage
from storygate.utils.audio import is_raw_pcm, pcm_to_wav, wav_to_mp3

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation took too long. Please try again in a moment."


@dataclass(frozen=True)
class RawImage:
    """Image as the upstream returned it: a reference, an inline payload, or (malformed) neither."""
    url: Optional[str] = None
    b64_data: Optional[str] = None
    mime_type: str = "image/png"


@dataclass(frozen=True)
class RawAudio:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class TextResult:
    content: str


@dataclass(frozen=True)
class ImageResult:
    image_ref: str
    source: str  # "url" or "inline"


@dataclass(frozen=True)
class AudioResult:
    data: bytes
    content_type: str


@dataclass(frozen=True)
class ProviderTimeouts:
    text: float = 20.0
    image: float = 28.0
    audio: float = 20.0


class GenerationBackend(ABC):
    """Upstream generation capabilities. Implementations raise UpstreamError on failure."""

    @abstractmethod
    async def complete_text(self, messages: List[ChatMessage]) -> str:
        ...

    @abstractmethod
    async def create_image(self, prompt: str) -> RawImage:
        ...

    @abstractmethod
    async def synthesize_speech(self, text: str, voice: str) -> RawAudio:
        ...


def normalize_image(raw: RawImage) -> ImageResult:
    """Direct reference first, then inline payload as a self-contained data reference."""
    if raw.url and raw.url.strip():
        return ImageResult(image_ref=raw.url.strip(), source="url")
    if raw.b64_data and raw.b64_data.strip():
        mime_type = raw.mime_type or "image/png"
        return ImageResult(image_ref=f"data:{mime_type};base64,{raw.b64_data.strip()}", source="inline")
    raise UpstreamError("No usable image in upstream response")


async def normalize_audio(raw: RawAudio, audio_format: str = "wav") -> AudioResult:
    """PCM is wrapped as WAV; MP3 transcoding runs in a worker thread."""
    data, content_type = raw.data, (raw.mime_type or "").split(";")[0].strip().lower()
    if not data:
        raise UpstreamError("No audio in upstream response")
    if is_raw_pcm(raw.mime_type):
        data, content_type = pcm_to_wav(raw.data, raw.mime_type), "audio/wav"
    if audio_format == "mp3" and content_type in ("audio/wav", "audio/x-wav"):
        try:
            data, content_type = await asyncio.to_thread(wav_to_mp3, data), "audio/mpeg"
        except ValueError as e:
            raise UpstreamError(str(e))
    return AudioResult(data=data, content_type=content_type or "application/octet-stream")


class GenerationProviderAdapter:
    def __init__(self, backend: GenerationBackend, timeouts: Optional[ProviderTimeouts] = None,
                 default_voice: str = "Kore", audio_format: str = "wav"):
        self.backend = backend
        self.timeouts = timeouts or ProviderTimeouts()
        self.default_voice = default_voice
        self.audio_format = audio_format

    @classmethod
    def from_settings(cls, backend: GenerationBackend, settings: Settings) -> "GenerationProviderAdapter":
        return cls(
            backend,
            ProviderTimeouts(
                text=settings.text_timeout_seconds,
                image=settings.image_timeout_seconds,
                audio=settings.audio_timeout_seconds,
            ),
            default_voice=settings.default_voice,
            audio_format=settings.audio_format,
        )

    async def _bounded(self, capability: str, coro, timeout: float):
        """Await an upstream call; cancel it and raise UpstreamTimeout once the deadline passes."""
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{capability} generation aborted after {timeout}s (local timeout)")
            raise UpstreamTimeout(TIMEOUT_MESSAGE, details={"timeoutSeconds": timeout})
        except GatewayError:
            raise
        except Exception as e:
            logger.error(f"Unexpected {capability} upstream error: {e}", exc_info=True)
            raise UpstreamError(f"{capability.capitalize()} generation failed")

    async def generate_text(self, messages: List[ChatMessage]) -> TextResult:
        content = await self._bounded("text", self.backend.complete_text(messages), self.timeouts.text)
        return TextResult(content=content or "")

    async def generate_image(self, prompt: str) -> ImageResult:
        raw = await self._bounded("image", self.backend.create_image(prompt), self.timeouts.image)
        try:
            return normalize_image(raw)
        except UpstreamError:
            logger.error("No url or inline payload in image response")
            raise

    async def _synthesize(self, text: str, voice: str) -> AudioResult:
        raw = await self.backend.synthesize_speech(text, voice)
        return await normalize_audio(raw, self.audio_format)

    async def generate_audio(self, text: str, voice: Optional[str] = None) -> AudioResult:
        # Transcoding counts against the same deadline as synthesis
        return await self._bounded(
            "audio", self._synthesize(text, voice or self.default_voice), self.timeouts.audio
        )

"""Gemini / Imagen generation backend (google-genai async client)."""
import base64
import logging
from typing import List, Optional, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from storygate.core.config import Settings
from storygate.core.errors import ConfigurationError, UpstreamError
from storygate.schemas.generation import ChatMessage
from storygate.services.providers import GenerationBackend, RawAudio, RawImage

logger = logging.getLogger(__name__)

GCS_PUBLIC_BASE = "https://storage.googleapis.com/"


def gcs_uri_to_url(uri: str) -> str:
    """gs://bucket/key -> https://storage.googleapis.com/bucket/key; other schemes pass through."""
    if uri.startswith("gs://"):
        return GCS_PUBLIC_BASE + uri[len("gs://"):]
    return uri


def messages_to_contents(messages: List[ChatMessage]) -> Tuple[Optional[str], List[types.Content]]:
    """
    Split chat messages into a Gemini system instruction and Content list.
    System messages are joined into the instruction; "assistant" maps to Gemini's "model" role.
    """
    system_parts = []
    contents = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
            continue
        role = "model" if msg.role == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part.from_text(text=msg.content)]))
    system_instruction = "\n\n".join(system_parts) if system_parts else None
    return system_instruction, contents


class GeminiBackend(GenerationBackend):
    def __init__(self, settings: Settings, client: Optional[genai.Client] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> genai.Client:
        """Lazy load the Gemini client with a request timeout above our own bounded wait."""
        if self._client is None:
            if not self.settings.gemini_api_key:
                raise ConfigurationError("Server missing generation API key")
            longest = max(
                self.settings.text_timeout_seconds,
                self.settings.image_timeout_seconds,
                self.settings.audio_timeout_seconds,
            )
            self._client = genai.Client(
                api_key=self.settings.gemini_api_key,
                http_options=types.HttpOptions(timeout=int((longest + 5) * 1000)),
            )
            logger.info("Gemini client initialized")
        return self._client

    @staticmethod
    def _upstream_error(what: str, e: genai_errors.APIError) -> UpstreamError:
        logger.warning(f"Gemini {what} error: code={e.code} message={e.message}")
        return UpstreamError(e.message or f"{what} request failed", upstream_status=e.code)

    async def complete_text(self, messages: List[ChatMessage]) -> str:
        client = self._get_client()
        system_instruction, contents = messages_to_contents(messages)
        if not contents:
            # Only system messages were sent; let the model answer the instruction itself
            contents = [types.Content(role="user", parts=[types.Part.from_text(text=system_instruction)])]
            system_instruction = None

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.settings.text_temperature,
            max_output_tokens=self.settings.text_max_tokens,
        )
        logger.info(f"Calling Gemini text model {self.settings.text_model} with {len(contents)} content items")
        try:
            response = await client.aio.models.generate_content(
                model=self.settings.text_model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            raise self._upstream_error("text", e)

        if not response.candidates:
            raise UpstreamError("No response content from text model")
        candidate = response.candidates[0]
        finish_reason = str(getattr(candidate, "finish_reason", None) or "UNKNOWN")
        if "SAFETY" in finish_reason or "RECITATION" in finish_reason:
            logger.warning(f"Text response blocked by filters: {finish_reason}")

        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        text = "".join(part.text for part in parts if getattr(part, "text", None))
        logger.info(f"Gemini text response: {len(text)} characters (finish_reason={finish_reason})")
        return text

    async def create_image(self, prompt: str) -> RawImage:
        client = self._get_client()
        logger.info(f"Calling image model {self.settings.image_model}")
        try:
            response = await client.aio.models.generate_images(
                model=self.settings.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    aspect_ratio="1:1",
                    output_mime_type="image/png",
                ),
            )
        except genai_errors.APIError as e:
            raise self._upstream_error("image", e)

        generated = response.generated_images or []
        if not generated or generated[0].image is None:
            reason = getattr(generated[0], "rai_filtered_reason", None) if generated else None
            raise UpstreamError("No image returned from upstream", details={"reason": reason} if reason else None)

        image = generated[0].image
        url = gcs_uri_to_url(image.gcs_uri) if image.gcs_uri else None
        b64_data = base64.b64encode(image.image_bytes).decode("ascii") if image.image_bytes else None
        return RawImage(url=url, b64_data=b64_data, mime_type=image.mime_type or "image/png")

    async def synthesize_speech(self, text: str, voice: str) -> RawAudio:
        client = self._get_client()
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                )
            ),
        )
        logger.info(f"Calling speech model {self.settings.tts_model} (voice={voice}, {len(text)} chars)")
        try:
            response = await client.aio.models.generate_content(
                model=self.settings.tts_model,
                contents=text,
                config=config,
            )
        except genai_errors.APIError as e:
            raise self._upstream_error("speech", e)

        # Speech comes back as inline PCM (audio/L16;rate=24000) in the first audio part
        for candidate in response.candidates or []:
            parts = candidate.content.parts if candidate.content and candidate.content.parts else []
            for part in parts:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return RawAudio(data=inline.data, mime_type=inline.mime_type or "audio/L16;rate=24000")
        raise UpstreamError("No audio returned from upstream")

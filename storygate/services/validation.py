"""Request-shape checks and "is this a usable answer" checks per capability."""
import base64
import binascii
import json
import logging
from typing import Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from storygate.core.config import Settings
from storygate.core.errors import ResultInvalid, ValidationError
from storygate.schemas.generation import AudioGenerationRequest, ImageGenerationRequest, TextGenerationRequest
from storygate.services.providers import AudioResult, ImageResult, TextResult

logger = logging.getLogger(__name__)

NOT_COUNTED_MESSAGE = "Unexpected response from the generator. This request was not counted."

REQUEST_SCHEMAS = {
    "text": TextGenerationRequest,
    "image": ImageGenerationRequest,
    "audio": AudioGenerationRequest,
}


def parse_generation_request(capability: str, raw_body: Union[bytes, str, None]) -> BaseModel:
    """
    Decode and validate a request body for a capability.

    Raises:
        ValidationError: unknown capability, invalid JSON, or payload constraint violated
    """
    schema = REQUEST_SCHEMAS.get(capability)
    if schema is None:
        raise ValidationError(f"Unknown capability '{capability}'")
    try:
        payload = json.loads(raw_body or b"{}")
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationError("JSON body must be an object")
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ValidationError(f"Invalid {capability} request", details={"fields": fields})


class ResultValidator:
    def __init__(self, min_text_chars: int = 50, min_audio_bytes: int = 512):
        self.min_text_chars = min_text_chars
        self.min_audio_bytes = min_audio_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResultValidator":
        return cls(settings.min_text_chars, settings.min_audio_bytes)

    def check(self, result) -> None:
        """Raise ResultInvalid unless the result can be rendered to the user."""
        if isinstance(result, TextResult):
            ok, reason = self._text_ok(result)
        elif isinstance(result, ImageResult):
            ok, reason = self._image_ok(result)
        elif isinstance(result, AudioResult):
            ok, reason = self._audio_ok(result)
        else:
            ok, reason = False, f"unsupported result type {type(result).__name__}"
        if not ok:
            logger.warning(f"Rejected generation result: {reason}")
            raise ResultInvalid(NOT_COUNTED_MESSAGE, details={"counted": False})

    def _text_ok(self, result: TextResult):
        length = len((result.content or "").strip())
        if length < self.min_text_chars:
            return False, f"text too short ({length} < {self.min_text_chars} chars)"
        return True, None

    @staticmethod
    def _image_ok(result: ImageResult):
        ref = (result.image_ref or "").strip()
        for scheme in ("https://", "http://"):
            if ref.startswith(scheme):
                return len(ref) > len(scheme), "empty image url"
        if ref.startswith("data:image/"):
            header, sep, data = ref.partition(",")
            if not sep or not header.endswith(";base64") or not data:
                return False, "malformed image data reference"
            try:
                decoded = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError):
                return False, "image payload is not valid base64"
            return bool(decoded), "empty image payload"
        return False, "image reference is neither a URL nor a data reference"

    def _audio_ok(self, result: AudioResult):
        if not (result.content_type or "").startswith("audio/"):
            return False, f"unexpected audio content type {result.content_type!r}"
        size = len(result.data or b"")
        if size < self.min_audio_bytes:
            return False, f"audio too small ({size} < {self.min_audio_bytes} bytes)"
        return True, None

"""Request and response schemas for generation endpoints."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"] = "user"
    content: str = Field(..., min_length=1, description="Message text")

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must not be empty")
        return value


class TextGenerationRequest(BaseModel):
    """Body of POST /generate/text."""
    messages: List[ChatMessage] = Field(..., min_length=1, description="Chat messages, oldest first")


class ImageGenerationRequest(BaseModel):
    """Body of POST /generate/image."""
    prompt: str = Field(..., min_length=1, max_length=4000, description="Cover illustration prompt")

    @field_validator("prompt")
    @classmethod
    def _strip_prompt(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be empty")
        return value


class AudioGenerationRequest(BaseModel):
    """Body of POST /generate/audio."""
    text: str = Field(..., min_length=1, max_length=5000, description="Text to narrate")
    voice: Optional[str] = Field(None, description="Prebuilt voice name; server default when omitted")

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("text must not be empty")
        return value

    @field_validator("voice")
    @classmethod
    def _blank_voice_is_default(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class UsageInfo(BaseModel):
    """Quota state after (or instead of) a generation, serialised in camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    day_bucket: str
    plan: str
    daily_limit: int
    used_today: int


class TextGenerationResponse(BaseModel):
    content: str
    usage: UsageInfo


class ImageGenerationResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_ref: str
    usage: UsageInfo

"""Request and response schemas for the saved-stories library."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, List, Optional, Union


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StoryCreate(_CamelModel):
    """Body of POST /stories."""
    title: Optional[str] = None
    child_name: Optional[str] = None
    age: Optional[Union[int, str]] = None
    theme: Optional[str] = None
    style: Optional[str] = None
    length: Optional[Union[int, str]] = None
    moral: Optional[str] = None
    pages: List[Any] = Field(..., min_length=1, description="Story pages in reading order")
    cover_image_url: Optional[str] = None

    def resolved_title(self) -> str:
        if self.title and self.title.strip():
            return self.title.strip()
        if self.child_name:
            return f"Story for {self.child_name}"
        return "Bedtime story"


class StoryOut(_CamelModel):
    id: str
    title: str
    child_name: Optional[str] = None
    age: Optional[str] = None
    theme: Optional[str] = None
    style: Optional[str] = None
    length: Optional[str] = None
    moral: Optional[str] = None
    pages: List[Any]
    cover_image_url: Optional[str] = None
    created_at: datetime


class StoryList(BaseModel):
    stories: List[StoryOut]


class StoryEnvelope(BaseModel):
    story: StoryOut

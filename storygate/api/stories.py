"""Saved-stories library for the signed-in user. Saving does not consume generation quota."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storygate.core.errors import StoreError
from storygate.core.identity import require_user_key
from storygate.database import get_db
from storygate.models.usage import Story
from storygate.schemas.stories import StoryCreate, StoryEnvelope, StoryList, StoryOut

logger = logging.getLogger(__name__)

router = APIRouter()


def _optional_str(value):
    return str(value) if value is not None else None


@router.get("/stories", response_model=StoryList, response_model_by_alias=True)
def list_stories(user_key: str = Depends(require_user_key), db: Session = Depends(get_db)):
    """Stories saved by the caller, newest first."""
    try:
        stories = (
            db.query(Story)
            .filter(Story.user_key == user_key)
            .order_by(Story.created_at.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Story list failed for {user_key}: {e}")
        raise StoreError("Story library unavailable")
    return StoryList(stories=[StoryOut.model_validate(s) for s in stories])


@router.post("/stories", response_model=StoryEnvelope, response_model_by_alias=True)
def save_story(body: StoryCreate, user_key: str = Depends(require_user_key), db: Session = Depends(get_db)):
    story = Story(
        user_key=user_key,
        title=body.resolved_title(),
        child_name=body.child_name or None,
        age=_optional_str(body.age),
        theme=body.theme or None,
        style=body.style or None,
        length=_optional_str(body.length),
        moral=body.moral or None,
        pages=body.pages,
        cover_image_url=body.cover_image_url or None,
    )
    try:
        db.add(story)
        db.commit()
        db.refresh(story)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Story insert failed for {user_key}: {e}")
        raise StoreError("Story library unavailable")
    logger.info(f"Saved story {story.id} for {user_key} ({len(body.pages)} pages)")
    return StoryEnvelope(story=StoryOut.model_validate(story))

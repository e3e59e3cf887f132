"""Read-only quota status for the signed-in user."""
from fastapi import APIRouter, Depends

from storygate.api.generate import get_orchestrator
from storygate.core.identity import require_user_key
from storygate.schemas.generation import UsageInfo
from storygate.services.orchestrator import GenerationOrchestrator

router = APIRouter()


@router.get("/quota", response_model=UsageInfo)
async def quota_status(
    user_key: str = Depends(require_user_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    usage = await orchestrator.usage_status(user_key)
    return UsageInfo.model_validate(usage.to_dict())

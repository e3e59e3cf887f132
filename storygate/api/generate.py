"""Generation endpoints: one POST per capability, gated by the daily quota."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from storygate.core.errors import ConfigurationError
from storygate.core.identity import require_user_key
from storygate.schemas.generation import ImageGenerationResponse, TextGenerationResponse, UsageInfo
from storygate.services.orchestrator import GenerationOrchestrator, UsageSnapshot

router = APIRouter()

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Authorization, Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """The orchestrator built once at startup (overridable in tests)."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ConfigurationError("Generation service is not initialized")
    return orchestrator


def usage_headers(usage: UsageSnapshot) -> dict:
    return {
        "X-Quota-Day-Bucket": usage.day_bucket,
        "X-Quota-Plan": usage.plan,
        "X-Quota-Daily-Limit": str(usage.daily_limit),
        "X-Quota-Used-Today": str(usage.used_today),
    }


@router.options("/generate/{capability}")
async def generate_preflight(capability: str):
    """Permissive CORS preflight for browsers that send a bare OPTIONS."""
    return Response(content="ok", status_code=200, headers=PREFLIGHT_HEADERS)


@router.post("/generate/text", response_model=TextGenerationResponse)
async def generate_text(
    request: Request,
    user_key: str = Depends(require_user_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Story text from chat messages. Body: {"messages": [{"role", "content"}, ...]}"""
    outcome = await orchestrator.run("text", user_key, await request.body())
    return TextGenerationResponse(
        content=outcome.result.content,
        usage=UsageInfo.model_validate(outcome.usage.to_dict()),
    )


@router.post("/generate/image", response_model=ImageGenerationResponse)
async def generate_image(
    request: Request,
    user_key: str = Depends(require_user_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Cover illustration. Body: {"prompt": "..."}; imageRef is a URL or a data: reference."""
    outcome = await orchestrator.run("image", user_key, await request.body())
    return ImageGenerationResponse(
        image_ref=outcome.result.image_ref,
        usage=UsageInfo.model_validate(outcome.usage.to_dict()),
    )


@router.post("/generate/audio")
async def generate_audio(
    request: Request,
    user_key: str = Depends(require_user_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Narration. Body: {"text": "...", "voice": "Kore"}; returns the audio bytes, quota in X-Quota-* headers."""
    outcome = await orchestrator.run("audio", user_key, await request.body())
    return Response(
        content=outcome.result.data,
        media_type=outcome.result.content_type,
        headers=usage_headers(outcome.usage),
    )

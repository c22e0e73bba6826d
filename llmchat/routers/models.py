from fastapi import APIRouter, Request

router = APIRouter(prefix="/models", tags=["models"])


@router.get("")
async def list_models(request: Request):
    provider = request.app.state.provider
    settings = request.app.state.settings
    names = await provider.list_models()
    return {"models": names, "default": settings.get_default_model()}


@router.get("/status")
async def provider_status(request: Request):
    provider = request.app.state.provider
    settings = request.app.state.settings
    return {
        "available": await provider.is_available(),
        "url": settings.get_ollama_base_url(),
    }

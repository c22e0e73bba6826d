from typing import Optional
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter(prefix="/settings", tags=["settings"])


class ProviderUpdate(BaseModel):
    url: Optional[str] = None
    model: Optional[str] = None


@router.get("/provider")
async def get_provider(request: Request):
    """Returns the active generation endpoint and model."""
    settings = request.app.state.settings
    return {"url": settings.get_ollama_base_url(), "model": settings.get_default_model()}


@router.put("/provider")
async def set_provider(update: ProviderUpdate, request: Request):
    """Switch the generation endpoint or model at runtime."""
    settings = request.app.state.settings
    worker = request.app.state.worker

    if update.url is not None:
        if not update.url.startswith(("http://", "https://")):
            raise HTTPException(status_code=400, detail="Provider URL must start with http:// or https://")
        settings.set_ollama_base_url(update.url)
    if update.model is not None:
        if not update.model.strip():
            raise HTTPException(status_code=400, detail="Model name must not be empty")
        settings.set_default_model(update.model.strip())
        worker.model = settings.get_default_model()

    return {"status": "success", "url": settings.get_ollama_base_url(), "model": settings.get_default_model()}

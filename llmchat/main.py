import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from llmchat.errors import NotFound, StorageError, ValidationError
from llmchat.settings import Settings
from llmchat.services.locks import ResourceLocks
from llmchat.services.document_store import build_document_store
from llmchat.services.history import ConversationStore
from llmchat.services.work_queue import WorkQueue
from llmchat.services.users import UserStore
from llmchat.services.ollama import build_provider
from llmchat.services.worker import GenerationWorker
from llmchat.services.chat import ChatService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Optional[Settings] = None, store=None, provider=None,
               start_worker: bool = True) -> FastAPI:
    settings = settings or Settings()

    # 1. Build the pipeline explicitly; everything is passed down, nothing is global
    locks = ResourceLocks()
    store = store if store is not None else build_document_store(settings)
    provider = provider if provider is not None else build_provider(settings)
    conversations = ConversationStore(store, locks)
    queue = WorkQueue(store, locks)
    worker = GenerationWorker(
        conversations, queue, provider,
        model=settings.get_default_model(),
        timeout=settings.generation_timeout,
        poll_interval=settings.worker_poll_interval,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_worker:
            worker.start(settings.worker_concurrency)
        try:
            yield
        finally:
            if worker.running:
                await worker.stop()

    # 2. Setup App
    app = FastAPI(title="LLM Chat Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.provider = provider
    app.state.worker = worker
    app.state.users = UserStore(store, locks)
    app.state.chat = ChatService(conversations, queue, worker)

    # 3. Setup CORS: allow all, identity comes from the X-User-Id header
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 4. Map pipeline errors onto HTTP responses
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Storage failure"})

    # 5. Include Routers
    from llmchat.routers import chat, models, settings as settings_router, users
    app.include_router(chat.router)
    app.include_router(models.router)
    app.include_router(settings_router.router)
    app.include_router(users.router)

    @app.get("/")
    def read_root():
        return {"status": "LLM chat backend is running", "worker": worker.running}

    return app


def run():
    import uvicorn

    settings = Settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()

import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from codecraft.api import activities, settings as settings_api, threads
from codecraft.core.config import get_settings
from codecraft.core.deps import get_gateway
from codecraft.core.errors import FatalPipelineError

logger = logging.getLogger("codecraft")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # only close a gateway that was actually built
    if get_gateway.cache_info().currsize:
        await get_gateway().aclose()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Chat-driven generation of verified coding practice problems",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for module in (threads, activities, settings_api):
        app.include_router(module.router)

    @app.exception_handler(FatalPipelineError)
    async def fatal_pipeline_error(request: Request, exc: FatalPipelineError):
        # internals stay in the log; clients only see the error class
        logger.error("Fatal error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal pipeline error", "error_type": exc.__class__.__name__},
        )

    @app.get("/")
    async def root():
        return {"name": settings.app_name, "docs": "/docs", "health": "/health"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from admission_engine.api.v1.admissions.router import router as admissions_router
from admission_engine.core.config import settings
from admission_engine.core.logging import bind_context, clear_context, setup_logging


def create_app() -> FastAPI:
    setup_logging(settings)
    app = FastAPI(title="Admission Engine", debug=settings.debug)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_context(request: Request, call_next):
        """Every log line of a request carries its request id and path."""
        clear_context()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        bind_context(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(admissions_router)

    return app


app = create_app()

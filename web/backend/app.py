import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.logger import get_logger
from web.backend.routers import goals, habits, suggestions, tasks

logger = get_logger("api")


def create_app() -> FastAPI:
    app = FastAPI(title="Tiny Giant API", version="1.0")

    raw_origins = os.getenv("TINY_GIANT_ALLOWED_ORIGINS", "*")
    allow_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    allow_credentials = "*" not in allow_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "Tiny Giant"}

    app.include_router(goals.router, prefix="/api/v1/goals", tags=["goals"])
    app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["tasks"])
    app.include_router(habits.router, prefix="/api/v1/habits", tags=["habits"])
    app.include_router(suggestions.router, prefix="/api/v1/suggestions", tags=["suggestions"])

    @app.get("/")
    async def root():
        return {
            "message": "Tiny Giant API is running",
            "docs": "/docs",
            "health": "/health",
        }

    logger.info("API routes registered")
    return app


app = create_app()

"""
Main Application Entry Point.

Configures and initializes the FastAPI application, including logging,
the session/sync container, routers, and health checks.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.deps import AppContainer, build_container
from apps.report.api import build_report_router
from apps.settings import load_settings


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = container.settings if container is not None else load_settings()
    # Configure logging: info level for app, warning for noisy refs
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s"
    )

    # Silence httpx/httpcore (used by google-genai)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google.genai").setLevel(logging.WARNING)

    fastapi_app = FastAPI(title="Xiaobai Report Backend", version="0.1.0")
    fastapi_app.state.container = container or build_container(settings)

    # CORS 配置 - 允许前端跨域访问
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:8080",
            "http://127.0.0.1:8080",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": "backend",
            "gemini_model": settings.gemini_model_name,
            "remote_sync_enabled": fastapi_app.state.container.sync.remote is not None,
        }

    fastapi_app.include_router(build_report_router())
    return fastapi_app

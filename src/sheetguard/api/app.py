"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import settings
from ..engine import MutationGuard, create_context
from ..sheets import GoogleSheetsClient
from .routes import router

# Global guard instance
_guard: Optional[MutationGuard] = None


def get_guard() -> MutationGuard:
    """Get the global guard instance."""
    global _guard
    if _guard is None:
        _guard = MutationGuard(GoogleSheetsClient(folder_id=settings.snapshot_folder_id))
    return _guard


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global _guard
    # Startup
    context = await create_context()
    _guard = MutationGuard(GoogleSheetsClient(folder_id=settings.snapshot_folder_id), context)
    yield
    # Shutdown
    await context.close()
    _guard = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SheetGuard",
        description="Mutation safety engine for spreadsheet writes",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(router, prefix="/api")

    return app

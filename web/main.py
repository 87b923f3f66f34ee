"""FastAPI application exposing the entitlement engine to the travel client."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from core.logging import get_logger
from services.entitlement_service import EntitlementService, build_entitlement_service
from web import routers

logger = get_logger(__name__)


def create_app(service: Optional[EntitlementService] = None) -> FastAPI:
    """Build the app; without ``service`` one is wired from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "entitlements", None) is None:
            app.state.entitlements = build_entitlement_service()
        yield

    app = FastAPI(title="Travel Entitlements API", lifespan=lifespan)
    if service is not None:
        app.state.entitlements = service

    @app.middleware("http")
    async def expose_effective_tier(request: Request, call_next):
        """Echo the caller's effective tier on every response."""
        response = await call_next(request)
        entitlements = getattr(request.app.state, "entitlements", None)
        user_id = (request.headers.get("x-user-id") or "").strip()
        if entitlements is not None and user_id:
            response.headers.setdefault("X-Subscription-Tier", entitlements.effective_tier(user_id).value)
        return response

    @app.get("/", summary="Health Check", tags=["Default"])
    def health_check():
        return {"status": "ok", "message": "Travel entitlements API is running."}

    app.include_router(routers.subscription.router, prefix="/api/v1")
    logger.debug("Entitlements API initialised.")
    return app


__all__ = ["create_app"]

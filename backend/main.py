#!/usr/bin/env python3

"""
Backend for the dispatch console.

Run locally:
  uvicorn backend.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from src.dispatch.config import dataset_dir, load_settings, load_tariff
from src.dispatch.router import create_router as create_dispatch_router
from src.dispatch.services import build_services
from src.runtime import configure_logging

logger = configure_logging("backend")


# --------------------------------------------------------------------------------------------------
# Global Constants & Environment
# --------------------------------------------------------------------------------------------------
DEBUG_API = os.getenv("DEBUG_API", "0") == "1"
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]

STATE: Dict[str, Any] = {"settings": None, "services": None, "tariff": None}


def reload_state() -> Dict[str, Any]:
    """(Re)build settings, tariff and services. New services start with empty caches."""
    settings = load_settings()
    tariff = load_tariff()
    STATE.update({
        "settings": settings,
        "tariff": tariff,
        "services": build_services(settings),
    })
    logger.info(
        "Loaded dispatch state: osrm=%s assisted=%s flat_rates=%d time_bands=%d",
        settings.osrm_url, settings.assisted_available, len(tariff.flat_rates), len(tariff.time_based_tariffs),
    )
    return STATE


# --------------------------------------------------------------------------------------------------
# Admin Router (reload)
# --------------------------------------------------------------------------------------------------
def admin_router() -> APIRouter:
    router = APIRouter(prefix="/admin", tags=["Admin"])

    @router.post("/reload")
    def admin_reload():
        """Re-read environment, tariff.json and fuel prices from disk"""
        reload_state()
        settings, tariff = STATE["settings"], STATE["tariff"]
        return {
            "status": "ok",
            "reloaded": {
                "dataset_dir": str(dataset_dir()),
                "osrm_url": settings.osrm_url,
                "assisted_available": settings.assisted_available,
                "flat_rates": len(tariff.flat_rates),
                "time_based_tariffs": len(tariff.time_based_tariffs),
            },
        }

    return router


# --------------------------------------------------------------------------------------------------
# Public Endpoints
# --------------------------------------------------------------------------------------------------
def register_routes(app: FastAPI):
    @app.get("/health")
    def health():
        settings = STATE["settings"]
        if settings is None:
            return {"status": "needs_reload", "message": "Dispatch state not loaded. POST /admin/reload."}
        return {
            "status": "ok",
            "osrm": settings.osrm_url,
            "assisted_available": settings.assisted_available,
            "tariff_loaded": STATE["tariff"] is not None,
        }


# --------------------------------------------------------------------------------------------------
# FastAPI App (with lifespan)
# --------------------------------------------------------------------------------------------------
def create_app() -> FastAPI:
    async def lifespan(app: FastAPI):
        reload_state()
        yield

    app = FastAPI(title="Rapid Dispatch", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.exception("Unhandled error on %s", request.url.path)
        payload = {"error": str(exc)}
        if DEBUG_API:
            payload["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=payload)

    app.include_router(admin_router())
    app.include_router(create_dispatch_router(lambda: STATE["services"], lambda: STATE["tariff"]))

    register_routes(app)
    return app


app = create_app()


# --------------------------------------------------------------------------------------------------
# Entrypoint
# --------------------------------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)

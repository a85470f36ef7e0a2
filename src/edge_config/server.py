"""HTTP endpoint polled by Traefik's HTTP provider."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from edge_config.store import StoreError

logger = logging.getLogger(__name__)

CONFIG_ROUTE = "/api/v1/traefik-config"


def _error_response() -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Failed to build Traefik config"})


def create_app(compile_config: Callable[[], Dict[str, Any]]) -> FastAPI:
    """Build the app around a zero-argument compile function.

    Each request runs one full compilation. Failures return a single error
    object, never a partial document.
    """
    app = FastAPI(title="edge-config", docs_url=None, redoc_url=None)

    # Plain def: compilation blocks on store reads, so it runs in the threadpool.
    @app.get(CONFIG_ROUTE)
    def traefik_config() -> JSONResponse:
        try:
            document = compile_config()
        except StoreError as e:
            logger.error(f"Failed to build Traefik config: {e}")
            return _error_response()
        except Exception as e:
            logger.error(f"Failed to build Traefik config: {e}", exc_info=True)
            return _error_response()
        return JSONResponse(status_code=200, content=document)

    @app.get("/health")
    def health() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "edge-config"}

    return app

# app/main.py
from fastapi import FastAPI, Request
from app.api.errors import error_response
from app.core.config import settings
from app.core.exceptions import ConfigurationError, GatewayError, StorageUnavailable
from app.api.endpoints import audit, resources
from app.x402.middleware import X402Middleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

app.include_router(resources.router, tags=["resources"])
app.include_router(audit.router, prefix="/x402", tags=["audit"])

# Payment guard for /download and /upload; a no-op when X402_ENABLED=false
app.add_middleware(X402Middleware)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return error_response(500, "configuration", exc.message, exc.details or None)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error(f"Storage unavailable on {request.url.path}: {exc}")
    return error_response(502, "storage-unavailable", exc.message, exc.details or None)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error(f"Unhandled gateway error on {request.url.path}: {exc}")
    return error_response(500, "internal", exc.message, exc.details or None)


@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {
        "status": "ok",
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "x402_enabled": settings.X402_ENABLED,
        "network": settings.X402_NETWORK,
    }

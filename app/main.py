# app/main.py
from fastapi import FastAPI, Request
from app.core.config import settings
from app.core.version import VERSION
from app.api.endpoints import catalog, purchase
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.SERVICE_TAGLINE,
    version=VERSION,
)

app.include_router(catalog.router, tags=["catalog"])
app.include_router(purchase.router, tags=["purchase"])


@app.middleware("http")
async def add_service_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Powered-By"] = settings.PROJECT_NAME
    response.headers["X-Service-Version"] = VERSION
    return response


def log_startup_configuration():
    """Warn about configuration that weakens or disables payments."""
    if not settings.X402_WALLET_ADDRESS:
        logger.warning("X402_WALLET_ADDRESS not configured - payment details will be unavailable")
    if not settings.is_production:
        logger.warning(
            f"ENVIRONMENT={settings.ENVIRONMENT}: development bypass proof is enabled"
        )
    logger.info(
        f"{settings.PROJECT_NAME} {VERSION} on {settings.X402_NETWORK} "
        f"(ledger {settings.SOLANA_RPC_URL}, commitment {settings.SOLANA_COMMITMENT})"
    )


log_startup_configuration()


@app.get("/", summary="Service Info", tags=["default"])
def read_root():
    """ Service description and endpoint index. """
    logger.info("Root endpoint '/' accessed.")
    return {
        "service": settings.PROJECT_NAME,
        "tagline": settings.SERVICE_TAGLINE,
        "version": VERSION,
        "description": "Stop waiting. Start building.",
        "endpoints": {
            "GET /catalog": "View available documentation",
            "GET /buy/{item}": "Purchase and download documentation (requires payment)",
            "GET /payment-info": "How to pay: network, asset, tolerance and replay policy",
            "GET /health": "Health check",
        },
    }


@app.get("/health", summary="Health Check", tags=["default"])
def health():
    return {"status": "ok", "version": VERSION}

"""ShipDesk-Lite FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shipdesk.config import get_settings
from shipdesk.database import engine, Base
from shipdesk.api import auth_routes, orders, products, shipping
from shipdesk.services.freightcom import close_freightcom_client
from shipdesk.services.rates import quote_registry

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup (use Alembic in production)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if not settings.freightcom_api_base_url or not settings.freightcom_api_key:
        logger.warning("Freightcom API is not configured; carrier calls will fail with 503")
    yield
    await quote_registry.shutdown()
    await close_freightcom_client()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Shipping desk for store orders: Freightcom rates, booking, "
                "tracking, pickup scheduling and cancellation",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(products.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(shipping.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": "1.0.0",
        "carrier_configured": bool(settings.freightcom_api_base_url and settings.freightcom_api_key),
    }

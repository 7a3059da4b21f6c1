import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from coopmarket.api.v1.disputes import router as disputes_router
from coopmarket.api.v1.jobs import router as jobs_router
from coopmarket.api.v1.ledger import router as ledger_router
from coopmarket.api.v1.orders import router as orders_router
from coopmarket.api.v1.pool import router as pool_router
from coopmarket.api.v1.restaurants import router as restaurants_router
from coopmarket.core.config import LOG_FORMAT, PROJECT_NAME, VERSION
from coopmarket.core.db import close_db, init_db
from coopmarket.core.exception_handlers import setup_exception_handlers
from coopmarket.core.redis import close_redis
from coopmarket.middleware.idempotency import IdempotencyMiddleware

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()  # Connect to DB and generate schemas
    yield
    await close_redis()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")


app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(IdempotencyMiddleware)

app.include_router(restaurants_router, prefix="/api/v1/restaurants", tags=["Restaurants"])
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Lifecycle"])
app.include_router(disputes_router, prefix="/api/v1/disputes", tags=["Disputes"])
app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["Job Board"])
app.include_router(ledger_router, prefix="/api/v1/ledger", tags=["Transparency Ledger"])
app.include_router(pool_router, prefix="/api/v1/pool", tags=["Guarantee Pool"])

setup_exception_handlers(app)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}


# Development entrypoint; deployments run `uvicorn coopmarket.main:app`.
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("coopmarket.main:app", host="0.0.0.0", port=8000, log_level="info")

"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from eventpay.core.config import settings
from eventpay.core.logging import setup_logging
from eventpay.core.middleware import global_exception_handler, security_middleware, setup_cors_middleware
from eventpay.core.otel import (
    initialize_otel, setup_otel_logging, instrument_fastapi, instrument_httpx, instrument_sqlalchemy
)
from eventpay.db.redis import get_redis_client
from eventpay.db.session import engine, init_db

# Import routers
from eventpay.api import payments, refunds, reservations, webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    instrument_sqlalchemy(engine)

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="EventPay Backend",
    description="Event reservations with Stripe and PayPal payment reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)
instrument_httpx()

setup_cors_middleware(app)

# Include routers
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(reservations.router)
app.include_router(refunds.router)

app.middleware("http")(security_middleware)
app.add_exception_handler(Exception, global_exception_handler)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

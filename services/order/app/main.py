import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from app.version import VERSION
from app import scheduler
from app.api import routes
from app.core.config import settings
from app.core.errors import OrderServiceError
from app.core.logging import configure_logging
from app.kafka import consumer as payment_consumer, producer

logger = structlog.get_logger(__name__)

instrumentator = Instrumentator()

app = FastAPI(title="Order Service", version=VERSION)

# Instrument the app before adding routes
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/order/metrics",
    should_gzip=True,
)

@app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Health endpoints
@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/order/health")
def order_health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "order", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    configure_logging()
    if settings.KAFKA_ENABLED:
        payment_consumer.start()
    if settings.SWEEP_ENABLED:
        scheduler.start()
    logger.info("Order service started", kafka=settings.KAFKA_ENABLED, sweep=settings.SWEEP_ENABLED)

@app.on_event("shutdown")
async def shutdown_event():
    payment_consumer.stop()
    scheduler.stop()
    producer.close()

app.include_router(routes.router, prefix="/order", tags=["orders"])

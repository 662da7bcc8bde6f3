"""FastAPI application exposing the accumulator registry over HTTP."""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ewma_registry.accumulators.registry import AccumulatorRegistry
from ewma_registry.accumulators.routes import router as accumulators_router
from ewma_registry.config import get_settings
from ewma_registry.lib.logger import configure_logging
from ewma_registry.lib.metrics import METRICS

settings = get_settings()

configure_logging(settings.log_level)
app = FastAPI(title="EWMA Registry", version="0.1.0")

app.state.metrics = METRICS
app.state.registry = AccumulatorRegistry(
    max_instances=settings.max_instances,
    max_outstanding_buffers=settings.max_outstanding_buffers,
    metrics=METRICS,
)

app.include_router(accumulators_router, prefix="/api/accumulators", tags=["accumulators"])


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render validation errors without echoing the offending input.

    Rejected payloads may carry NaN or infinities, which JSON responses cannot encode.
    """
    errors = [{key: value for key, value in error.items() if key != "input"} for error in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


@app.get("/health", tags=["system"], summary="Health check")
async def health_check() -> JSONResponse:
    """Return liveness response plus live instance count."""
    registry: AccumulatorRegistry = app.state.registry
    payload = {"ok": True, "data": {"status": "healthy", "instances": len(registry)}}
    return JSONResponse(content=payload)


@app.get("/metrics", tags=["system"], summary="Metrics endpoint")
async def metrics_endpoint(prefix: str | None = None) -> JSONResponse:
    """Return counters, optionally only those whose name starts with ``prefix``."""
    snapshot = METRICS.snapshot(prefix)
    return JSONResponse({"ok": True, "data": snapshot})

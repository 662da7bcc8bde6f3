"""HTTP routes mapping the registry's sentinel surface to status codes.

Handlers are plain ``def`` functions so FastAPI runs them in its threadpool;
the registry's own locks make concurrent requests safe.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ewma_registry.accumulators.engine import is_valid_alpha
from ewma_registry.accumulators.registry import INVALID_HANDLE, AccumulatorRegistry
from ewma_registry.accumulators.schemas import (
    AccumulatorValueResponse,
    AlphaRequest,
    CreateAccumulatorRequest,
    HandleListResponse,
    HandleResponse,
    OperationResponse,
    RestoreStateRequest,
    SerializedStateResponse,
    UpdateRequest,
)

router = APIRouter()

_ALPHA_DETAIL = "alpha must be a finite number in (0, 1]"


def get_registry(request: Request) -> AccumulatorRegistry:
    registry: AccumulatorRegistry | None = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Accumulator registry not configured on application state")
    return registry


def _not_found(handle: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Accumulator {handle} not found")


def _ok(model) -> JSONResponse:
    return JSONResponse({"ok": True, "data": model.model_dump(mode="json")})


@router.post("/")
def create_accumulator(
    payload: CreateAccumulatorRequest,
    registry: AccumulatorRegistry = Depends(get_registry),
) -> JSONResponse:
    """Allocate a new accumulator and return its handle."""

    if not is_valid_alpha(payload.alpha):
        raise HTTPException(status_code=422, detail=_ALPHA_DETAIL)
    handle = registry.create(payload.alpha)
    if handle == INVALID_HANDLE:
        raise HTTPException(status_code=503, detail="Accumulator capacity exhausted")
    return _ok(HandleResponse(handle=handle))


@router.get("/")
def list_accumulators(registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    handles = registry.handles()
    return _ok(HandleListResponse(handles=handles, count=len(handles)))


@router.delete("/buffers/{buffer_id}")
def release_buffer(buffer_id: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    """Release a state buffer previously returned by ``GET /{handle}/state``."""

    if not registry.release_text(buffer_id):
        raise HTTPException(status_code=404, detail="Buffer not found or already released")
    return JSONResponse({"ok": True, "data": {"buffer_id": buffer_id, "released": True}})


@router.post("/{handle}/update")
def update_accumulator(
    handle: int,
    payload: UpdateRequest,
    registry: AccumulatorRegistry = Depends(get_registry),
) -> JSONResponse:
    value = registry.update(handle, payload.x)
    # Finite samples never produce NaN, so NaN here is the invalid-handle sentinel.
    if math.isnan(value):
        raise _not_found(handle)
    return _ok(AccumulatorValueResponse(handle=handle, value=value, initialized=True))


@router.get("/{handle}/value")
def get_accumulator_value(handle: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    reading = registry.read(handle)
    if reading is None:
        raise _not_found(handle)
    value, initialized = reading
    return _ok(AccumulatorValueResponse(handle=handle, value=value, initialized=initialized))


@router.post("/{handle}/reset")
def reset_accumulator(handle: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    if not registry.reset(handle):
        raise _not_found(handle)
    return _ok(OperationResponse(handle=handle))


@router.put("/{handle}/alpha")
def set_accumulator_alpha(
    handle: int,
    payload: AlphaRequest,
    registry: AccumulatorRegistry = Depends(get_registry),
) -> JSONResponse:
    if not is_valid_alpha(payload.alpha):
        raise HTTPException(status_code=422, detail=_ALPHA_DETAIL)
    if not registry.set_alpha(handle, payload.alpha):
        raise _not_found(handle)
    return _ok(OperationResponse(handle=handle))


@router.get("/{handle}/state")
def serialize_accumulator_state(handle: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    """Return the JSON state text; the caller releases it via ``DELETE /buffers/{buffer_id}``."""

    buffer = registry.serialize_state(handle)
    if buffer is None:
        if not registry.contains(handle):
            raise _not_found(handle)
        raise HTTPException(status_code=503, detail="State buffer capacity exhausted")
    return _ok(SerializedStateResponse(buffer_id=buffer.buffer_id, state=str(buffer)))


@router.put("/{handle}/state")
def restore_accumulator_state(
    handle: int,
    payload: RestoreStateRequest,
    registry: AccumulatorRegistry = Depends(get_registry),
) -> JSONResponse:
    if not registry.contains(handle):
        raise _not_found(handle)
    if not registry.restore_state(handle, payload.state):
        if not registry.contains(handle):
            raise _not_found(handle)
        raise HTTPException(status_code=422, detail="Malformed accumulator state")
    return _ok(OperationResponse(handle=handle))


@router.post("/{handle}/clone")
def clone_accumulator(handle: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    if not registry.contains(handle):
        raise _not_found(handle)
    new_handle = registry.clone(handle)
    if new_handle == INVALID_HANDLE:
        if not registry.contains(handle):
            raise _not_found(handle)
        raise HTTPException(status_code=503, detail="Accumulator capacity exhausted")
    return _ok(HandleResponse(handle=new_handle))


@router.delete("/{handle}")
def destroy_accumulator(handle: int, registry: AccumulatorRegistry = Depends(get_registry)) -> JSONResponse:
    if not registry.destroy(handle):
        raise _not_found(handle)
    return _ok(OperationResponse(handle=handle))

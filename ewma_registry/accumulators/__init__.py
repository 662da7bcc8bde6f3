"""Accumulator package: EWMA engine, handle registry and HTTP routes."""

from ewma_registry.accumulators.buffers import StateText
from ewma_registry.accumulators.engine import Accumulator, InvalidAlphaError, validate_alpha
from ewma_registry.accumulators.registry import (
    INVALID_HANDLE,
    AccumulatorHandle,
    AccumulatorRegistry,
    HandleClosedError,
    RegistryCapacityError,
    UnknownHandleError,
)
from ewma_registry.accumulators.schemas import AccumulatorState

__all__ = [
    "INVALID_HANDLE",
    "Accumulator",
    "AccumulatorHandle",
    "AccumulatorRegistry",
    "AccumulatorState",
    "HandleClosedError",
    "InvalidAlphaError",
    "RegistryCapacityError",
    "StateText",
    "UnknownHandleError",
    "validate_alpha",
]

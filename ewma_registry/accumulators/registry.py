"""Thread-safe handle table for EWMA accumulators.

The public surface follows a sentinel convention so it can sit behind any
call boundary: failed operations never raise, they return ``0`` (handles),
``False`` (flags), ``None`` (state text) or ``NaN`` (numeric results).
``contains`` tells a NaN sentinel apart from a legitimate NaN estimate.

Locking: ``_lock`` guards the table and the handle counter and is never held
during numeric work. Each slot carries its own lock, so operations on
different handles do not contend. ``destroy`` unlinks the slot first and
then marks it retired under the slot lock; an operation that resolved the
slot earlier either finishes before that point or sees ``retired`` and
fails as an invalid handle.
"""

from __future__ import annotations

import itertools
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from ewma_registry.accumulators.buffers import BufferLedger, StateText
from ewma_registry.accumulators.engine import Accumulator, InvalidAlphaError, is_valid_sample, validate_alpha
from ewma_registry.accumulators.schemas import AccumulatorState
from ewma_registry.config import get_settings
from ewma_registry.lib.logger import get_logger
from ewma_registry.lib.metrics import METRICS, MetricsRegistry

logger = get_logger(__name__)

INVALID_HANDLE = 0

_T = TypeVar("_T")


class UnknownHandleError(KeyError):
    """Raised internally when a handle does not resolve to a live accumulator."""


class RegistryCapacityError(RuntimeError):
    """Raised by ``AccumulatorHandle`` when the registry refuses an allocation."""


class HandleClosedError(RuntimeError):
    """Raised when an ``AccumulatorHandle`` is used after ``close()``."""


@dataclass
class _Slot:
    accumulator: Accumulator
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False


def _is_handle(handle: Any) -> bool:
    return isinstance(handle, int) and not isinstance(handle, bool) and handle != INVALID_HANDLE


class AccumulatorRegistry:
    """Owns accumulator instances and the buffers issued for their state."""

    def __init__(
        self,
        *,
        max_instances: int | None = None,
        max_outstanding_buffers: int | None = None,
        metrics: MetricsRegistry = METRICS,
    ) -> None:
        if max_instances is None or max_outstanding_buffers is None:
            settings = get_settings()
            if max_instances is None:
                max_instances = settings.max_instances
            if max_outstanding_buffers is None:
                max_outstanding_buffers = settings.max_outstanding_buffers

        self._lock = threading.Lock()
        self._slots: dict[int, _Slot] = {}
        self._handles = itertools.count(1)
        self._max_instances = max_instances
        self._buffers = BufferLedger(max_outstanding_buffers)
        self._metrics = metrics

    # ---- table primitives ----

    def _insert(self, accumulator: Accumulator) -> int:
        with self._lock:
            if len(self._slots) >= self._max_instances:
                return INVALID_HANDLE
            handle = next(self._handles)
            self._slots[handle] = _Slot(accumulator)
        return handle

    def _apply(self, handle: int, op: Callable[[Accumulator], _T]) -> _T:
        """Run ``op`` against the live accumulator behind ``handle`` under its lock."""

        if not _is_handle(handle):
            raise UnknownHandleError(handle)
        with self._lock:
            slot = self._slots.get(handle)
        if slot is None:
            raise UnknownHandleError(handle)
        with slot.lock:
            if slot.retired:
                raise UnknownHandleError(handle)
            return op(slot.accumulator)

    def _invalid_handle(self, operation: str, handle: Any, sentinel: _T) -> _T:
        self._metrics.increment("ewma.handle.invalid")
        logger.warning(
            "accumulator_invalid_handle",
            extra={"operation": operation, "handle": handle},
        )
        return sentinel

    def _capacity_exhausted(self, operation: str) -> int:
        self._metrics.increment("ewma.create.capacity")
        logger.warning(
            "registry_capacity_exhausted",
            extra={"operation": operation, "max_instances": self._max_instances},
        )
        return INVALID_HANDLE

    # ---- lifecycle ----

    def create(self, alpha: float) -> int:
        """Allocate an uninitialized accumulator; ``0`` on invalid alpha or a full table."""

        try:
            accumulator = Accumulator.create(alpha)
        except InvalidAlphaError:
            self._metrics.increment("ewma.create.rejected")
            logger.warning("accumulator_create_rejected", extra={"alpha": repr(alpha)})
            return INVALID_HANDLE

        handle = self._insert(accumulator)
        if handle == INVALID_HANDLE:
            return self._capacity_exhausted("create")

        self._metrics.increment("ewma.create.success")
        logger.info("accumulator_created", extra={"handle": handle, "alpha": accumulator.alpha})
        return handle

    def destroy(self, handle: int) -> bool:
        if not _is_handle(handle):
            return self._invalid_handle("destroy", handle, False)
        with self._lock:
            slot = self._slots.pop(handle, None)
        if slot is None:
            return self._invalid_handle("destroy", handle, False)
        with slot.lock:
            slot.retired = True

        self._metrics.increment("ewma.destroy")
        logger.info("accumulator_destroyed", extra={"handle": handle})
        return True

    def clone(self, handle: int) -> int:
        """Allocate a new accumulator holding a snapshot of ``handle``'s state."""

        try:
            state = self._apply(handle, lambda acc: acc.snapshot(handle))
        except UnknownHandleError:
            return self._invalid_handle("clone", handle, INVALID_HANDLE)

        copy = Accumulator(alpha=state.alpha, value=state.value, initialized=state.initialized)
        new_handle = self._insert(copy)
        if new_handle == INVALID_HANDLE:
            return self._capacity_exhausted("clone")

        self._metrics.increment("ewma.clone")
        logger.info("accumulator_cloned", extra={"handle": new_handle, "source_handle": handle})
        return new_handle

    # ---- numeric operations ----

    def update(self, handle: int, x: float) -> float:
        """Fold ``x`` into the estimate; ``NaN`` for an unknown handle or a non-finite ``x``."""

        if not is_valid_sample(x):
            self._metrics.increment("ewma.update.rejected")
            logger.warning("accumulator_sample_rejected", extra={"handle": handle, "sample": repr(x)})
            return math.nan
        sample = float(x)

        try:
            value = self._apply(handle, lambda acc: acc.update(sample))
        except UnknownHandleError:
            return self._invalid_handle("update", handle, math.nan)
        self._metrics.increment("ewma.update")
        return value

    def get_value(self, handle: int) -> float:
        try:
            return self._apply(handle, lambda acc: acc.value)
        except UnknownHandleError:
            return self._invalid_handle("get_value", handle, math.nan)

    def is_initialized(self, handle: int) -> bool:
        try:
            return self._apply(handle, lambda acc: acc.initialized)
        except UnknownHandleError:
            return False

    def read(self, handle: int) -> tuple[float, bool] | None:
        """Return ``(value, initialized)`` from one locked lookup, or ``None`` for an unknown handle."""

        try:
            return self._apply(handle, lambda acc: (acc.value, acc.initialized))
        except UnknownHandleError:
            return self._invalid_handle("read", handle, None)

    def reset(self, handle: int) -> bool:
        try:
            self._apply(handle, lambda acc: acc.reset())
        except UnknownHandleError:
            return self._invalid_handle("reset", handle, False)
        return True

    def set_alpha(self, handle: int, alpha: float) -> bool:
        try:
            value = validate_alpha(alpha)
        except InvalidAlphaError:
            self._metrics.increment("ewma.alpha.rejected")
            logger.warning("accumulator_alpha_rejected", extra={"handle": handle, "alpha": repr(alpha)})
            return False

        try:
            self._apply(handle, lambda acc: acc.set_alpha(value))
        except UnknownHandleError:
            return self._invalid_handle("set_alpha", handle, False)
        return True

    # ---- serialization ----

    def serialize_state(self, handle: int) -> StateText | None:
        """Return the JSON state as a ledger buffer the caller must ``release_text``."""

        try:
            state = self._apply(handle, lambda acc: acc.snapshot(handle))
        except UnknownHandleError:
            return self._invalid_handle("serialize_state", handle, None)

        try:
            text = state.to_json()
        except ValueError:
            # Strict JSON has no spelling for infinities or NaN.
            self._metrics.increment("ewma.serialize.failed")
            logger.warning("accumulator_state_unserializable", extra={"handle": handle})
            return None

        buffer = self._buffers.issue(text)
        if buffer is None:
            self._metrics.increment("ewma.buffer.exhausted")
            logger.warning("state_buffer_capacity_exhausted", extra={"handle": handle})
            return None

        self._metrics.increment("ewma.buffer.issued")
        return buffer

    def release_text(self, buffer: StateText | int) -> bool:
        """Release a buffer from ``serialize_state``; ``False`` on a second or foreign release."""

        if not self._buffers.release(buffer):
            self._metrics.increment("ewma.buffer.release_rejected")
            logger.warning(
                "state_buffer_release_rejected",
                extra={"buffer_id": getattr(buffer, "buffer_id", buffer)},
            )
            return False
        self._metrics.increment("ewma.buffer.released")
        logger.info("state_buffer_released", extra={"buffer_id": getattr(buffer, "buffer_id", buffer)})
        return True

    def restore_state(self, handle: int, text: str | bytes) -> bool:
        """Load alpha, value and the seeded flag from a JSON state document."""

        try:
            state = AccumulatorState.model_validate_json(text)
        except ValidationError as exc:
            self._metrics.increment("ewma.restore.rejected")
            logger.warning(
                "accumulator_restore_rejected",
                extra={"handle": handle, "reason": "malformed", "errors": exc.error_count()},
            )
            return False

        try:
            self._apply(handle, lambda acc: acc.load(state))
        except InvalidAlphaError:
            self._metrics.increment("ewma.restore.rejected")
            logger.warning(
                "accumulator_restore_rejected",
                extra={"handle": handle, "reason": "alpha", "alpha": state.alpha},
            )
            return False
        except UnknownHandleError:
            return self._invalid_handle("restore_state", handle, False)

        logger.info("accumulator_state_restored", extra={"handle": handle})
        return True

    # ---- introspection ----

    def contains(self, handle: int) -> bool:
        if not _is_handle(handle):
            return False
        with self._lock:
            return handle in self._slots

    def handles(self) -> list[int]:
        with self._lock:
            return sorted(self._slots)

    def outstanding_buffers(self) -> int:
        return self._buffers.outstanding()

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def clear(self) -> None:
        """Destroy every instance and forget outstanding buffers (teardown/testing utility).

        The handle counter keeps running, so handles issued before ``clear``
        are never handed out again.
        """

        with self._lock:
            slots = list(self._slots.values())
            self._slots.clear()
        for slot in slots:
            with slot.lock:
                slot.retired = True
        dropped = self._buffers.clear()
        logger.info("registry_cleared", extra={"instances": len(slots), "buffers": dropped})


class AccumulatorHandle:
    """Object wrapper owning one handle in a registry.

    Unlike the registry's sentinel surface, failures here raise:
    ``InvalidAlphaError`` for a bad smoothing factor, ``RegistryCapacityError``
    when an allocation is refused, ``HandleClosedError`` after ``close()`` and
    ``UnknownHandleError`` when the handle was destroyed behind the wrapper's back.
    """

    def __init__(self, registry: AccumulatorRegistry, alpha: float) -> None:
        validate_alpha(alpha)
        handle = registry.create(alpha)
        if handle == INVALID_HANDLE:
            raise RegistryCapacityError("registry refused to allocate an accumulator")
        self._registry = registry
        self._handle = handle

    @classmethod
    def _adopt(cls, registry: AccumulatorRegistry, handle: int) -> "AccumulatorHandle":
        wrapper = cls.__new__(cls)
        wrapper._registry = registry
        wrapper._handle = handle
        return wrapper

    def __repr__(self) -> str:
        return f"AccumulatorHandle(handle={self._handle}, closed={self.closed})"

    def __enter__(self) -> "AccumulatorHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._handle == INVALID_HANDLE

    @property
    def handle(self) -> int:
        return self._require()

    def _require(self) -> int:
        if self._handle == INVALID_HANDLE:
            raise HandleClosedError("accumulator handle is closed")
        return self._handle

    def _check(self, ok: bool) -> None:
        if not ok:
            raise UnknownHandleError(self._handle)

    def update(self, x: float) -> float:
        handle = self._require()
        value = self._registry.update(handle, x)
        if math.isnan(value):
            self._check(self._registry.contains(handle))
        return value

    def value(self) -> float:
        handle = self._require()
        value = self._registry.get_value(handle)
        if math.isnan(value):
            self._check(self._registry.contains(handle))
        return value

    def reset(self) -> None:
        self._check(self._registry.reset(self._require()))

    def set_alpha(self, alpha: float) -> None:
        handle = self._require()
        validate_alpha(alpha)
        self._check(self._registry.set_alpha(handle, alpha))

    def state(self) -> AccumulatorState:
        """Serialize, parse and release the state buffer in one step."""

        handle = self._require()
        buffer = self._registry.serialize_state(handle)
        if buffer is None:
            self._check(self._registry.contains(handle))
            raise RegistryCapacityError("state could not be serialized")
        try:
            return AccumulatorState.model_validate_json(str(buffer))
        finally:
            self._registry.release_text(buffer)

    def restore(self, state: AccumulatorState | str) -> bool:
        text = state.to_json() if isinstance(state, AccumulatorState) else state
        return self._registry.restore_state(self._require(), text)

    def clone(self) -> "AccumulatorHandle":
        handle = self._require()
        new_handle = self._registry.clone(handle)
        if new_handle == INVALID_HANDLE:
            self._check(self._registry.contains(handle))
            raise RegistryCapacityError("registry refused to allocate an accumulator")
        return AccumulatorHandle._adopt(self._registry, new_handle)

    def close(self) -> None:
        if self._handle != INVALID_HANDLE:
            self._registry.destroy(self._handle)
            self._handle = INVALID_HANDLE

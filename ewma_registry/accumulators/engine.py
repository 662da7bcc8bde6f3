"""Single-pole exponential smoothing for one accumulator instance.

The update rule is ``v' = alpha * x + (1 - alpha) * v``. The first sample
seeds the estimate directly, so an accumulator needs O(1) memory and time
per update regardless of how many samples it has seen.

Nothing in this module is thread-safe; the registry serializes access to
each instance with that instance's lock.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from ewma_registry.accumulators.schemas import AccumulatorState

UNINITIALIZED_VALUE = 0.0


class InvalidAlphaError(ValueError):
    """Raised when a smoothing factor falls outside ``(0, 1]``."""

    def __init__(self, alpha: Any) -> None:
        super().__init__(f"alpha must be a finite number in (0, 1], got {alpha!r}")
        self.alpha = alpha


def validate_alpha(alpha: Any) -> float:
    """Return ``alpha`` as a float, or raise ``InvalidAlphaError``.

    Booleans, strings and other non-numeric values are rejected outright
    rather than coerced. NaN fails both comparisons and is rejected too.
    """

    if isinstance(alpha, bool) or not isinstance(alpha, (int, float)):
        raise InvalidAlphaError(alpha)
    value = float(alpha)
    if not (0.0 < value <= 1.0) or not math.isfinite(value):
        raise InvalidAlphaError(alpha)
    return value


def is_valid_alpha(alpha: Any) -> bool:
    try:
        validate_alpha(alpha)
    except InvalidAlphaError:
        return False
    return True


def is_valid_sample(x: Any) -> bool:
    """Samples must be finite real numbers; bools and numeric strings do not count."""

    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return False
    return math.isfinite(x)


@dataclass
class Accumulator:
    """Mutable EWMA state: smoothing factor, current estimate, seeded flag."""

    alpha: float
    value: float = UNINITIALIZED_VALUE
    initialized: bool = False

    @classmethod
    def create(cls, alpha: Any) -> "Accumulator":
        return cls(alpha=validate_alpha(alpha))

    def update(self, x: float) -> float:
        x = float(x)
        if not self.initialized:
            self.value = x
            self.initialized = True
        else:
            self.value = self.alpha * x + (1.0 - self.alpha) * self.value
        return self.value

    def reset(self) -> None:
        self.value = UNINITIALIZED_VALUE
        self.initialized = False

    def set_alpha(self, alpha: Any) -> None:
        self.alpha = validate_alpha(alpha)

    def snapshot(self, handle: int) -> AccumulatorState:
        # Fields were validated on the way in; rendering rejects anything non-finite.
        return AccumulatorState.model_construct(
            handle=handle,
            alpha=self.alpha,
            value=self.value,
            initialized=self.initialized,
        )

    def load(self, state: AccumulatorState) -> None:
        """Replace alpha, value and the seeded flag from a parsed state.

        Alpha is validated before anything is assigned, so a rejected state
        leaves the accumulator untouched.
        """

        alpha = validate_alpha(state.alpha)
        self.alpha = alpha
        if state.initialized:
            self.value = float(state.value)
            self.initialized = True
        else:
            self.reset()

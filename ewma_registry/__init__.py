"""Handle-based registry of exponentially-weighted moving average accumulators."""

from ewma_registry.accumulators import AccumulatorHandle, AccumulatorRegistry, StateText

__all__ = ["AccumulatorHandle", "AccumulatorRegistry", "StateText"]

"""Pydantic schemas for accumulator state and HTTP payloads."""

from __future__ import annotations

import json

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AccumulatorState(BaseModel):
    """External JSON view of one accumulator.

    Field order is fixed (handle, alpha, value, initialized) and numbers use
    the shortest round-trip float representation, so a given state always
    renders to the same text.
    """

    model_config = ConfigDict(strict=True)

    handle: int | None = None
    alpha: float = Field(..., allow_inf_nan=False)
    value: float = Field(default=0.0, allow_inf_nan=False)
    initialized: bool = Field(validation_alias=AliasChoices("initialized", "is_init"))

    def to_json(self) -> str:
        """Render compact JSON; raises ``ValueError`` for non-finite numbers."""

        return json.dumps(self.model_dump(), separators=(",", ":"), allow_nan=False)


class CreateAccumulatorRequest(BaseModel):
    alpha: float


class UpdateRequest(BaseModel):
    x: float = Field(..., allow_inf_nan=False)


class AlphaRequest(BaseModel):
    alpha: float


class RestoreStateRequest(BaseModel):
    """Payload carrying a JSON state document produced by ``serialize_state``."""

    state: str = Field(..., min_length=2)


class HandleResponse(BaseModel):
    handle: int


class HandleListResponse(BaseModel):
    handles: list[int]
    count: int


class AccumulatorValueResponse(BaseModel):
    handle: int
    value: float
    initialized: bool


class SerializedStateResponse(BaseModel):
    """State text plus the buffer id the caller must release."""

    buffer_id: int
    state: str


class OperationResponse(BaseModel):
    handle: int
    applied: bool = True

# Path: robusteq/i0_core/types_definitions.py
from pydantic import BaseModel, ConfigDict, Field


class EqualizationParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    alpha: float = Field(default=0.1, gt=0, allow_inf_nan=False)
    tau: float = Field(default=10.0, gt=0, allow_inf_nan=False)


class EqualizationError(ValueError):
    """Base error for numerically degenerate equalization input."""


class DegenerateMaskError(EqualizationError):
    pass


class DegenerateScaleError(EqualizationError):
    pass

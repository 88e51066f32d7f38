"""
Configuration for the heuristic cutout service.

Environment variables are centralized here so the pixel stages only ever see
an immutable `PipelineConfig`. Every threshold the segmentation uses is a
field on that record; the defaults are the empirically tuned constants.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseModel):
    """Thresholds and weights for one segmentation run."""

    model_config = ConfigDict(frozen=True)

    # Border sampler
    border_sample_stride: int = Field(5, ge=1)

    # Background score estimator (additive, uncapped)
    color_distance_cutoff: float = 40.0
    color_match_weight: float = 0.3
    brightness_cutoff: float = 200.0
    brightness_weight: float = 0.4
    saturation_cutoff: float = 0.15
    saturation_weight: float = 0.3
    texture_radius: int = Field(3, ge=1)
    texture_variance_cutoff: float = 8.0
    texture_weight: float = 0.2
    edge_proximity_cutoff: int = Field(10, ge=0)
    edge_proximity_weight: float = 0.3
    background_threshold: float = 0.6

    # Morphological refiner, counts over a 3x3 window including the centre
    erosion_min_neighbors: int = Field(5, ge=0, le=9)
    dilation_min_neighbors: int = Field(6, ge=0, le=9)
    erosion_passes: int = Field(1, ge=0)
    dilation_passes: int = Field(1, ge=0)

    # Edge feathering
    feather_radius: int = Field(3, ge=1)
    feather_alpha_scale: float = Field(0.3, ge=0.0, le=1.0)

    # Row bands scored concurrently; 1 keeps everything on the calling thread
    score_workers: int = Field(1, ge=1)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Segmentation tunables (mirrors PipelineConfig)
    border_sample_stride: int = 5
    color_distance_cutoff: float = 40.0
    color_match_weight: float = 0.3
    brightness_cutoff: float = 200.0
    brightness_weight: float = 0.4
    saturation_cutoff: float = 0.15
    saturation_weight: float = 0.3
    texture_radius: int = 3
    texture_variance_cutoff: float = 8.0
    texture_weight: float = 0.2
    edge_proximity_cutoff: int = 10
    edge_proximity_weight: float = 0.3
    background_threshold: float = 0.6
    erosion_min_neighbors: int = 5
    dilation_min_neighbors: int = 6
    erosion_passes: int = 1
    dilation_passes: int = 1
    feather_radius: int = 3
    feather_alpha_scale: float = 0.3
    score_workers: int = 1

    # Guards
    pipeline_timeout_seconds: Optional[float] = None

    # API
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    # Debugging
    debug: bool = False
    debug_output_dir: Path = Path("/tmp/cutout_debug")

    @field_validator("pipeline_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("PIPELINE_TIMEOUT_SECONDS must be positive when set")
        return v

    @model_validator(mode="after")
    def validate_pipeline_fields(self) -> "Settings":
        # Surface bad tunables at startup instead of on the first request.
        pipeline_config_from_settings(self)
        return self


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def pipeline_config_from_settings(settings: Optional[Settings] = None) -> PipelineConfig:
    """Build the immutable pipeline record from environment settings."""
    settings = settings or get_settings()
    values = {name: getattr(settings, name) for name in PipelineConfig.model_fields}
    return PipelineConfig(**values)

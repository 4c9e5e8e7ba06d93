"""Pydantic settings for resource engine behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.relata_shared.config import RelataSettings, resolve_component_settings
from services.state.resource_engine.definitions import ReturnFullRecordPolicy

SERVICE_COMPONENT_ID = "service_resource_engine"


class ResourceEngineSettings(BaseModel):
    """Engine-wide defaults; resource definitions may override some of them."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_page_size: int = Field(default=20, gt=0)
    max_page_size: int = Field(default=100, gt=0)
    include_depth_limit: int = Field(default=3, gt=0)
    return_full_record: ReturnFullRecordPolicy = Field(default_factory=ReturnFullRecordPolicy)
    load_record_on_put: bool = False

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "ResourceEngineSettings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


def resolve_resource_engine_settings(settings: RelataSettings) -> ResourceEngineSettings:
    """Resolve engine settings from ``components.service.resource_engine``."""
    return resolve_component_settings(
        settings=settings,
        component_id=SERVICE_COMPONENT_ID,
        model=ResourceEngineSettings,
    )

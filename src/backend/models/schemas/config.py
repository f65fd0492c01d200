"""
Configuration API schemas.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ModelConfigItem(BaseModel):
    """A selectable model."""

    value: str
    label: str
    description: str = ""
    isDefault: bool = False
    providerOptions: dict[str, Any] = Field(default_factory=dict)


class ConfigResponse(BaseModel):
    """Application configuration for clients."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "models": [{"value": "gpt-4.1-mini", "label": "GPT-4.1 mini", "isDefault": True}],
                "default_model": "gpt-4.1-mini",
                "max_steps": 20,
                "default_system_prompt": "You are a helpful assistant...",
                "version": "1.0.0",
            }
        }
    )

    models: list[ModelConfigItem]
    default_model: str
    max_steps: int
    default_system_prompt: str
    version: str

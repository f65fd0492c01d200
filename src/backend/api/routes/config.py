"""
Configuration endpoint.

Provides the selectable models and chat defaults for clients.
"""

from __future__ import annotations

from fastapi import APIRouter

from api.dependencies import AppSettings
from core.constants import MODEL_CONFIGS
from core.prompts import build_default_system_prompt
from models.schemas.config import ConfigResponse, ModelConfigItem

router = APIRouter()


@router.get(
    "/config",
    response_model=ConfigResponse,
    summary="Get configuration",
    description="Available models, the default model, the step limit and the default system prompt.",
)
async def get_config(settings: AppSettings) -> ConfigResponse:
    """Get application configuration for clients."""
    models = [
        ModelConfigItem(
            value=config.id,
            label=config.display_name,
            description=config.description,
            isDefault=(config.id == settings.default_model),
            providerOptions=config.provider_options or {},
        )
        for config in MODEL_CONFIGS
    ]
    return ConfigResponse(
        models=models,
        default_model=settings.default_model,
        max_steps=settings.max_steps,
        default_system_prompt=build_default_system_prompt(),
        version=settings.app_version,
    )

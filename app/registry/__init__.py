"""
Registry module: moderation model keys and provider configuration.

Public API:
- ProviderName: Enum for classification providers
- Category: Well-known normalized categories
- LabelRule: (substring, category) normalization rule
- ModelConfig: Pydantic model for a model key's configuration
- ModelRegistry: Central registry class
- get_model_registry: Singleton accessor function
"""

from app.registry.models import (
    Category,
    LabelRule,
    ModelConfig,
    ModelRegistry,
    ProviderName,
    OPENAI_LABEL_RULES,
    UNITARY_LABEL_RULES,
    get_model_registry,
)

__all__ = [
    "Category",
    "LabelRule",
    "ModelConfig",
    "ModelRegistry",
    "ProviderName",
    "OPENAI_LABEL_RULES",
    "UNITARY_LABEL_RULES",
    "get_model_registry",
]

"""
Model Registry

Maps public model keys (what callers put in the "model" request field) to a
provider configuration:
- english-basic: Hugging Face Inference text classification with
  unitary/multilingual-toxic-xlm-roberta (default threshold 0.8)
- openai-omni: OpenAI moderation endpoint (default threshold 0.5)

Each entry also carries the ordered label rules used to fold the backend's
raw labels into normalized categories. New backends are onboarded by
registering a ModelConfig with their own rules.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from app.config import get_settings


class ProviderName(str, Enum):
    """Supported classification providers."""

    UNITARY = "unitary"
    OPENAI = "openai"


class Category(str, Enum):
    """Well-known normalized categories. The category set is open-ended."""

    TOXICITY = "toxicity"
    INSULT = "insult"
    IDENTITY_ATTACK = "identity_attack"
    THREAT = "threat"
    OBSCENE = "obscene"
    SEXUAL = "sexual"
    SELF_HARM = "self_harm"
    ILLICIT = "illicit"


class LabelRule(BaseModel):
    """A raw label containing `substring` (case-insensitive) maps to `category`."""

    substring: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)

    @field_validator("substring")
    @classmethod
    def lower_substring(cls, v: str) -> str:
        return v.lower()


def _rules(*pairs: tuple[str, Category]) -> list[LabelRule]:
    return [LabelRule(substring=s, category=c.value) for s, c in pairs]


UNITARY_LABEL_RULES: list[LabelRule] = _rules(
    ("tox", Category.TOXICITY),
    ("insult", Category.INSULT),
    ("identity", Category.IDENTITY_ATTACK),
    ("id_hate", Category.IDENTITY_ATTACK),
    ("threat", Category.THREAT),
    ("obscene", Category.OBSCENE),
    ("curse", Category.OBSCENE),
    ("sexual", Category.SEXUAL),
)

# OpenAI labels look like "harassment/threatening"; threat variants must
# match before their parent category.
OPENAI_LABEL_RULES: list[LabelRule] = _rules(
    ("threatening", Category.THREAT),
    ("violence", Category.THREAT),
    ("harassment", Category.INSULT),
    ("hate", Category.IDENTITY_ATTACK),
    ("sexual", Category.SEXUAL),
    ("self-harm", Category.SELF_HARM),
    ("self_harm", Category.SELF_HARM),
    ("illicit", Category.ILLICIT),
)


class ModelConfig(BaseModel):
    """
    Complete configuration for a public model key.

    Holds all information needed to:
    1. Invoke the right classification backend with the right model
    2. Normalize the backend's labels into categories
    3. Decide using the model's default threshold
    """

    model_key: str = Field(..., description="Public key used in requests")

    display_name: str = Field(..., description="Human-readable model name")

    provider: ProviderName = Field(..., description="Classification provider")

    provider_model: str = Field(..., description="Backend model identifier")

    default_threshold: float = Field(
        ..., ge=0.0, le=1.0, description="Score at or above which content is flagged"
    )

    label_rules: list[LabelRule] = Field(
        default_factory=list,
        description="Ordered (substring, category) rules; first match wins",
    )


class ModelRegistry:
    """
    Central registry of moderation model keys.

    Attributes:
        _models: Dictionary mapping model keys to their configuration
    """

    def __init__(self, models: list[ModelConfig] | None = None) -> None:
        self._models: dict[str, ModelConfig] = {}
        if models is None:
            self._initialize_models()
        else:
            for model in models:
                self.register(model)

    def _initialize_models(self) -> None:
        """Register the built-in model keys."""
        settings = get_settings()

        self.register(
            ModelConfig(
                model_key="english-basic",
                display_name="Unitary multilingual toxicity (XLM-RoBERTa)",
                provider=ProviderName.UNITARY,
                provider_model=settings.hf_model_id,
                default_threshold=0.8,
                label_rules=UNITARY_LABEL_RULES,
            )
        )

        self.register(
            ModelConfig(
                model_key="openai-omni",
                display_name="OpenAI omni moderation",
                provider=ProviderName.OPENAI,
                provider_model=settings.openai_moderation_model,
                default_threshold=0.5,
                label_rules=OPENAI_LABEL_RULES,
            )
        )

    def register(self, model: ModelConfig) -> None:
        """Register or replace a model key."""
        self._models[model.model_key] = model

    def get_model(self, model_key: str) -> ModelConfig | None:
        """
        Retrieve a model configuration by key.

        Args:
            model_key: The public model key

        Returns:
            ModelConfig if found, None otherwise
        """
        return self._models.get(model_key)

    def list_models(self) -> list[ModelConfig]:
        return list(self._models.values())

    def get_model_keys(self) -> list[str]:
        return list(self._models.keys())


_registry_instance: ModelRegistry | None = None


def get_model_registry() -> ModelRegistry:
    """
    Get the global model registry instance.

    Uses lazy initialization to create the registry only when needed.

    Returns:
        The singleton ModelRegistry instance
    """
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = ModelRegistry()
    return _registry_instance

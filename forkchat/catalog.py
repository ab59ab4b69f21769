"""Model catalog loaded from model_catalog.yml."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

CATALOG_PATH = Path(__file__).parent / "model_catalog.yml"


class ModelOption(BaseModel):
    id: str
    name: str
    provider: str


class ModelCatalog(BaseModel):
    default_model: str = "openrouter/auto"
    models: list[ModelOption] = Field(default_factory=list)

    def available(self, providers: set[str]) -> list[ModelOption]:
        """Options whose provider is registered."""
        return [m for m in self.models if m.provider in providers]


def load_catalog(path: Path = CATALOG_PATH) -> ModelCatalog:
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return ModelCatalog.model_validate(raw)

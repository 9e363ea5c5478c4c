"""Engine registration metadata."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Category(str, Enum):
    """Execution category. Declaration order is phase order."""

    FOUNDATION = "foundation"
    CORE = "core"
    SYNTHESIS = "synthesis"
    EXECUTION = "execution"

    @property
    def rank(self) -> int:
        return _CATEGORY_ORDER.index(self)


_CATEGORY_ORDER = list(Category)

# Pillar number -> category when the category is not given explicitly
PILLAR_CATEGORIES: dict[int, Category] = {
    1: Category.FOUNDATION,
    2: Category.CORE,
    3: Category.SYNTHESIS,
}


class EngineMetadata(BaseModel):
    """Static registration record for an engine.

    ``dependencies`` is advisory: the registry stores it, the orchestrator
    uses it to order phases. ``indicators`` is the engine's declared
    interest set for realtime sample routing.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    pillar: int = Field(default=1, ge=1, le=4)
    priority: int = 50
    category: Category | None = None
    dependencies: frozenset[str] = frozenset()
    indicators: frozenset[str] = frozenset()
    description: str = ""

    @model_validator(mode="after")
    def _derive_category(self):
        if self.category is None:
            object.__setattr__(
                self, "category", PILLAR_CATEGORIES.get(self.pillar, Category.EXECUTION)
            )
        if self.id in self.dependencies:
            raise ValueError(f"Engine '{self.id}' cannot depend on itself")
        return self

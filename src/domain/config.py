"""
Pydantic schemas for project configuration.

A project declares the AI sources whose answers are scanned (with their raw
weights) and the entity categories it tracks. Every category carries an
explicit normalization kind:

- 'open': influence is rescaled so the top entity in the scope scores 1.0
- 'closed': the category partitions a fixed set (link types), so influence
  is rescaled into a market-share distribution summing to 1.0
"""

from pydantic import BaseModel, Field
from typing import Dict, Iterable, List, Literal, Optional, Union

from settings import DEFAULT_SOURCE_WEIGHT
from domain.errors import ConfigurationGapError


OPEN = 'open'
CLOSED = 'closed'


class SourceConfig(BaseModel):
    """An AI model/provider whose answers are scanned for mentions."""

    id: str = Field(min_length=1, description="Source identifier, e.g. 'openai_gpt-4o'")
    name: Optional[str] = Field(default=None, description="Display name")
    weight: float = Field(
        default=DEFAULT_SOURCE_WEIGHT,
        ge=0.0,
        description="Raw, non-negative weight before normalization"
    )


class CategoryConfig(BaseModel):
    """An entity category and the influence normalization rule it uses."""

    name: str = Field(min_length=1)
    kind: Literal['open', 'closed'] = Field(
        description="'open' = max-normalized influence, 'closed' = sum-normalized influence"
    )
    derived_from: Optional[str] = Field(
        default=None,
        description="Category this one is built from by grouping (e.g. 'links')"
    )


DEFAULT_CATEGORIES = [
    CategoryConfig(name='products', kind=OPEN),
    CategoryConfig(name='organizations', kind=OPEN),
    CategoryConfig(name='persons', kind=OPEN),
    CategoryConfig(name='keywords', kind=OPEN),
    CategoryConfig(name='places', kind=OPEN),
    CategoryConfig(name='events', kind=OPEN),
    CategoryConfig(name='links', kind=OPEN),
    CategoryConfig(name='linkTypes', kind=CLOSED, derived_from='links'),
    CategoryConfig(name='linkDomains', kind=OPEN, derived_from='links'),
]


class CategoryRegistry:
    """Lookup of category name -> normalization kind."""

    def __init__(self, categories: Optional[Iterable[Union[CategoryConfig, dict]]] = None):
        if categories is None:
            categories = DEFAULT_CATEGORIES
        self._categories: Dict[str, CategoryConfig] = {}
        for category in categories:
            if not isinstance(category, CategoryConfig):
                category = CategoryConfig.model_validate(category)
            self._categories[category.name] = category

    def __contains__(self, name: str) -> bool:
        return name in self._categories

    @property
    def names(self) -> List[str]:
        return list(self._categories.keys())

    @property
    def base_names(self) -> List[str]:
        """Categories supplied by the extractor (not derived by grouping)."""
        return [c.name for c in self._categories.values() if not c.derived_from]

    def get(self, name: str) -> CategoryConfig:
        category = self._categories.get(name)
        if category is None:
            raise ConfigurationGapError(
                f"Category '{name}' has no open/closed classification",
                category=name
            )
        return category

    def kind_of(self, name: str) -> str:
        return self.get(name).kind

    def is_closed(self, name: str) -> bool:
        return self.kind_of(name) == CLOSED


class ProjectConfig(BaseModel):
    """Configuration file for one tracked project."""

    name: str = Field(min_length=1)
    sources: List[SourceConfig] = Field(default_factory=list)
    categories: List[CategoryConfig] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    link_type_names: Dict[str, str] = Field(
        default_factory=dict,
        description="Link type code -> display name for the linkTypes category"
    )
    questions: Dict[str, str] = Field(
        default_factory=dict,
        description="Question id -> question text (used to tag rollup excerpts)"
    )

    @property
    def registry(self) -> CategoryRegistry:
        return CategoryRegistry(self.categories)

    @property
    def source_ids(self) -> List[str]:
        return [source.id for source in self.sources]

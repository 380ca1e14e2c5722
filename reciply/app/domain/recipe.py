# reciply/app/domain/recipe.py
"""
Recipe structures shared by the AI stage, the raw extraction cache and the
persisted Recipe.

Storage uses plain dicts (``to_dict``/``from_dict``) so the same shape can be
kept in a jsonb column or in memory.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

NUTRIENT_KEYS = ("calories", "protein", "carbs", "fat", "fiber", "sugar", "sodium")


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [text for text in (_opt_str(item) for item in value) if text]


@dataclass
class Ingredient:
    name: str
    quantity: Optional[str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ingredient":
        return cls(
            name=str(data.get("name") or ""),
            quantity=_opt_str(data.get("quantity")),
            unit=_opt_str(data.get("unit")),
            notes=_opt_str(data.get("notes")),
            category=_opt_str(data.get("category")),
        )


@dataclass
class Instruction:
    step_number: int
    description: str
    duration: Optional[str] = None
    technique: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Instruction":
        return cls(
            step_number=int(data.get("step_number") or 0),
            description=str(data.get("description") or ""),
            duration=_opt_str(data.get("duration")),
            technique=_opt_str(data.get("technique")),
        )


@dataclass
class NutritionFacts:
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    sugar: Optional[float] = None
    sodium: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, key) is None for key in NUTRIENT_KEYS)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["NutritionFacts"]:
        if not isinstance(data, dict):
            return None
        facts = cls(**{key: _opt_float(data.get(key)) for key in NUTRIENT_KEYS})
        return None if facts.is_empty else facts


@dataclass
class NutritionInfo:
    per_serving: Optional[NutritionFacts] = None
    per_100g: Optional[NutritionFacts] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["NutritionInfo"]:
        if not isinstance(data, dict):
            return None
        info = cls(
            per_serving=NutritionFacts.from_dict(data.get("per_serving")),
            per_100g=NutritionFacts.from_dict(data.get("per_100g")),
        )
        if info.per_serving is None and info.per_100g is None:
            return None
        return info


@dataclass
class RecipeDraft:
    """Structured recipe as produced by the AI stage, before it belongs to a user."""
    title: str
    description: Optional[str] = None
    cuisine_type: Optional[str] = None
    difficulty: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    servings: Optional[str] = None
    calories_per_serving: Optional[float] = None
    nutrition: Optional[NutritionInfo] = None
    dietary_tags: list[str] = field(default_factory=list)
    meal_type: Optional[str] = None
    ingredients: list[Ingredient] = field(default_factory=list)
    instructions: list[Instruction] = field(default_factory=list)
    equipment: list[str] = field(default_factory=list)
    tips_and_notes: list[str] = field(default_factory=list)
    extraction_notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeDraft":
        return cls(
            title=str(data.get("title") or "Untitled Recipe"),
            description=_opt_str(data.get("description")),
            cuisine_type=_opt_str(data.get("cuisine_type")),
            difficulty=_opt_str(data.get("difficulty")),
            prep_time=_opt_str(data.get("prep_time")),
            cook_time=_opt_str(data.get("cook_time")),
            total_time=_opt_str(data.get("total_time")),
            servings=_opt_str(data.get("servings")),
            calories_per_serving=_opt_float(data.get("calories_per_serving")),
            nutrition=NutritionInfo.from_dict(data.get("nutrition")),
            dietary_tags=_str_list(data.get("dietary_tags")),
            meal_type=_opt_str(data.get("meal_type")),
            ingredients=[
                Ingredient.from_dict(item)
                for item in data.get("ingredients") or []
                if isinstance(item, dict)
            ],
            instructions=[
                Instruction.from_dict(item)
                for item in data.get("instructions") or []
                if isinstance(item, dict)
            ],
            equipment=_str_list(data.get("equipment")),
            tips_and_notes=_str_list(data.get("tips_and_notes")),
            extraction_notes=_opt_str(data.get("extraction_notes")),
        )


@dataclass
class RecipeSource:
    url: str
    platform: str
    author_username: Optional[str] = None
    author_display_name: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeSource":
        return cls(
            url=str(data.get("url") or ""),
            platform=str(data.get("platform") or "other"),
            author_username=_opt_str(data.get("author_username")),
            author_display_name=_opt_str(data.get("author_display_name")),
            thumbnail_url=_opt_str(data.get("thumbnail_url")),
        )


@dataclass
class ExtractionMetadata:
    extracted_at: datetime
    confidence_score: float
    detected_language: str = "unknown"
    target_language: str = "original"


@dataclass
class Recipe:
    """A user's recipe created from one successful extraction job."""
    id: str
    user_id: str
    draft: RecipeDraft
    source: RecipeSource
    extraction_metadata: ExtractionMetadata
    created_at: Optional[datetime] = None

    @property
    def title(self) -> str:
        return self.draft.title

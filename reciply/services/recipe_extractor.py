from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol

from reciply.app.domain.models import (
    DETECTED_LANGUAGES,
    ExtractionResult,
    TargetLanguage,
    Transcript,
    VideoMetadata,
)
from reciply.app.domain.recipe import RecipeDraft

from .errors import AIExtractionError, AIResponseParseError, NotARecipeError
from .prompts import build_system_prompt

logger = logging.getLogger(__name__)

MIN_SOURCE_CHARS = 50
DEFAULT_CONFIDENCE = 0.8
CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

_TOP_LEVEL_KEYS = {
    "title": "title",
    "description": "description",
    "cuisineType": "cuisine_type",
    "difficulty": "difficulty",
    "prepTime": "prep_time",
    "cookTime": "cook_time",
    "totalTime": "total_time",
    "servings": "servings",
    "caloriesPerServing": "calories_per_serving",
    "dietaryTags": "dietary_tags",
    "mealType": "meal_type",
    "equipment": "equipment",
    "tipsAndNotes": "tips_and_notes",
    "extractionNotes": "extraction_notes",
}


class JsonModel(Protocol):
    async def generate_json(self, user_prompt: str, system_instruction: str) -> str:
        ...


def _strip_code_fences(text: str) -> str:
    return CODE_FENCE_PATTERN.sub("", text.strip()).strip()


def _parse_json_object(text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as error:
        raise AIResponseParseError(f"Failed to parse AI response: {error}") from error
    if not isinstance(parsed, dict):
        raise AIResponseParseError("AI response is not a JSON object")
    return parsed


def _pick(data: dict[str, Any], camel: str, snake: str) -> Any:
    return data.get(camel, data.get(snake))


def _ingredients(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    items = []
    for index, item in enumerate(raw):
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue
        items.append({
            "name": str(item.get("name") or "").strip() or f"Ingredient {index + 1}",
            "quantity": item.get("quantity"),
            "unit": item.get("unit"),
            "notes": item.get("notes"),
            "category": item.get("category"),
        })
    return items


def _instructions(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    steps = []
    for item in raw:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        description = str(item.get("description") or "").strip()
        if not description:
            continue
        steps.append({
            "step_number": len(steps) + 1,
            "description": description,
            "duration": item.get("duration"),
            "technique": item.get("technique"),
        })
    return steps


def _nutrition(raw: Any) -> Optional[dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    return {
        "per_serving": _pick(raw, "perServing", "per_serving"),
        "per_100g": _pick(raw, "per100g", "per_100g"),
    }


def draft_from_model_output(data: dict[str, Any]) -> RecipeDraft:
    """Map the model's camelCase document onto a RecipeDraft."""
    normalized: dict[str, Any] = {
        snake: _pick(data, camel, snake) for camel, snake in _TOP_LEVEL_KEYS.items()
    }
    normalized["ingredients"] = _ingredients(data.get("ingredients"))
    normalized["instructions"] = _instructions(data.get("instructions"))
    normalized["nutrition"] = _nutrition(data.get("nutrition"))
    return RecipeDraft.from_dict(normalized)


def _confidence(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, confidence))


def _detected_language(value: Any, transcript: Transcript) -> str:
    for candidate in (value, transcript.language):
        if isinstance(candidate, str):
            code = candidate.strip().lower().split("-")[0].split("_")[0]
            if code in DETECTED_LANGUAGES:
                return code
    return "unknown"


def _build_user_prompt(transcript: Transcript, metadata: Optional[VideoMetadata]) -> str:
    parts = [f"Extract the recipe from this video transcript:\n\n{transcript.text.strip()}"]
    if metadata and metadata.title:
        parts.append(f"Post title:\n\n{metadata.title}")
    if metadata and metadata.description:
        parts.append(f"Post description/caption:\n\n{metadata.description}")
    return "\n\n---\n\n".join(parts)


class RecipeExtractor:
    """
    AI stage: transcript + metadata -> RecipeDraft, detected language and
    confidence.
    """

    def __init__(self, model: Optional[JsonModel], min_confidence: float = 0.3):
        self._model = model
        self.min_confidence = min_confidence

    async def extract(
        self,
        transcript: Transcript,
        metadata: Optional[VideoMetadata],
        target_language: TargetLanguage = TargetLanguage.ORIGINAL,
    ) -> ExtractionResult:
        if self._model is None:
            raise AIExtractionError("AI model is not configured (GEMINI_API_KEY missing)")

        description = metadata.description if metadata and metadata.description else ""
        if len(transcript.text.strip()) + len(description.strip()) < MIN_SOURCE_CHARS:
            raise NotARecipeError("Transcript is too short to extract a recipe")

        system_prompt = build_system_prompt(TargetLanguage(target_language) == TargetLanguage.ENGLISH)
        raw = await self._model.generate_json(_build_user_prompt(transcript, metadata), system_prompt)
        data = _parse_json_object(raw)

        confidence = _confidence(data.get("confidence"))
        title = str(data.get("title") or "").strip()
        if not title:
            raise NotARecipeError(confidence=confidence)
        if confidence < self.min_confidence:
            raise NotARecipeError(
                f"Confidence {confidence:.2f} below threshold {self.min_confidence:.2f}",
                confidence=confidence,
            )

        draft = draft_from_model_output(data)
        if not draft.ingredients and not draft.instructions:
            raise NotARecipeError("No ingredients or steps found", confidence=confidence)

        detected_language = _detected_language(data.get("detectedLanguage"), transcript)
        logger.info(
            "extractor.ok title=%r confidence=%.2f language=%s ingredients=%d steps=%d",
            draft.title, confidence, detected_language, len(draft.ingredients), len(draft.instructions),
        )
        return ExtractionResult(draft=draft, detected_language=detected_language, confidence=confidence)

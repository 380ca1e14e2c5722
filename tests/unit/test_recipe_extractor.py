from __future__ import annotations

import asyncio
import json

import pytest

from reciply.app.domain.models import TargetLanguage, Transcript, VideoMetadata
from reciply.services.errors import AIExtractionError, AIResponseParseError, NotARecipeError
from reciply.services.prompts import build_system_prompt
from reciply.services.recipe_extractor import RecipeExtractor, draft_from_model_output

TRANSCRIPT = Transcript(
    text="Today we make a quick tomato pasta. Boil 200 grams of spaghetti, fry garlic in olive oil, add tomatoes.",
    language="en",
)

MODEL_OUTPUT = {
    "title": "Quick Tomato Pasta",
    "description": "Weeknight pasta",
    "cuisineType": "Italian",
    "difficulty": "easy",
    "servings": "2",
    "caloriesPerServing": 520,
    "dietaryTags": ["vegetarian"],
    "ingredients": [
        {"name": "spaghetti", "quantity": "200", "unit": "g"},
        {"name": "garlic", "quantity": None, "notes": "to taste"},
        "tomatoes",
    ],
    "instructions": [
        {"description": "Boil the spaghetti", "duration": "10 min"},
        "Fry the garlic",
        {"description": ""},
    ],
    "nutrition": {"perServing": {"calories": 520, "protein": "18"}, "per100g": {}},
    "detectedLanguage": "en",
    "confidence": 0.92,
}


class FakeModel:
    def __init__(self, response: str) -> None:
        self.response = response
        self.calls: list[tuple[str, str]] = []

    async def generate_json(self, user_prompt: str, system_instruction: str) -> str:
        self.calls.append((user_prompt, system_instruction))
        return self.response


def extract(model: FakeModel | None, transcript: Transcript = TRANSCRIPT, metadata: VideoMetadata | None = None,
            target_language: TargetLanguage = TargetLanguage.ORIGINAL, min_confidence: float = 0.3):
    extractor = RecipeExtractor(model, min_confidence=min_confidence)
    return asyncio.run(extractor.extract(transcript, metadata, target_language))


class TestRecipeExtractor:
    def test_successful_extraction(self) -> None:
        model = FakeModel(json.dumps(MODEL_OUTPUT))

        result = extract(model, metadata=VideoMetadata(title="Pasta!", description="Ingredients in bio"))

        assert result.confidence == pytest.approx(0.92)
        assert result.detected_language == "en"
        assert result.draft.title == "Quick Tomato Pasta"
        assert result.draft.cuisine_type == "Italian"
        assert result.draft.calories_per_serving == 520.0
        assert [item.name for item in result.draft.ingredients] == ["spaghetti", "garlic", "tomatoes"]
        assert result.draft.ingredients[1].quantity is None
        assert [step.step_number for step in result.draft.instructions] == [1, 2]
        assert result.draft.nutrition.per_serving.protein == 18.0
        assert result.draft.nutrition.per_100g is None

        user_prompt, _ = model.calls[0]
        assert "Ingredients in bio" in user_prompt
        assert TRANSCRIPT.text in user_prompt

    def test_code_fenced_response(self) -> None:
        model = FakeModel("```json\n" + json.dumps(MODEL_OUTPUT) + "\n```")

        assert extract(model).draft.title == "Quick Tomato Pasta"

    def test_english_target_uses_translation_prompt(self) -> None:
        model = FakeModel(json.dumps(MODEL_OUTPUT))

        extract(model, target_language=TargetLanguage.ENGLISH)

        _, system_prompt = model.calls[0]
        assert system_prompt == build_system_prompt(True)
        assert system_prompt != build_system_prompt(False)

    def test_missing_confidence_defaults(self) -> None:
        output = dict(MODEL_OUTPUT)
        output.pop("confidence")

        assert extract(FakeModel(json.dumps(output))).confidence == pytest.approx(0.8)

    def test_unknown_language_falls_back_to_transcript(self) -> None:
        output = dict(MODEL_OUTPUT, detectedLanguage="xx")
        transcript = Transcript(text=TRANSCRIPT.text, language="pt-BR")

        assert extract(FakeModel(json.dumps(output)), transcript=transcript).detected_language == "pt"

    def test_language_unknown_when_nothing_matches(self) -> None:
        output = dict(MODEL_OUTPUT)
        output.pop("detectedLanguage")
        transcript = Transcript(text=TRANSCRIPT.text, language=None)

        assert extract(FakeModel(json.dumps(output)), transcript=transcript).detected_language == "unknown"


class TestNotARecipe:
    def test_short_source_skips_model(self) -> None:
        model = FakeModel(json.dumps(MODEL_OUTPUT))

        with pytest.raises(NotARecipeError):
            extract(model, transcript=Transcript(text="hi!"))

        assert model.calls == []

    def test_description_counts_towards_source(self) -> None:
        model = FakeModel(json.dumps(MODEL_OUTPUT))
        metadata = VideoMetadata(description="Ingredients: 2 eggs, 100 g flour, 200 ml milk, pinch of salt")

        result = extract(model, transcript=Transcript(text="hi!"), metadata=metadata)

        assert result.draft.title == "Quick Tomato Pasta"

    def test_low_confidence(self) -> None:
        output = dict(MODEL_OUTPUT, confidence=0.1)

        with pytest.raises(NotARecipeError) as exc_info:
            extract(FakeModel(json.dumps(output)))

        assert exc_info.value.confidence == pytest.approx(0.1)

    def test_missing_title(self) -> None:
        output = dict(MODEL_OUTPUT, title="")

        with pytest.raises(NotARecipeError):
            extract(FakeModel(json.dumps(output)))

    def test_no_ingredients_or_steps(self) -> None:
        output = dict(MODEL_OUTPUT, ingredients=[], instructions=[])

        with pytest.raises(NotARecipeError):
            extract(FakeModel(json.dumps(output)))


class TestModelFailures:
    def test_invalid_json(self) -> None:
        with pytest.raises(AIResponseParseError):
            extract(FakeModel("not json at all"))

    def test_non_object_json(self) -> None:
        with pytest.raises(AIResponseParseError):
            extract(FakeModel("[1, 2, 3]"))

    def test_no_model_configured(self) -> None:
        with pytest.raises(AIExtractionError):
            extract(None)


class TestDraftFromModelOutput:
    def test_accepts_snake_case_keys(self) -> None:
        draft = draft_from_model_output({
            "title": "Soup",
            "prep_time": "5 min",
            "tips_and_notes": ["Season at the end"],
            "ingredients": [{"name": "water"}],
        })

        assert draft.prep_time == "5 min"
        assert draft.tips_and_notes == ["Season at the end"]
        assert draft.ingredients[0].name == "water"

    def test_unnamed_ingredient_gets_placeholder(self) -> None:
        draft = draft_from_model_output({"title": "Soup", "ingredients": [{"quantity": "1"}]})

        assert draft.ingredients[0].name == "Ingredient 1"

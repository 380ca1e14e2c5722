from __future__ import annotations

from reciply.app.domain.models import DETECTED_LANGUAGES

RECIPE_EXTRACTION_SYSTEM_PROMPT = """You are a recipe extraction system. Given a transcript from a cooking video (and optionally the post title and description/caption), extract the recipe information.

RULES:
1. Extract instructions that ARE verbally described - if someone says "slice the apple, add sugar, bake it", those ARE instructions to extract
2. DO NOT invent specific quantities/measurements not mentioned - if they say "add sugar" without an amount, quantity should be null
3. DO NOT add extra steps beyond what was described - stick to what was actually said
4. DO NOT infer cooking times, temperatures, or serving sizes unless explicitly stated
5. If the content is not a recipe at all, return a confidence of 0 and explain why in extractionNotes

Extract into this JSON structure:
{
  "title": "Recipe name (from transcript, or brief description based on the dish)",
  "description": "Brief description if mentioned or can be derived from context",
  "cuisineType": "Only if mentioned or clearly evident",
  "difficulty": "Only if mentioned",
  "prepTime": "Only if explicitly mentioned",
  "cookTime": "Only if explicitly mentioned",
  "totalTime": "Only if explicitly mentioned",
  "servings": "Only if explicitly mentioned",
  "caloriesPerServing": "Number, only if explicitly mentioned",
  "nutrition": {
    "perServing": {"calories": null, "protein": null, "carbs": null, "fat": null, "fiber": null, "sugar": null, "sodium": null},
    "per100g": {"calories": null, "protein": null, "carbs": null, "fat": null, "fiber": null, "sugar": null, "sodium": null}
  },
  "dietaryTags": ["Only tags explicitly mentioned or clearly evident (e.g., 'vegan' if all ingredients are plant-based)"],
  "mealType": "Only if mentioned or clearly evident (e.g., 'dessert' for a sweet dish)",
  "ingredients": [
    {
      "name": "ingredient name as mentioned",
      "quantity": "ONLY if explicitly stated (e.g., '2', '1/2'), otherwise null",
      "unit": "ONLY if explicitly stated (e.g., 'cups', 'tablespoons'), otherwise null",
      "notes": "preparation notes if mentioned (e.g., 'sliced into rings', 'room temperature')",
      "category": "optional grouping such as 'sauce' or 'dough'"
    }
  ],
  "instructions": [
    {
      "stepNumber": 1,
      "description": "Step based on what was verbally described - extract the actions mentioned",
      "duration": "Only if explicitly mentioned",
      "technique": "Optional cooking technique name"
    }
  ],
  "equipment": ["Equipment explicitly mentioned (e.g., 'oven', 'pan')"],
  "tipsAndNotes": ["Only tips explicitly shared"],
  "detectedLanguage": "ISO 639-1 code of the transcript language (one of: {language_codes}), or 'unknown'",
  "confidence": 0.0-1.0,
  "extractionNotes": "Note what information was missing (e.g., 'No quantities specified', 'Cooking temperature not mentioned')"
}

GUIDELINES:
- Extract instructions from verbal descriptions of actions (e.g., "slice, coat, bake" = real steps)
- The post description often contains ingredient lists or recipe details - use this information
- Leave quantity/unit as null when amounts aren't specified - don't guess "1 cup" or "2 tablespoons"
- Nutrition values are numbers in grams (calories in kcal, sodium in mg); leave null unless stated
- Set confidence based on how complete the information is (high if detailed, lower if sparse)
- Use extractionNotes to document what's missing so users know what to fill in

Return ONLY valid JSON."""

KEEP_LANGUAGE_INSTRUCTION = (
    "Write every text field in the same language as the transcript. Do not translate."
)
TRANSLATE_TO_ENGLISH_INSTRUCTION = (
    "Translate every text field (title, description, ingredient names and notes, "
    "instructions, equipment, tips and extraction notes) into English. "
    "detectedLanguage must still report the ORIGINAL transcript language."
)


def build_system_prompt(translate_to_english: bool) -> str:
    codes = ", ".join(code for code in DETECTED_LANGUAGES if code != "unknown")
    language_rule = TRANSLATE_TO_ENGLISH_INSTRUCTION if translate_to_english else KEEP_LANGUAGE_INSTRUCTION
    return RECIPE_EXTRACTION_SYSTEM_PROMPT.replace("{language_codes}", codes) + "\n\nLANGUAGE:\n" + language_rule

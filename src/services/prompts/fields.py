"""Prompt templates for generated devotional fields.

Templates use {placeholder} names from the generation context:
{theme}, {scriptural_basis}, {main_text}, {title}, {subtitle},
{description}, {preparation}, {final_message}, {image_prompt}.
Unknown placeholders render to an empty string.
"""

import re

from models.generation import FieldName, FieldSpec

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# Token budgets: the main text is long-form, everything else is short metadata
MAIN_TEXT_MAX_TOKENS = 2048
SHORT_FIELD_MAX_TOKENS = 512

MAIN_TEXT_TEMPLATE = """You are a pastor writing a short guided prayer to be read aloud.

THEME: {theme}
SCRIPTURAL BASIS: {scriptural_basis}

RULES:
- 200 to 300 words, written in the second person plural ("let us", "we").
- Ground the prayer in the scriptural basis without quoting long passages.
- Warm, contemplative tone. No headings, no lists, no markdown.
- Output only the prayer text."""

PREPARATION_TEMPLATE = """Write a two-sentence invitation that prepares the listener to pray.
It introduces this prayer without repeating it:

{main_text}

Output only the two sentences."""

FINAL_MESSAGE_TEMPLATE = """Write one closing sentence of encouragement for someone who just prayed this prayer on "{theme}":

{main_text}

Output only the sentence."""

TITLE_TEMPLATE = """Write a title of at most six words for this prayer on "{theme}" ({scriptural_basis}):

{main_text}

Output only the title, without quotes."""

SUBTITLE_TEMPLATE = """Write a subtitle of at most twelve words for this prayer:

{main_text}

Output only the subtitle, without quotes."""

DESCRIPTION_TEMPLATE = """Write a two-sentence description of this prayer for a content library.
Mention the theme "{theme}" and the passage {scriptural_basis}.

{main_text}

Output only the description."""

IMAGE_PROMPT_TEMPLATE = """Describe, in one paragraph of at most 60 words, a serene cover illustration for this prayer.
No text, no letters, no faces in close-up. Soft light, natural scenery.

{main_text}

Output only the description."""

# Default compile step for the image backend (the prompt itself plus nothing else)
IMAGE_GENERATE_TEMPLATE = "{image_prompt}"

DEFAULT_TEMPLATES = {
    FieldName.MAIN_TEXT: MAIN_TEXT_TEMPLATE,
    FieldName.PREPARATION: PREPARATION_TEMPLATE,
    FieldName.FINAL_MESSAGE: FINAL_MESSAGE_TEMPLATE,
    FieldName.TITLE: TITLE_TEMPLATE,
    FieldName.SUBTITLE: SUBTITLE_TEMPLATE,
    FieldName.DESCRIPTION: DESCRIPTION_TEMPLATE,
    FieldName.IMAGE_PROMPT: IMAGE_PROMPT_TEMPLATE,
}


def render_template(template: str, context: dict) -> str:
    """Substitute every {name} placeholder with context[name].

    Missing or non-string values substitute to an empty string.
    """

    def _replace(match: re.Match) -> str:
        value = context.get(match.group(1))
        return value if isinstance(value, str) else ""

    return PLACEHOLDER_PATTERN.sub(_replace, template or "")


def build_field_specs(overrides: dict[str, str] | None = None) -> dict[FieldName, FieldSpec]:
    """Build one FieldSpec per field, applying template overrides by field name.

    An override of "" disables that field (it renders empty and is skipped).
    """
    overrides = overrides or {}
    specs = {}
    for name in FieldName:
        template = overrides.get(name.value, DEFAULT_TEMPLATES[name])
        is_main = name == FieldName.MAIN_TEXT
        specs[name] = FieldSpec(
            name=name,
            template=template,
            required=is_main,
            max_tokens=MAIN_TEXT_MAX_TOKENS if is_main else SHORT_FIELD_MAX_TOKENS,
        )
    return specs

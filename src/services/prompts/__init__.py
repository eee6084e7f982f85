"""Prompts module - centralized prompt templates for the generation pipeline.

Re-exports the field templates and rendering helpers:
    from services.prompts import render_template, build_field_specs
"""

from services.prompts._base import clean_completion, strip_markdown_code_blocks
from services.prompts.fields import (
    DEFAULT_TEMPLATES,
    IMAGE_GENERATE_TEMPLATE,
    MAIN_TEXT_MAX_TOKENS,
    SHORT_FIELD_MAX_TOKENS,
    build_field_specs,
    render_template,
)

__all__ = [
    # Utilities
    "strip_markdown_code_blocks",
    "clean_completion",
    "render_template",
    "build_field_specs",
    # Templates
    "DEFAULT_TEMPLATES",
    "IMAGE_GENERATE_TEMPLATE",
    "MAIN_TEXT_MAX_TOKENS",
    "SHORT_FIELD_MAX_TOKENS",
]

"""Configuration loading and validation for vesper."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.logging import RichHandler

from models.generation import FieldName, FieldSpec
from services.prompts.fields import IMAGE_GENERATE_TEMPLATE, build_field_specs

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_PREFERRED_MODEL = "gemini-3-flash-preview"
DEFAULT_BASELINE_MODELS = [
    "gemini-3-flash-preview",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash",
]
DEFAULT_VOICE_ID = "7i7dgyCkKt4c16dLtwT3"


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    templates_file = os.getenv("FIELD_TEMPLATES_FILE")

    config = {
        # Text generation
        "gemini_api_key": os.getenv("GEMINI_API_KEY"),
        "gemini_model": os.getenv("GEMINI_MODEL", DEFAULT_PREFERRED_MODEL),
        "text_model_candidates": _as_list(os.getenv("TEXT_MODEL_CANDIDATES"))
        or list(DEFAULT_BASELINE_MODELS),
        "text_temperature": float(os.getenv("TEXT_TEMPERATURE", "1.0")),
        "field_templates_file": resolve_path(templates_file, "") if templates_file else None,
        # Speech synthesis
        "elevenlabs_api_key": os.getenv("ELEVENLABS_API_KEY"),
        "elevenlabs_model_id": os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2"),
        "default_voice_id": os.getenv("DEFAULT_VOICE_ID", DEFAULT_VOICE_ID),
        # Image synthesis
        "runware_api_key": os.getenv("RUNWARE_API_KEY"),
        "runware_model_id": os.getenv("RUNWARE_MODEL_ID", "runware:101@1"),
        "image_width": int(os.getenv("IMAGE_WIDTH", "1024")),
        "image_height": int(os.getenv("IMAGE_HEIGHT", "1024")),
        "image_generate_template": os.getenv("IMAGE_GENERATE_TEMPLATE", IMAGE_GENERATE_TEMPLATE),
        "image_prompt_min_chars": int(os.getenv("IMAGE_PROMPT_MIN_CHARS", "20")),
        # Durable object storage (Cloudflare R2)
        "r2_account_id": os.getenv("R2_ACCOUNT_ID"),
        "r2_access_key_id": os.getenv("R2_ACCESS_KEY_ID"),
        "r2_secret_access_key": os.getenv("R2_SECRET_ACCESS_KEY"),
        "r2_bucket_name": os.getenv("R2_BUCKET_NAME"),
        "r2_public_url": os.getenv("R2_PUBLIC_URL"),
        # Databases
        "content_db_path": resolve_path(os.getenv("CONTENT_DB_PATH"), "data/content.db"),
        "jobs_db_path": resolve_path(os.getenv("JOBS_DB_PATH"), "data/jobs.db"),
        # Batch settings
        "max_batch_items": int(os.getenv("MAX_BATCH_ITEMS", "30")),
        "batch_item_delay_seconds": float(os.getenv("BATCH_ITEM_DELAY_SECONDS", "0.4")),
        "batch_pause_poll_seconds": float(os.getenv("BATCH_PAUSE_POLL_SECONDS", "0.2")),
        "batch_circuit_breaker_threshold": int(
            os.getenv("BATCH_CIRCUIT_BREAKER_THRESHOLD", "0")
        ),
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": _as_bool(os.getenv("LOG_JSON")),
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    # Check required API keys
    if not config.get("gemini_api_key"):
        errors.append("GEMINI_API_KEY is required")
    if not config.get("elevenlabs_api_key"):
        errors.append("ELEVENLABS_API_KEY is required")

    if config.get("max_batch_items", 0) < 1:
        errors.append("MAX_BATCH_ITEMS must be at least 1")
    if config.get("batch_item_delay_seconds", 0) < 0:
        errors.append("BATCH_ITEM_DELAY_SECONDS cannot be negative")
    if config.get("batch_pause_poll_seconds", 0) <= 0:
        errors.append("BATCH_PAUSE_POLL_SECONDS must be positive")
    if config.get("batch_circuit_breaker_threshold", 0) < 0:
        errors.append("BATCH_CIRCUIT_BREAKER_THRESHOLD cannot be negative")

    # R2 is optional, but a partial configuration is a mistake
    r2_keys = ["r2_account_id", "r2_access_key_id", "r2_secret_access_key", "r2_bucket_name"]
    r2_set = [key for key in r2_keys if config.get(key)]
    if r2_set and len(r2_set) != len(r2_keys):
        missing = [key.upper() for key in r2_keys if key not in r2_set]
        errors.append(f"Incomplete R2 configuration, missing: {', '.join(missing)}")

    templates_file = config.get("field_templates_file")
    if templates_file and not Path(templates_file).is_file():
        errors.append(f"FIELD_TEMPLATES_FILE not found: {templates_file}")

    return errors


def load_template_overrides(path: Optional[str]) -> dict[str, str]:
    """Read field template overrides from a JSON object keyed by field name.

    Raises:
        ValueError: If the file is not a JSON object or names an unknown field
    """
    if not path:
        return {}
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Template file {path} must contain a JSON object")
    known = {name.value for name in FieldName}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown template fields in {path}: {', '.join(unknown)}")
    return {key: str(value) for key, value in data.items()}


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for one batch, built once and passed into the pipeline."""

    preferred_model: str = DEFAULT_PREFERRED_MODEL
    baseline_models: tuple[str, ...] = tuple(DEFAULT_BASELINE_MODELS)
    temperature: float = 1.0
    field_specs: dict[FieldName, FieldSpec] = field(default_factory=build_field_specs)
    image_template: str = IMAGE_GENERATE_TEMPLATE
    default_voice_id: str = DEFAULT_VOICE_ID
    image_prompt_min_chars: int = 20
    max_batch_items: int = 30
    item_delay_seconds: float = 0.4
    pause_poll_seconds: float = 0.2
    circuit_breaker_threshold: int = 0

    @classmethod
    def from_config(cls, config: dict) -> "PipelineConfig":
        """Build pipeline settings from a load_config() dict."""
        overrides = load_template_overrides(config.get("field_templates_file"))
        return cls(
            preferred_model=config.get("gemini_model") or DEFAULT_PREFERRED_MODEL,
            baseline_models=tuple(config.get("text_model_candidates") or DEFAULT_BASELINE_MODELS),
            temperature=config.get("text_temperature", 1.0),
            field_specs=build_field_specs(overrides),
            image_template=config.get("image_generate_template") or IMAGE_GENERATE_TEMPLATE,
            default_voice_id=config.get("default_voice_id") or DEFAULT_VOICE_ID,
            image_prompt_min_chars=config.get("image_prompt_min_chars", 20),
            max_batch_items=config.get("max_batch_items", 30),
            item_delay_seconds=config.get("batch_item_delay_seconds", 0.4),
            pause_poll_seconds=config.get("batch_pause_poll_seconds", 0.2),
            circuit_breaker_threshold=config.get("batch_circuit_breaker_threshold", 0),
        )


def setup_cli_logging(log_level: str = "INFO") -> None:
    """Set up logging with Rich for interactive terminal runs."""
    logging.root.handlers.clear()

    rich_handler = RichHandler(
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=[rich_handler],
        format="%(message)s",
    )

    for logger_name in ["httpx", "google_genai", "google_genai.models", "botocore", "aiosqlite"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

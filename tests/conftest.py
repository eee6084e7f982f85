"""Shared pytest fixtures for vesper tests."""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest
import pytest_asyncio

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from models.generation import FieldName, GenerationRequest  # noqa: E402
from services.content_store import SQLiteContentStore  # noqa: E402
from services.item_pipeline import ItemPipeline  # noqa: E402
from services.text_generation_service import TextGenerationService  # noqa: E402
from services.tts_service import SynthesizedAudio, TTSServiceError  # noqa: E402
from utils.config import PipelineConfig  # noqa: E402

MAIN_TEXT = (
    "Lord, in the quiet of this morning we come to you. "
    "You promised us a peace the world cannot give. "
    "Let that peace settle over our hearts and guard our minds today."
)

# Substrings that identify which default template produced a prompt
_PROMPT_MARKERS = [
    ("guided prayer", FieldName.MAIN_TEXT),
    ("prepares the listener", FieldName.PREPARATION),
    ("closing sentence", FieldName.FINAL_MESSAGE),
    ("Write a title", FieldName.TITLE),
    ("Write a subtitle", FieldName.SUBTITLE),
    ("description of this prayer", FieldName.DESCRIPTION),
    ("cover illustration", FieldName.IMAGE_PROMPT),
]

DEFAULT_ANSWERS = {
    FieldName.MAIN_TEXT: MAIN_TEXT,
    FieldName.PREPARATION: "Take a slow breath. Let us pray together.",
    FieldName.FINAL_MESSAGE: "Go in peace, knowing you are held.",
    FieldName.TITLE: "Peace for the Morning",
    FieldName.SUBTITLE: "A short prayer to start the day calmly",
    FieldName.DESCRIPTION: "A morning prayer on peace. Based on John 14:27.",
    FieldName.IMAGE_PROMPT: "A quiet lake at sunrise with mist over the water and soft golden light",
}


def field_for_prompt(prompt: str) -> Optional[FieldName]:
    for marker, name in _PROMPT_MARKERS:
        if marker in prompt:
            return name
    return None


class FakeCompletionBackend:
    """Completion backend answering from DEFAULT_ANSWERS.

    handler(model, field, prompt) may return a string or raise to simulate
    backend behaviour; every call is recorded.
    """

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler
        self.calls: list[dict] = []

    async def complete(self, model, prompt, temperature, max_tokens):
        field = field_for_prompt(prompt)
        self.calls.append(
            {
                "model": model,
                "field": field,
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.handler is not None:
            return self.handler(model, field, prompt)
        return DEFAULT_ANSWERS.get(field, "generated text")


class FakeTTSService:
    """Records narration requests; fails when the text contains fail_marker."""

    def __init__(self, fail_marker: Optional[str] = None, delay: float = 0.0):
        self.fail_marker = fail_marker
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def synthesize(self, text, voice_id):
        self.calls.append((text, voice_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_marker is not None and self.fail_marker in text:
            raise TTSServiceError("ElevenLabs error 500: synthesis failed")
        return SynthesizedAudio(
            audio_url=f"https://media.test/audio/{len(self.calls)}.wav",
            voice_id_used=voice_id,
            duration_seconds=42,
        )


class FakeImageService:
    """Image backend that succeeds, or fails a set number of times."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.prompts: list[str] = []

    async def synthesize(self, prompt):
        self.prompts.append(prompt)
        if len(self.prompts) <= self.failures:
            return None
        return "https://ephemeral.test/image.png"


class FakeMigrator:
    def __init__(self, degraded: bool = False):
        self.degraded = degraded
        self.urls: list[str] = []

    async def migrate(self, url):
        self.urls.append(url)
        if self.degraded:
            return url
        return "https://media.test/images/cover.png"


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Pipeline settings with no waiting between items."""
    return PipelineConfig(
        baseline_models=("model-a", "model-b", "model-c"),
        preferred_model="model-a",
        item_delay_seconds=0.0,
        pause_poll_seconds=0.01,
    )


@pytest.fixture
def morning_peace() -> GenerationRequest:
    return GenerationRequest(
        title="Morning Peace",
        theme="peace",
        scriptural_basis="John 14:27",
        category_id="morning",
        playlist_names=("Calm",),
        desired_positions={"Calm": 1},
    )


@pytest_asyncio.fixture
async def content_store(tmp_path):
    store = SQLiteContentStore(str(tmp_path / "content.db"))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def make_pipeline(pipeline_config, content_store):
    """Factory wiring an ItemPipeline to fakes plus a real SQLite store."""

    def _make(
        backend=None,
        tts=None,
        image_service="default",
        migrator=None,
        store=None,
        config=None,
    ) -> ItemPipeline:
        config = config or pipeline_config
        text_service = TextGenerationService(
            backend=backend or FakeCompletionBackend(),
            candidates=list(config.baseline_models),
            temperature=config.temperature,
        )
        return ItemPipeline(
            config=config,
            text_service=text_service,
            tts_service=tts or FakeTTSService(),
            store=store or content_store,
            image_service=FakeImageService() if image_service == "default" else image_service,
            image_migrator=migrator or FakeMigrator(),
        )

    return _make

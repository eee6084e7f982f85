"""Service singletons and dependency injection for the vesper API."""

import logging

from services.batch_orchestrator import BatchOrchestrator
from services.content_store import SQLiteContentStore
from services.image_generation_service import ImageGenerationService, ImageMigrator
from services.item_pipeline import ItemPipeline
from services.r2_storage import get_r2_storage
from services.text_generation_service import (
    GeminiCompletionBackend,
    TextGenerationService,
    build_model_candidates,
)
from services.tts_service import TTSService
from utils.config import PipelineConfig, load_config

logger = logging.getLogger(__name__)

# Service singletons
_config: dict | None = None
_pipeline_config: PipelineConfig | None = None
_content_store: SQLiteContentStore | None = None
_text_service: TextGenerationService | None = None
_tts_service: TTSService | None = None
_image_gen_service: ImageGenerationService | None = None
_image_migrator: ImageMigrator | None = None
_pipeline: ItemPipeline | None = None
_orchestrator: BatchOrchestrator | None = None


def get_config() -> dict:
    """Load the environment configuration once."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_pipeline_config() -> PipelineConfig:
    global _pipeline_config
    if _pipeline_config is None:
        _pipeline_config = PipelineConfig.from_config(get_config())
    return _pipeline_config


async def get_content_store() -> SQLiteContentStore:
    """Get or create the content store, connecting on first use."""
    global _content_store
    if _content_store is None:
        _content_store = SQLiteContentStore(get_config()["content_db_path"])
        await _content_store.connect()
    return _content_store


def get_text_service() -> TextGenerationService:
    """Get or create the text generation service."""
    global _text_service
    if _text_service is None:
        pipeline_config = get_pipeline_config()
        _text_service = TextGenerationService(
            backend=GeminiCompletionBackend(api_key=get_config().get("gemini_api_key")),
            candidates=build_model_candidates(
                pipeline_config.preferred_model, pipeline_config.baseline_models
            ),
            temperature=pipeline_config.temperature,
        )
    return _text_service


def get_tts_service() -> TTSService:
    """Get or create the TTS service instance."""
    global _tts_service
    if _tts_service is None:
        config = get_config()
        _tts_service = TTSService(
            api_key=config.get("elevenlabs_api_key") or "",
            model_id=config.get("elevenlabs_model_id"),
            store=get_r2_storage(config),
        )
    return _tts_service


def get_image_gen_service() -> ImageGenerationService | None:
    """Get or create the image generation service; None without a Runware key."""
    global _image_gen_service
    config = get_config()
    if _image_gen_service is None and config.get("runware_api_key"):
        _image_gen_service = ImageGenerationService(
            runware_api_key=config["runware_api_key"],
            model_id=config.get("runware_model_id"),
            width=config.get("image_width", 1024),
            height=config.get("image_height", 1024),
        )
    return _image_gen_service


def get_image_migrator() -> ImageMigrator:
    global _image_migrator
    if _image_migrator is None:
        _image_migrator = ImageMigrator(store=get_r2_storage(get_config()))
    return _image_migrator


async def get_pipeline() -> ItemPipeline:
    """Get or create the item pipeline wired to the production services."""
    global _pipeline
    if _pipeline is None:
        _pipeline = ItemPipeline(
            config=get_pipeline_config(),
            text_service=get_text_service(),
            tts_service=get_tts_service(),
            store=await get_content_store(),
            image_service=get_image_gen_service(),
            image_migrator=get_image_migrator(),
        )
    return _pipeline


async def get_orchestrator() -> BatchOrchestrator:
    """Get or create the batch orchestrator with progress listeners attached."""
    global _orchestrator
    if _orchestrator is None:
        from api.progress import attach_progress_listeners

        _orchestrator = attach_progress_listeners(
            BatchOrchestrator(await get_pipeline(), get_pipeline_config())
        )
    return _orchestrator


async def close_services() -> None:
    """Cancel running batches and close clients and connections."""
    global _content_store, _text_service, _tts_service, _image_gen_service
    global _image_migrator, _pipeline, _orchestrator

    if _orchestrator is not None:
        for handle in _orchestrator.list_handles():
            if handle.is_running:
                handle.cancel()
                await handle.wait()
    if _tts_service is not None:
        await _tts_service.close()
    if _image_gen_service is not None:
        await _image_gen_service.close()
    if _image_migrator is not None:
        await _image_migrator.close()
    if _content_store is not None:
        await _content_store.close()

    _content_store = None
    _text_service = None
    _tts_service = None
    _image_gen_service = None
    _image_migrator = None
    _pipeline = None
    _orchestrator = None
    logger.info("Services closed")

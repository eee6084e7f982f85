"""Single-item generation pipeline.

Runs one GenerationRequest through six steps:

    main_text -> derived_fields -> audio -> image -> persist -> playlist_link

Main text, audio and persist are required: their failure ends the item with
an error. Derived fields, image and playlist linking are best-effort and only
add warnings. run() never raises for item failures; everything is recorded
on the PipelineResult, which is frozen when run() returns.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from models.generation import (
    DERIVED_FIELDS,
    ContentRecord,
    FieldName,
    GenerationContext,
    GenerationRequest,
    PipelineResult,
    PlaylistAction,
    StepName,
    StepStatus,
)
from services.cancellation import CancellationToken
from services.content_store import ContentStore
from services.image_generation_service import ImageGenerationService, ImageMigrator
from services.playlist_reconciler import PlaylistReconciler
from services.prompts import render_template
from services.text_generation_service import TextGenerationService
from services.tts_service import TTSService
from utils.config import PipelineConfig

logger = logging.getLogger(__name__)

StepListener = Callable[[PipelineResult], Awaitable[None]]

MAIN_TEXT_ERROR = "failed to generate main text"
AUDIO_ERROR = "failed to generate audio"
PERSIST_ERROR = "failed to save"


def build_narration(fields: dict[str, str]) -> str:
    """Preparation, main text and closing message joined by blank lines."""
    parts = [
        fields.get(FieldName.PREPARATION.value, ""),
        fields.get(FieldName.MAIN_TEXT.value, ""),
        fields.get(FieldName.FINAL_MESSAGE.value, ""),
    ]
    return "\n\n".join(part.strip() for part in parts if part and part.strip())


class ItemPipeline:
    """Turns one request into a persisted, narrated, linked content record."""

    def __init__(
        self,
        config: PipelineConfig,
        text_service: TextGenerationService,
        tts_service: TTSService,
        store: ContentStore,
        image_service: Optional[ImageGenerationService] = None,
        image_migrator: Optional[ImageMigrator] = None,
        reconciler: Optional[PlaylistReconciler] = None,
    ):
        self.config = config
        self.text_service = text_service
        self.tts_service = tts_service
        self.store = store
        self.image_service = image_service
        self.image_migrator = image_migrator
        self.reconciler = reconciler or PlaylistReconciler(store)
        self._listeners: dict[int, StepListener] = {}

    async def run(
        self,
        request: GenerationRequest,
        result: Optional[PipelineResult] = None,
        token: Optional[CancellationToken] = None,
        on_update: Optional[StepListener] = None,
    ) -> PipelineResult:
        """Run every step for one request.

        Args:
            request: What to generate
            result: Pre-allocated result to fill (batch slot); created if omitted
            token: Checked once before starting; a cancelled token leaves the
                result pending and untouched
            on_update: Awaited after every step change

        Returns:
            The result, frozen unless the run was cancelled before it started
        """
        result = result or PipelineResult(index=0, request=request)
        if token is not None and token.is_cancelled:
            logger.info(f"Item {result.index} not started: batch cancelled")
            return result

        if on_update is not None:
            self._listeners[id(result)] = on_update
        result.start()
        await self._notify(result)
        logger.info(f"Item {result.index}: generating '{request.title}'")

        try:
            await self._run_steps(request, result)
        except Exception as e:
            # Anything unexpected still ends as an item error, not an exception
            logger.exception(f"Item {result.index} crashed: {e}")
            if not result.frozen:
                step = self._running_step(result)
                if step is not None:
                    result.mark_step(step, StepStatus.ERROR, f"unexpected error: {e}")
                result.finish(error=f"unexpected error: {e}", failed_step=step)

        if not result.frozen:
            result.finish()
        await self._notify(result)
        self._listeners.pop(id(result), None)
        logger.info(
            f"Item {result.index} finished: {result.status.value}"
            + (f" ({result.error})" if result.error else "")
        )
        return result

    async def _run_steps(self, request: GenerationRequest, result: PipelineResult) -> None:
        context = GenerationContext.for_request(request)

        if not await self._main_text(result, context):
            return
        await self._derived_fields(request, result, context)

        narration = build_narration(result.fields)
        if not await self._audio(request, result, narration):
            return
        await self._image(result, context)

        if not await self._persist(request, result, narration):
            return
        await self._playlists(request, result)

    async def _mark(
        self,
        result: PipelineResult,
        step: StepName,
        status: StepStatus,
        message: Optional[str] = None,
    ) -> None:
        result.mark_step(step, status, message)
        await self._notify(result)

    async def _notify(self, result: PipelineResult) -> None:
        listener = self._listeners.get(id(result))
        if listener is None:
            return
        try:
            await listener(result)
        except Exception as e:
            logger.warning(f"Progress listener failed: {e}")

    @staticmethod
    def _running_step(result: PipelineResult) -> Optional[StepName]:
        for step, state in result.steps.items():
            if state.status == StepStatus.RUNNING:
                return step
        return None

    async def _main_text(self, result: PipelineResult, context: GenerationContext) -> bool:
        await self._mark(result, StepName.MAIN_TEXT, StepStatus.RUNNING)
        spec = self.config.field_specs[FieldName.MAIN_TEXT]
        generation = await self.text_service.generate(spec, context)

        if generation.is_empty:
            reason = MAIN_TEXT_ERROR
            if generation.error_kind is not None:
                reason = f"{MAIN_TEXT_ERROR} ({generation.error_kind.value})"
            await self._mark(result, StepName.MAIN_TEXT, StepStatus.ERROR, reason)
            result.finish(error=MAIN_TEXT_ERROR, failed_step=StepName.MAIN_TEXT)
            return False

        result.set_field(FieldName.MAIN_TEXT, generation.value)
        result.model_used = generation.model_used
        context[FieldName.MAIN_TEXT.value] = generation.value
        await self._mark(
            result,
            StepName.MAIN_TEXT,
            StepStatus.SUCCESS,
            f"generated with {generation.model_used}",
        )
        return True

    async def _derived_fields(
        self,
        request: GenerationRequest,
        result: PipelineResult,
        context: GenerationContext,
    ) -> None:
        await self._mark(result, StepName.DERIVED_FIELDS, StepStatus.RUNNING)
        specs = [self.config.field_specs[name] for name in DERIVED_FIELDS]
        outcomes = await asyncio.gather(
            *(self.text_service.generate(spec, context) for spec in specs),
            return_exceptions=True,
        )

        generated = 0
        for spec, outcome in zip(specs, outcomes):
            name = spec.name
            if isinstance(outcome, BaseException):
                result.add_message(StepName.DERIVED_FIELDS, f"{name.value} failed: {outcome}")
                continue
            if outcome.is_empty:
                if outcome.error_kind is not None:
                    result.add_message(
                        StepName.DERIVED_FIELDS, f"{name.value} failed ({outcome.error_kind.value})"
                    )
                elif spec.template.strip():
                    result.add_message(StepName.DERIVED_FIELDS, f"{name.value} came back empty")
                continue
            result.set_field(name, outcome.value)
            generated += 1

        # Later templates (image) see every derived value
        for name in DERIVED_FIELDS:
            if name.value in result.fields:
                context[name.value] = result.fields[name.value]

        if not result.fields.get(FieldName.TITLE.value):
            result.set_field(FieldName.TITLE, request.title)
            context[FieldName.TITLE.value] = request.title
            result.add_message(StepName.DERIVED_FIELDS, "using the requested title", level="info")

        await self._mark(
            result,
            StepName.DERIVED_FIELDS,
            StepStatus.SUCCESS,
            f"{generated} of {len(specs)} fields generated",
        )

    async def _audio(self, request: GenerationRequest, result: PipelineResult, narration: str) -> bool:
        await self._mark(result, StepName.AUDIO, StepStatus.RUNNING)
        voice_id = request.voice_id or self.config.default_voice_id
        try:
            audio = await self.tts_service.synthesize(narration, voice_id)
        except Exception as e:
            logger.error(f"Item {result.index}: audio failed: {e}")
            await self._mark(result, StepName.AUDIO, StepStatus.ERROR, f"{AUDIO_ERROR}: {e}")
            result.finish(error=AUDIO_ERROR, failed_step=StepName.AUDIO)
            return False

        result.audio_url = audio.audio_url
        result.voice_id_used = audio.voice_id_used
        result.voice_name = audio.voice_name
        result.duration_seconds = audio.duration_seconds
        await self._mark(result, StepName.AUDIO, StepStatus.SUCCESS, f"{audio.duration_seconds}s narration")
        return True

    async def _image(self, result: PipelineResult, context: GenerationContext) -> None:
        prompt = result.fields.get(FieldName.IMAGE_PROMPT.value, "").strip()
        if self.image_service is None:
            await self._mark(result, StepName.IMAGE, StepStatus.SKIPPED, "image backend not configured")
            return
        if len(prompt) < self.config.image_prompt_min_chars:
            await self._mark(result, StepName.IMAGE, StepStatus.SKIPPED, "image prompt too short")
            return

        await self._mark(result, StepName.IMAGE, StepStatus.RUNNING)
        compiled = render_template(
            self.config.image_template,
            {**context, "image_description": prompt},
        ).strip()
        if not compiled:
            await self._mark(result, StepName.IMAGE, StepStatus.SKIPPED, "image template rendered empty")
            return

        try:
            ephemeral_url = await self.image_service.synthesize(compiled)
        except Exception as e:
            logger.warning(f"Item {result.index}: image synthesis raised: {e}")
            ephemeral_url = None

        if not ephemeral_url:
            result.add_message(StepName.IMAGE, "image generation failed; continuing without cover")
            await self._mark(result, StepName.IMAGE, StepStatus.ERROR, "image generation failed")
            return

        image_url = ephemeral_url
        if self.image_migrator is not None:
            try:
                image_url = await self.image_migrator.migrate(ephemeral_url)
            except Exception as e:
                logger.warning(f"Item {result.index}: image migration raised: {e}")
                image_url = ephemeral_url

        result.image_url = image_url
        if image_url == ephemeral_url:
            result.add_message(StepName.IMAGE, "degraded: image kept at its temporary URL")
        await self._mark(result, StepName.IMAGE, StepStatus.SUCCESS)

    async def _persist(self, request: GenerationRequest, result: PipelineResult, narration: str) -> bool:
        await self._mark(result, StepName.PERSIST, StepStatus.RUNNING)
        fields = result.fields
        record = ContentRecord(
            title=fields.get(FieldName.TITLE.value) or request.title,
            subtitle=fields.get(FieldName.SUBTITLE.value),
            description=fields.get(FieldName.DESCRIPTION.value),
            audio_url=result.audio_url,
            transcript=narration,
            duration_seconds=result.duration_seconds,
            category_id=request.category_id,
            image_url=result.image_url,
            voice_id=result.voice_id_used,
            voice_name=result.voice_name,
            ai_engine=result.model_used,
            scriptural_basis=request.scriptural_basis,
        )
        try:
            record_id = await self.store.save_record(record)
        except Exception as e:
            logger.error(f"Item {result.index}: save failed: {e}")
            await self._mark(result, StepName.PERSIST, StepStatus.ERROR, f"{PERSIST_ERROR}: {e}")
            result.finish(error=PERSIST_ERROR, failed_step=StepName.PERSIST)
            return False

        result.record_id = record_id
        await self._mark(result, StepName.PERSIST, StepStatus.SUCCESS, f"record {record_id}")
        return True

    async def _playlists(self, request: GenerationRequest, result: PipelineResult) -> None:
        if not request.playlist_names:
            await self._mark(result, StepName.PLAYLIST_LINK, StepStatus.SKIPPED, "no playlists requested")
            return

        await self._mark(result, StepName.PLAYLIST_LINK, StepStatus.RUNNING)
        try:
            links = await self.reconciler.reconcile(result.record_id, request)
        except Exception as e:
            logger.error(f"Item {result.index}: playlist reconciliation failed: {e}")
            await self._mark(result, StepName.PLAYLIST_LINK, StepStatus.ERROR, f"playlist linking failed: {e}")
            return

        result.playlist_links.extend(links)
        skipped = [link for link in links if link.action == PlaylistAction.SKIPPED]
        for link in skipped:
            result.add_message(
                StepName.PLAYLIST_LINK, f"playlist '{link.playlist_name}' skipped: {link.error}"
            )

        if links and len(skipped) == len(links):
            await self._mark(result, StepName.PLAYLIST_LINK, StepStatus.ERROR, "no playlist could be linked")
        else:
            await self._mark(
                result,
                StepName.PLAYLIST_LINK,
                StepStatus.SUCCESS,
                f"{len(links) - len(skipped)} of {len(links)} playlists linked",
            )

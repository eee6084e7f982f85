"""Unit tests for generation and batch models."""

import pytest

from models import (
    BatchJob,
    BatchState,
    GenerationContext,
    GenerationRequest,
    InvalidStepTransition,
    ItemStatus,
    PipelineResult,
    ResultFrozenError,
    StepName,
    StepStatus,
)


def _request(**overrides) -> GenerationRequest:
    data = {
        "title": "Morning Peace",
        "theme": "peace",
        "scriptural_basis": "John 14:27",
        "category_id": "morning",
    }
    data.update(overrides)
    return GenerationRequest(**data)


@pytest.mark.unit
class TestGenerationRequest:
    def test_playlist_names_deduplicated_case_insensitively(self):
        request = _request(playlist_names=("Calm", "calm ", "Hope", "", "  ", "HOPE"))
        assert request.playlist_names == ("Calm", "Hope")

    def test_position_lookup_ignores_case(self):
        request = _request(playlist_names=("Calm",), desired_positions={"Calm": 3})
        assert request.position_for("calm") == 3
        assert request.position_for("Other") is None

    def test_position_below_one_rejected(self):
        with pytest.raises(ValueError):
            _request(desired_positions={"Calm": 0})

    def test_blank_voice_becomes_none(self):
        assert _request(voice_id="  ").voice_id is None

    def test_request_is_immutable(self):
        request = _request()
        with pytest.raises(AttributeError):
            request.title = "Changed"

    def test_from_dict_round_trips_key_fields(self):
        request = GenerationRequest.from_dict(
            {
                "title": " Morning Peace ",
                "theme": "peace",
                "scriptural_basis": "John 14:27",
                "playlist_names": ["Calm"],
                "desired_positions": {"Calm": 1},
            }
        )
        assert request.title == "Morning Peace"
        assert request.category_id == ""
        assert request.to_dict()["playlist_names"] == ["Calm"]


@pytest.mark.unit
def test_context_is_seeded_from_request():
    context = GenerationContext.for_request(_request())
    assert context == {"theme": "peace", "scriptural_basis": "John 14:27"}


@pytest.mark.unit
class TestPipelineResult:
    def test_steps_start_pending(self):
        result = PipelineResult(index=0, request=_request())
        assert all(state.status == StepStatus.PENDING for state in result.steps.values())
        assert result.status == ItemStatus.PENDING

    def test_step_moves_forward_only(self):
        result = PipelineResult(index=0, request=_request())
        result.start()
        result.mark_step(StepName.AUDIO, StepStatus.RUNNING)
        result.mark_step(StepName.AUDIO, StepStatus.SUCCESS, "42s")

        with pytest.raises(InvalidStepTransition):
            result.mark_step(StepName.AUDIO, StepStatus.RUNNING)
        with pytest.raises(InvalidStepTransition):
            result.mark_step(StepName.IMAGE, StepStatus.SUCCESS)

    def test_pending_step_can_be_skipped(self):
        result = PipelineResult(index=0, request=_request())
        result.start()
        result.mark_step(StepName.PLAYLIST_LINK, StepStatus.SKIPPED, "no playlists requested")
        assert result.steps[StepName.PLAYLIST_LINK].status == StepStatus.SKIPPED

    def test_error_message_recorded_at_error_level(self):
        result = PipelineResult(index=0, request=_request())
        result.start()
        result.mark_step(StepName.AUDIO, StepStatus.RUNNING)
        result.mark_step(StepName.AUDIO, StepStatus.ERROR, "boom")
        assert result.messages[-1].level == "error"
        assert result.steps[StepName.AUDIO].message == "boom"

    def test_finish_freezes_result(self):
        result = PipelineResult(index=0, request=_request())
        result.start()
        result.finish(error="failed to generate audio", failed_step=StepName.AUDIO)

        assert result.status == ItemStatus.ERROR
        assert result.failed_step == StepName.AUDIO
        assert result.finished_at is not None
        with pytest.raises(ResultFrozenError):
            result.add_message(StepName.AUDIO, "late note")
        with pytest.raises(ResultFrozenError):
            result.mark_step(StepName.IMAGE, StepStatus.RUNNING)

    def test_cannot_finish_without_starting(self):
        result = PipelineResult(index=0, request=_request())
        with pytest.raises(InvalidStepTransition):
            result.finish()

    def test_warnings_filtered_by_step(self):
        result = PipelineResult(index=0, request=_request())
        result.start()
        result.add_message(StepName.IMAGE, "image generation failed")
        result.add_message(StepName.IMAGE, "just so you know", level="info")
        result.add_message(StepName.DERIVED_FIELDS, "title came back empty")
        assert result.warnings_for(StepName.IMAGE) == ["image generation failed"]

    def test_to_dict_prefers_generated_title(self):
        result = PipelineResult(index=2, request=_request())
        assert result.to_dict()["title"] == "Morning Peace"
        result.fields["title"] = "Peace for the Morning"
        data = result.to_dict()
        assert data["title"] == "Peace for the Morning"
        assert data["steps"]["main_text"]["status"] == "pending"


@pytest.mark.unit
class TestBatchJob:
    def test_results_allocated_per_request(self):
        job = BatchJob(job_id="b1", requests=[_request(title=f"Item {i}") for i in range(3)])
        assert job.total == 3
        assert [r.index for r in job.results] == [0, 1, 2]
        assert job.state == BatchState.IDLE

    def test_progress_counts_finished_items(self):
        job = BatchJob(job_id="b1", requests=[_request(title=f"Item {i}") for i in range(3)])
        job.results[0].start()
        job.results[0].finish()
        job.results[1].start()
        job.results[1].finish(error="failed to generate audio", failed_step=StepName.AUDIO)
        job.results[2].start()
        job.results[2].mark_step(StepName.MAIN_TEXT, StepStatus.RUNNING)
        job.current_index = 2

        progress = job.progress()
        assert progress.completed == 2
        assert progress.total == 3
        assert progress.current_item == {
            "index": 2,
            "title": "Item 2",
            "status": "running",
            "step": "main_text",
        }
        assert progress.per_item_step_status[1]["failed_step"] == "audio"
        assert job.success_count == 1
        assert job.failed_count == 1

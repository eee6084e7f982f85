# Data models for vesper
from .generation import (
    DERIVED_FIELDS,
    CompletionErrorKind,
    ContentRecord,
    FieldGeneration,
    FieldName,
    FieldSpec,
    GenerationContext,
    GenerationRequest,
    InvalidStepTransition,
    ItemStatus,
    PipelineResult,
    PlaylistAction,
    PlaylistLinkResult,
    ResultFrozenError,
    StepMessage,
    StepName,
    StepState,
    StepStatus,
)
from .batch import BatchJob, BatchProgress, BatchState

__all__ = [
    # Single-item generation
    "DERIVED_FIELDS",
    "CompletionErrorKind",
    "ContentRecord",
    "FieldGeneration",
    "FieldName",
    "FieldSpec",
    "GenerationContext",
    "GenerationRequest",
    "InvalidStepTransition",
    "ItemStatus",
    "PipelineResult",
    "PlaylistAction",
    "PlaylistLinkResult",
    "ResultFrozenError",
    "StepMessage",
    "StepName",
    "StepState",
    "StepStatus",
    # Batches
    "BatchJob",
    "BatchProgress",
    "BatchState",
]

"""Models for single-item content generation (requests, fields, results)."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class FieldName(str, Enum):
    """Fields produced by the text generator."""

    TITLE = "title"
    SUBTITLE = "subtitle"
    DESCRIPTION = "description"
    PREPARATION = "preparation"
    MAIN_TEXT = "main_text"
    FINAL_MESSAGE = "final_message"
    IMAGE_PROMPT = "image_prompt"


# Generated concurrently once main_text is available
DERIVED_FIELDS = (
    FieldName.PREPARATION,
    FieldName.FINAL_MESSAGE,
    FieldName.TITLE,
    FieldName.SUBTITLE,
    FieldName.DESCRIPTION,
    FieldName.IMAGE_PROMPT,
)


class StepName(str, Enum):
    """Pipeline steps, in execution order."""

    MAIN_TEXT = "main_text"
    DERIVED_FIELDS = "derived_fields"
    AUDIO = "audio"
    IMAGE = "image"
    PERSIST = "persist"
    PLAYLIST_LINK = "playlist_link"


class StepStatus(str, Enum):
    """Status of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ItemStatus(str, Enum):
    """Overall status of one generation item."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class PlaylistAction(str, Enum):
    """Outcome of reconciling one playlist membership."""

    INSERTED = "inserted"
    UPDATED = "updated"
    NOOP = "noop"
    SKIPPED = "skipped"


_STEP_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SKIPPED},
    StepStatus.RUNNING: {StepStatus.SUCCESS, StepStatus.ERROR, StepStatus.SKIPPED},
    StepStatus.SUCCESS: set(),
    StepStatus.ERROR: set(),
    StepStatus.SKIPPED: set(),
}

_ITEM_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.RUNNING},
    ItemStatus.RUNNING: {ItemStatus.SUCCESS, ItemStatus.ERROR},
    ItemStatus.SUCCESS: set(),
    ItemStatus.ERROR: set(),
}


class InvalidStepTransition(Exception):
    """Raised when a step or item status would move backwards."""

    pass


class ResultFrozenError(Exception):
    """Raised when a finished PipelineResult is mutated."""

    pass


def _dedupe_names(names) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered: list[str] = []
    for name in names or ():
        if not isinstance(name, str):
            continue
        clean = name.strip()
        if not clean or clean.lower() in seen:
            continue
        seen.add(clean.lower())
        ordered.append(clean)
    return tuple(ordered)


@dataclass(frozen=True)
class GenerationRequest:
    """Input to one pipeline run. Immutable once submitted."""

    title: str
    theme: str
    scriptural_basis: str
    category_id: str
    playlist_names: tuple[str, ...] = ()
    desired_positions: dict[str, int] = field(default_factory=dict)
    voice_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "playlist_names", _dedupe_names(self.playlist_names))
        positions = {}
        for name, position in (self.desired_positions or {}).items():
            if position is None:
                continue
            if not isinstance(name, str):
                raise ValueError(f"Playlist name must be a string, got {name!r}")
            if isinstance(position, bool):
                raise ValueError(f"Playlist position for '{name}' must be an integer, got {position!r}")
            try:
                position = int(position)
            except (TypeError, ValueError):
                raise ValueError(
                    f"Playlist position for '{name}' must be an integer, got {position!r}"
                ) from None
            if position < 1:
                raise ValueError(f"Playlist position for '{name}' must be >= 1, got {position}")
            positions[name.strip()] = position
        object.__setattr__(self, "desired_positions", positions)
        if self.voice_id is not None and not isinstance(self.voice_id, str):
            raise ValueError(f"voice_id must be a string, got {self.voice_id!r}")
        if self.voice_id is not None and not self.voice_id.strip():
            object.__setattr__(self, "voice_id", None)

    def position_for(self, playlist_name: str) -> Optional[int]:
        """Look up the desired position for a playlist (case-insensitive)."""
        if playlist_name in self.desired_positions:
            return self.desired_positions[playlist_name]
        needle = playlist_name.strip().lower()
        for name, position in self.desired_positions.items():
            if name.lower() == needle:
                return position
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "title": self.title,
            "theme": self.theme,
            "scriptural_basis": self.scriptural_basis,
            "category_id": self.category_id,
            "playlist_names": list(self.playlist_names),
            "desired_positions": dict(self.desired_positions),
            "voice_id": self.voice_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationRequest":
        """Create a request from a dictionary (API payloads, batch files)."""
        return cls(
            title=str(data.get("title") or "").strip(),
            theme=str(data.get("theme") or "").strip(),
            scriptural_basis=str(data.get("scriptural_basis") or "").strip(),
            category_id=str(data.get("category_id") or "").strip(),
            playlist_names=tuple(data.get("playlist_names") or ()),
            desired_positions=dict(data.get("desired_positions") or {}),
            voice_id=data.get("voice_id"),
        )


class GenerationContext(dict):
    """Accumulator of generated values for one run, keyed by placeholder name."""

    @classmethod
    def for_request(cls, request: GenerationRequest) -> "GenerationContext":
        return cls(theme=request.theme, scriptural_basis=request.scriptural_basis)


@dataclass(frozen=True)
class FieldSpec:
    """Static configuration for one generated field."""

    name: FieldName
    template: str
    required: bool = False
    max_tokens: int = 512


class CompletionErrorKind(str, Enum):
    """Classification of a failed completion call."""

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    OTHER = "other"

    @property
    def is_fatal(self) -> bool:
        """Whether the fallback loop must stop instead of trying the next model."""
        return self != CompletionErrorKind.MODEL_UNAVAILABLE


@dataclass
class FieldGeneration:
    """Result of generating one field."""

    value: str = ""
    model_used: Optional[str] = None
    # Last classified failure, set when the value is empty because of an error
    error_kind: Optional[CompletionErrorKind] = None

    @property
    def is_empty(self) -> bool:
        return not self.value.strip()


@dataclass
class PlaylistLinkResult:
    """Outcome of linking a record to one named playlist."""

    playlist_name: str
    playlist_id: Optional[str]
    action: PlaylistAction
    position: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "playlist_name": self.playlist_name,
            "playlist_id": self.playlist_id,
            "action": self.action.value,
            "position": self.position,
            "error": self.error,
        }


@dataclass
class ContentRecord:
    """Assembled record handed to the persistence writer."""

    title: str
    audio_url: str
    transcript: str
    category_id: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    duration_seconds: Optional[int] = None
    image_url: Optional[str] = None
    voice_id: Optional[str] = None
    voice_name: Optional[str] = None
    ai_engine: Optional[str] = None
    scriptural_basis: Optional[str] = None


@dataclass
class StepState:
    """Status and last message of one step."""

    status: StepStatus = StepStatus.PENDING
    message: Optional[str] = None


@dataclass(frozen=True)
class StepMessage:
    """Human-readable note attached to a step."""

    step: StepName
    level: str  # info, warning, error
    text: str


@dataclass
class PipelineResult:
    """Per-item output and progress record.

    Append-only while the item runs; frozen once finish() is called.
    """

    index: int
    request: GenerationRequest
    status: ItemStatus = ItemStatus.PENDING
    fields: dict[str, str] = field(default_factory=dict)
    model_used: Optional[str] = None
    audio_url: Optional[str] = None
    voice_id_used: Optional[str] = None
    voice_name: Optional[str] = None
    duration_seconds: Optional[int] = None
    image_url: Optional[str] = None
    record_id: Optional[str] = None
    playlist_links: list[PlaylistLinkResult] = field(default_factory=list)
    steps: dict[StepName, StepState] = field(
        default_factory=lambda: {step: StepState() for step in StepName}
    )
    messages: list[StepMessage] = field(default_factory=list)
    error: Optional[str] = None
    failed_step: Optional[StepName] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    _frozen: bool = field(default=False, repr=False)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def is_finished(self) -> bool:
        return self.status in (ItemStatus.SUCCESS, ItemStatus.ERROR)

    def _check_mutable(self) -> None:
        if self._frozen:
            raise ResultFrozenError(f"Result for item {self.index} is frozen")

    def _set_status(self, status: ItemStatus) -> None:
        if status not in _ITEM_TRANSITIONS[self.status]:
            raise InvalidStepTransition(
                f"Item {self.index}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def start(self) -> None:
        """Mark the item as running."""
        self._check_mutable()
        self._set_status(ItemStatus.RUNNING)
        self.started_at = datetime.now()

    def mark_step(self, step: StepName, status: StepStatus, message: Optional[str] = None) -> None:
        """Move a step forward, optionally recording a message."""
        self._check_mutable()
        state = self.steps[step]
        if status not in _STEP_TRANSITIONS[state.status]:
            raise InvalidStepTransition(
                f"Item {self.index}: step {step.value} cannot move from "
                f"{state.status.value} to {status.value}"
            )
        state.status = status
        if message is not None:
            state.message = message
            level = "error" if status == StepStatus.ERROR else "info"
            self.messages.append(StepMessage(step=step, level=level, text=message))

    def add_message(self, step: StepName, text: str, level: str = "warning") -> None:
        """Append a note without changing step status."""
        self._check_mutable()
        self.messages.append(StepMessage(step=step, level=level, text=text))

    def set_field(self, name: FieldName, value: str) -> None:
        self._check_mutable()
        self.fields[name.value] = value

    def warnings_for(self, step: StepName) -> list[str]:
        return [m.text for m in self.messages if m.step == step and m.level == "warning"]

    def finish(self, error: Optional[str] = None, failed_step: Optional[StepName] = None) -> None:
        """Record the final outcome and freeze the result."""
        self._check_mutable()
        if error:
            self.error = error
            self.failed_step = failed_step
            self._set_status(ItemStatus.ERROR)
        else:
            self._set_status(ItemStatus.SUCCESS)
        self.finished_at = datetime.now()
        self._frozen = True

    def step_table(self) -> dict[str, dict]:
        """Step statuses and messages keyed by step name."""
        return {
            step.value: {"status": state.status.value, "message": state.message}
            for step, state in self.steps.items()
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "index": self.index,
            "title": self.fields.get(FieldName.TITLE.value) or self.request.title,
            "status": self.status.value,
            "fields": dict(self.fields),
            "model_used": self.model_used,
            "audio_url": self.audio_url,
            "voice_id_used": self.voice_id_used,
            "voice_name": self.voice_name,
            "duration_seconds": self.duration_seconds,
            "image_url": self.image_url,
            "record_id": self.record_id,
            "playlist_links": [link.to_dict() for link in self.playlist_links],
            "steps": self.step_table(),
            "messages": [
                {"step": m.step.value, "level": m.level, "text": m.text} for m in self.messages
            ],
            "error": self.error,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

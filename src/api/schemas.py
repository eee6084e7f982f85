"""Pydantic request/response models for the vesper API."""

from pydantic import BaseModel, Field, field_validator

from models.generation import GenerationRequest

# =============================================================================
# Response Models
# =============================================================================


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str

    model_config = {"json_schema_extra": {"examples": [{"message": "Batch paused"}]}}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str

    model_config = {"json_schema_extra": {"examples": [{"status": "healthy", "version": "1.0.0"}]}}


class BatchSubmitResponse(BaseModel):
    """Accepted batch."""

    job_id: str
    total: int
    state: str


class VoiceResponse(BaseModel):
    """One entry of the voice catalogue."""

    voice_id: str
    name: str


# =============================================================================
# Request Models
# =============================================================================


class GenerationRequestBody(BaseModel):
    """One item to generate."""

    title: str = Field(min_length=1)
    theme: str = Field(min_length=1)
    scriptural_basis: str = Field(min_length=1)
    category_id: str = ""
    playlist_names: list[str] = Field(default_factory=list)
    desired_positions: dict[str, int] = Field(default_factory=dict)
    voice_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "title": "Morning Peace",
                    "theme": "peace",
                    "scriptural_basis": "John 14:27",
                    "category_id": "morning",
                    "playlist_names": ["Calm"],
                    "desired_positions": {"Calm": 1},
                }
            ]
        }
    }

    @field_validator("desired_positions")
    @classmethod
    def positions_are_positive(cls, value: dict[str, int]) -> dict[str, int]:
        for name, position in value.items():
            if position < 1:
                raise ValueError(f"position for '{name}' must be >= 1")
        return value

    def to_request(self) -> GenerationRequest:
        return GenerationRequest.from_dict(self.model_dump())


class BatchSubmitRequest(BaseModel):
    """Ordered list of items to run as one batch."""

    requests: list[GenerationRequestBody]
    job_id: str | None = None


class BatchParseRequest(BaseModel):
    """NDJSON text as pasted into the admin batch screen."""

    text: str
    category_id: str | None = None
    voice_id: str | None = None
    submit: bool = Field(default=False, description="Start a batch with the lines that parsed")

"""Batch input parsing.

Accepts the admin NDJSON format (one JSON object per line, Portuguese or
English keys) as well as JSON and YAML files holding a list of requests.
Bad lines are reported individually and never abort the rest.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from models.generation import GenerationRequest

logger = logging.getLogger(__name__)

TITLE_KEYS = ("title", "Título da Oração", "Titulo da Oração", "Titulo", "Título")
BASIS_KEYS = ("scriptural_basis", "Base bíblica", "Base Biblica", "Base")
THEME_KEYS = ("theme", "Tema central", "Tema")
PLAYLIST_KEYS = ("playlist_names", "playlists", "Playlist")


@dataclass
class LineError:
    """A rejected input line."""

    line: int
    message: str
    raw: str = ""

    def to_dict(self) -> dict:
        return {"line": self.line, "message": self.message, "raw": self.raw}


@dataclass
class ParsedBatch:
    """Requests that parsed cleanly plus the lines that did not."""

    requests: list[GenerationRequest] = field(default_factory=list)
    errors: list[LineError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requests": [r.to_dict() for r in self.requests],
            "errors": [e.to_dict() for e in self.errors],
        }


def _first(obj: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = obj.get(key)
        if value not in (None, ""):
            return value
    return None


def _playlist_names(value: Any) -> list[str]:
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def request_from_mapping(
    obj: dict,
    category_id: Optional[str] = None,
    voice_id: Optional[str] = None,
) -> GenerationRequest:
    """Build a request from one input object.

    Per-item category_id and voice_id override the batch defaults.

    Raises:
        ValueError: If a required field is missing or a field has the wrong type
    """
    if not isinstance(obj, dict):
        raise ValueError("expected a JSON object")

    title = _first(obj, TITLE_KEYS)
    basis = _first(obj, BASIS_KEYS)
    theme = _first(obj, THEME_KEYS)
    missing = [
        name
        for name, value in (("title", title), ("scriptural_basis", basis), ("theme", theme))
        if not value or not str(value).strip()
    ]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    positions = obj.get("desired_positions") or obj.get("positions") or {}
    if not isinstance(positions, dict):
        raise ValueError("positions must be an object of playlist name to position")
    for key in ("category_id", "voice_id"):
        if obj.get(key) is not None and not isinstance(obj[key], str):
            raise ValueError(f"{key} must be a string, got {obj[key]!r}")

    return GenerationRequest(
        title=str(title).strip(),
        theme=str(theme).strip(),
        scriptural_basis=str(basis).strip(),
        category_id=str(obj.get("category_id") or category_id or "").strip(),
        playlist_names=tuple(_playlist_names(_first(obj, PLAYLIST_KEYS))),
        desired_positions=positions,
        voice_id=obj.get("voice_id") or voice_id,
    )


def parse_ndjson(
    text: str,
    category_id: Optional[str] = None,
    voice_id: Optional[str] = None,
) -> ParsedBatch:
    """Parse one request per non-blank line."""
    parsed = ParsedBatch()
    for line_number, raw in enumerate((text or "").splitlines(), start=1):
        raw = raw.strip()
        if not raw:
            continue
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError as e:
            parsed.errors.append(LineError(line_number, f"invalid JSON: {e.msg}", raw))
            continue
        try:
            parsed.requests.append(request_from_mapping(obj, category_id, voice_id))
        except ValueError as e:
            parsed.errors.append(LineError(line_number, str(e), raw))
    return parsed


def parse_items(
    items: list,
    category_id: Optional[str] = None,
    voice_id: Optional[str] = None,
) -> ParsedBatch:
    """Parse an already-decoded list of request objects (JSON/YAML)."""
    parsed = ParsedBatch()
    for number, obj in enumerate(items, start=1):
        try:
            parsed.requests.append(request_from_mapping(obj, category_id, voice_id))
        except ValueError as e:
            parsed.errors.append(LineError(number, str(e), json.dumps(obj, ensure_ascii=False, default=str)))
    return parsed


def load_batch_file(
    path: str | Path,
    category_id: Optional[str] = None,
    voice_id: Optional[str] = None,
) -> ParsedBatch:
    """Load requests from .ndjson/.jsonl, .json or .yaml/.yml.

    JSON and YAML files hold either a list of requests or an object with a
    "requests" list and optional batch-level "category_id" and "voice_id".

    Raises:
        ValueError: If the file type is unsupported or the document shape is wrong
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()

    if suffix in (".ndjson", ".jsonl"):
        return parse_ndjson(text, category_id, voice_id)
    if suffix == ".json":
        document = json.loads(text)
    elif suffix in (".yaml", ".yml"):
        document = yaml.safe_load(text)
    else:
        raise ValueError(f"Unsupported batch file type: {path.suffix}")

    if isinstance(document, dict):
        category_id = category_id or document.get("category_id")
        voice_id = voice_id or document.get("voice_id")
        document = document.get("requests")
    if not isinstance(document, list):
        raise ValueError(f"{path.name} must contain a list of requests")

    parsed = parse_items(document, category_id, voice_id)
    logger.info(
        f"Loaded {len(parsed.requests)} request(s) from {path.name}"
        + (f", {len(parsed.errors)} rejected" if parsed.errors else "")
    )
    return parsed

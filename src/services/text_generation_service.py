"""Model-fallback text generation for devotional fields.

Renders a field template against the run context and asks each candidate
model in turn until one answers. Model-availability errors move on to the
next candidate; auth, quota and unclassified errors stop immediately.
"""

import logging
import re
from typing import Iterable, Optional, Protocol

from google.genai import Client, errors, types

from models.generation import CompletionErrorKind, FieldGeneration, FieldSpec
from services.prompts import clean_completion, render_template

logger = logging.getLogger(__name__)

_MODEL_ISSUE_PATTERN = re.compile(
    r"not found|invalid|unknown|not supported|does not exist", re.IGNORECASE
)


class CompletionError(Exception):
    """Raised by a completion backend when a call fails."""

    def __init__(
        self,
        kind: CompletionErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code


def classify_error(status_code: Optional[int], message: str) -> CompletionErrorKind:
    """Map an HTTP status and error text to a CompletionErrorKind."""
    if status_code == 401:
        return CompletionErrorKind.UNAUTHORIZED
    if status_code == 403:
        return CompletionErrorKind.FORBIDDEN
    if status_code == 429:
        return CompletionErrorKind.RATE_LIMITED
    if status_code == 404:
        return CompletionErrorKind.MODEL_UNAVAILABLE
    text = (message or "").lower()
    if "model" in text and _MODEL_ISSUE_PATTERN.search(text):
        return CompletionErrorKind.MODEL_UNAVAILABLE
    return CompletionErrorKind.OTHER


def build_model_candidates(preferred: Optional[str], baseline: Iterable[str]) -> list[str]:
    """Preferred model first, then the baseline; duplicates and blanks removed."""
    candidates: list[str] = []
    for model in [preferred, *baseline]:
        if model and model.strip() and model.strip() not in candidates:
            candidates.append(model.strip())
    return candidates


class CompletionBackend(Protocol):
    """Anything that turns a prompt into text with a named model."""

    async def complete(
        self, model: str, prompt: str, temperature: float, max_tokens: int
    ) -> str:
        ...


class GeminiCompletionBackend:
    """Completion backend using the Google GenAI async client."""

    def __init__(self, api_key: str):
        """Initialize Google GenAI client.

        Args:
            api_key: Google GenAI API key
        """
        self.client = Client(api_key=api_key)

    async def complete(
        self, model: str, prompt: str, temperature: float, max_tokens: int
    ) -> str:
        """Run one completion.

        Raises:
            CompletionError: With the failure classified for the fallback loop
        """
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                ),
            )
        except errors.APIError as e:
            message = e.message or str(e)
            raise CompletionError(classify_error(e.code, message), message, e.code) from e
        return response.text or ""


class TextGenerationService:
    """Generates one field at a time, walking the model candidate list."""

    def __init__(
        self,
        backend: CompletionBackend,
        candidates: list[str],
        temperature: float = 1.0,
    ):
        if not candidates:
            raise ValueError("At least one model candidate is required")
        self.backend = backend
        self.candidates = list(candidates)
        self.temperature = temperature

    async def generate(self, spec: FieldSpec, context: dict) -> FieldGeneration:
        """Generate the value for one field.

        Args:
            spec: Field template and token budget
            context: Placeholder values for this run

        Returns:
            FieldGeneration with the stripped text and model used; the value is
            empty when the prompt rendered empty, a fatal error stopped the loop,
            or every candidate was unavailable. error_kind names the last
            classified failure.
        """
        prompt = render_template(spec.template, context)
        if not prompt.strip():
            logger.debug(f"Skipping {spec.name.value}: template rendered empty")
            return FieldGeneration()

        error_kind: Optional[CompletionErrorKind] = None
        for model in self.candidates:
            try:
                text = await self.backend.complete(
                    model=model,
                    prompt=prompt,
                    temperature=self.temperature,
                    max_tokens=spec.max_tokens,
                )
            except CompletionError as e:
                error_kind = e.kind
                if e.kind.is_fatal:
                    logger.error(
                        f"Generation of {spec.name.value} stopped on {model}: "
                        f"{e.kind.value} ({e.message})"
                    )
                    return FieldGeneration(error_kind=error_kind)
                logger.warning(f"Model {model} unavailable for {spec.name.value}: {e.message}")
                continue
            except Exception as e:
                error_kind = CompletionErrorKind.OTHER
                logger.error(f"Generation of {spec.name.value} failed on {model}: {e}")
                return FieldGeneration(error_kind=error_kind)

            value = clean_completion(text)
            logger.info(f"Generated {spec.name.value} with {model} ({len(value)} chars)")
            return FieldGeneration(value=value, model_used=model)

        logger.error(f"All {len(self.candidates)} models unavailable for {spec.name.value}")
        return FieldGeneration(error_kind=error_kind)
